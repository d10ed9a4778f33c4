"""Tests for environment-driven settings."""

from aiserver.settings import Settings, load_settings


def test_defaults():
    settings = Settings()

    assert settings.api_port == 4000
    assert settings.admin_chat_ids == []
    assert settings.bfl_base_url == "https://api.us1.bfl.ai/v1"
    assert settings.elevenlabs_model_id == "eleven_turbo_v2_5"


def test_admin_chat_ids_are_split():
    settings = Settings.model_validate({"ADMIN_CHAT_IDS": "111, 222,,333 "})

    assert settings.admin_chat_ids == ["111", "222", "333"]


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("API_PORT", "8080")
    monkeypatch.setenv("ADMIN_CHAT_IDS", "42")
    monkeypatch.setenv("SUPABASE_URL", "https://db.example.com")

    settings = load_settings()

    assert settings.telegram_bot_token == "123:abc"
    assert settings.api_port == 8080
    assert settings.admin_chat_ids == ["42"]
    assert settings.supabase_url == "https://db.example.com"
