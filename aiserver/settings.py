import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()


class Settings(BaseModel):
    # Telegram Bot Configuration
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    admin_chat_ids: list[str] = Field(default_factory=list, alias="ADMIN_CHAT_IDS")

    # HTTP Configuration
    http_timeout: float = Field(default=30.0, alias="HTTP_TIMEOUT")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=4000, alias="API_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    admin_api_token: str = Field(default="", alias="ADMIN_API_TOKEN")

    # BFL (Black Forest Labs) Configuration
    bfl_api_key: str = Field(default="", alias="BFL_API_KEY")
    bfl_base_url: str = Field(default="https://api.us1.bfl.ai/v1", alias="BFL_BASE_URL")

    # ElevenLabs Configuration
    elevenlabs_api_key: str = Field(default="", alias="ELEVENLABS_API_KEY")
    elevenlabs_base_url: str = Field(
        default="https://api.elevenlabs.io/v1", alias="ELEVENLABS_BASE_URL"
    )
    elevenlabs_model_id: str = Field(
        default="eleven_turbo_v2_5", alias="ELEVENLABS_MODEL_ID"
    )

    # HuggingFace Configuration
    huggingface_space_url: str = Field(
        default="https://fancyfeast-joy-caption-alpha-two.hf.space",
        alias="HUGGINGFACE_SPACE_URL",
    )

    # Replicate Configuration
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_base_url: str = Field(
        default="https://api.replicate.com/v1", alias="REPLICATE_BASE_URL"
    )

    # Sync Labs Configuration
    synclabs_api_key: str = Field(default="", alias="SYNC_LABS_API_KEY")
    synclabs_base_url: str = Field(
        default="https://api.sync.so/v2", alias="SYNC_LABS_BASE_URL"
    )

    # Supabase Configuration
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_key: str = Field(default="", alias="SUPABASE_SERVICE_KEY")

    @field_validator("admin_chat_ids", mode="before")
    @classmethod
    def split_chat_ids(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


def load_settings() -> Settings:
    """Build settings from the process environment."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
