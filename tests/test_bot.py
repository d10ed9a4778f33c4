"""
Tests for the Telegram admin surface: alerts, formatting and commands.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.ext import CommandHandler

from aiserver.bot.dispatcher import CommandDispatcher
from aiserver.bot.formatter import escape_md, format_circuit_status, format_state_change
from aiserver.bot.telegram import AdminNotifier, build_application
from aiserver.services.circuit_breaker import CircuitState
from aiserver.services.registry import FILE_DOWNLOAD, SUPABASE
from aiserver.utils import safe_func_wrapper

ADMIN_CHAT = "1001"


class FakeBot:
    """Records messages; chats listed in ``failing`` raise like TelegramBot does."""

    def __init__(self, failing: tuple[str, ...] = ()):
        self.sent: list[tuple[str, str]] = []
        self.failing = failing

    async def send_message(self, message: str, chat_id: str) -> None:
        if chat_id in self.failing:
            raise RuntimeError("send_message failed: Forbidden")
        self.sent.append((chat_id, message))


async def boom():
    raise RuntimeError("down")


async def open_breaker(breaker) -> None:
    for _ in range(breaker.config.failure_threshold):
        with pytest.raises(RuntimeError):
            await breaker.execute(boom)


def make_update(chat_id: str = ADMIN_CHAT):
    update = MagicMock()
    update.effective_chat.id = int(chat_id)
    update.message.reply_text = AsyncMock()
    return update


def make_context(*args: str):
    context = MagicMock()
    context.args = list(args)
    return context


class TestFormatter:
    def test_escape_md(self):
        assert escape_md("file_download*") == "file\\_download\\*"

    def test_state_change_open(self):
        message = format_state_change(
            "replicate",
            CircuitState.CLOSED,
            CircuitState.OPEN,
            timestamp=datetime(2024, 5, 1, 12, 30, 0),
        )

        assert message.startswith("🔴 *replicate*: CLOSED → OPEN")
        assert "rejected" in message
        assert message.endswith("_2024-05-01 12:30:00_")

    def test_state_change_closed(self):
        message = format_state_change("bfl", CircuitState.HALF_OPEN, CircuitState.CLOSED)

        assert message.startswith("🟢 *bfl*: HALF_OPEN → CLOSED")
        assert "recovered" in message

    def test_circuit_status_empty(self):
        assert format_circuit_status({}) == "No circuit breakers registered"

    @pytest.mark.asyncio
    async def test_circuit_status(self, registry):
        await open_breaker(registry.get(SUPABASE))

        message = format_circuit_status(registry.get_all_stats())

        assert "🔴 *supabase* OPEN" in message
        assert "probe in" in message
        assert "🟢 *file-download* CLOSED" in message
        assert message.endswith("Open: 1/7")


class TestAdminNotifier:
    """Tests for state-change alerts."""

    @pytest.mark.asyncio
    async def test_open_transition_alerts_every_admin(self):
        bot = FakeBot()
        notifier = AdminNotifier(bot, ["1", "2"])

        notifier("replicate", CircuitState.CLOSED, CircuitState.OPEN)
        await notifier.drain()

        assert [chat for chat, _ in bot.sent] == ["1", "2"]
        assert "*replicate*: CLOSED → OPEN" in bot.sent[0][1]

    @pytest.mark.asyncio
    async def test_half_open_is_not_announced(self):
        bot = FakeBot()
        notifier = AdminNotifier(bot, ["1"])

        notifier("replicate", CircuitState.OPEN, CircuitState.HALF_OPEN)
        await notifier.drain()

        assert bot.sent == []

    @pytest.mark.asyncio
    async def test_failing_chat_does_not_block_others(self):
        bot = FakeBot(failing=("1",))
        notifier = AdminNotifier(bot, ["1", "2"])

        await notifier.notify("hello")

        assert bot.sent == [("2", "hello")]

    def test_without_event_loop_alert_is_dropped(self):
        bot = FakeBot()
        notifier = AdminNotifier(bot, ["1"])

        notifier("replicate", CircuitState.CLOSED, CircuitState.OPEN)

        assert bot.sent == []

    @pytest.mark.asyncio
    async def test_wired_into_registry(self, registry):
        bot = FakeBot()
        notifier = AdminNotifier(bot, [ADMIN_CHAT])
        registry.set_on_state_change(notifier)

        await open_breaker(registry.get(FILE_DOWNLOAD))
        await notifier.drain()

        assert len(bot.sent) == 1
        assert "OPEN" in bot.sent[0][1]


class TestCommandDispatcher:
    """Tests for /circuits and /reset_circuits."""

    @pytest.mark.asyncio
    async def test_circuits(self, registry):
        dispatcher = CommandDispatcher(registry, [ADMIN_CHAT])
        update = make_update()

        await dispatcher.handle_circuits(update, make_context())

        message = update.message.reply_text.call_args.args[0]
        assert message.endswith("Open: 0/7")

    @pytest.mark.asyncio
    async def test_non_admin_is_ignored(self, registry):
        dispatcher = CommandDispatcher(registry, [ADMIN_CHAT])
        update = make_update("999")

        await dispatcher.handle_circuits(update, make_context())
        await dispatcher.handle_reset_circuits(update, make_context())

        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_reset_all(self, registry):
        await open_breaker(registry.get(SUPABASE))
        dispatcher = CommandDispatcher(registry, [int(ADMIN_CHAT)])
        update = make_update()

        await dispatcher.handle_reset_circuits(update, make_context())

        update.message.reply_text.assert_awaited_once_with("🔄 Reset 7 circuit breakers")
        assert registry.get_open_circuits() == []

    @pytest.mark.asyncio
    async def test_reset_one(self, registry):
        await open_breaker(registry.get(SUPABASE))
        dispatcher = CommandDispatcher(registry, [ADMIN_CHAT])
        update = make_update()

        await dispatcher.handle_reset_circuits(update, make_context(SUPABASE))

        assert "supabase" in update.message.reply_text.call_args.args[0]
        assert registry.get(SUPABASE).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset_unknown(self, registry):
        dispatcher = CommandDispatcher(registry, [ADMIN_CHAT])
        update = make_update()

        await dispatcher.handle_reset_circuits(update, make_context("nope"))

        reply = update.message.reply_text.call_args.args[0]
        assert reply.startswith("❌ Unknown circuit breaker: nope")
        assert "replicate" in reply
        assert "nope" not in registry

    def test_build_application_registers_commands(self, registry):
        dispatcher = CommandDispatcher(registry, [ADMIN_CHAT])

        application = build_application("123456:TEST-TOKEN", dispatcher)

        commands = {
            command
            for handler in application.handlers[0]
            if isinstance(handler, CommandHandler)
            for command in handler.commands
        }
        assert commands == {"circuits", "reset_circuits"}


class TestSafeFuncWrapper:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        @safe_func_wrapper
        async def add(a, b=2):
            return a + b

        assert await add(1) == 3

    @pytest.mark.asyncio
    async def test_wraps_errors(self):
        @safe_func_wrapper
        async def broken():
            raise ValueError("bad")

        with pytest.raises(RuntimeError, match="broken failed: ValueError: bad") as exc_info:
            await broken()

        assert isinstance(exc_info.value.__cause__, ValueError)
