"""Telegram delivery for admin alerts and the admin command surface."""

import asyncio
from typing import TYPE_CHECKING

from loguru import logger
from telegram import Bot
from telegram.constants import ParseMode
from telegram.ext import Application, CommandHandler

from aiserver.bot.formatter import format_state_change
from aiserver.services.circuit_breaker import CircuitState
from aiserver.utils import safe_func_wrapper

if TYPE_CHECKING:
    from aiserver.bot.dispatcher import CommandDispatcher


class TelegramBot:
    def __init__(self, token: str):
        self.telegram_bot = Bot(token)

    @safe_func_wrapper
    async def send_message(self, message: str, chat_id: str):
        await self.telegram_bot.send_message(
            chat_id, message, parse_mode=ParseMode.MARKDOWN
        )


class AdminNotifier:
    """
    Circuit breaker state-change callback that alerts admin chats.

    Only OPEN and CLOSED transitions are announced; half-open probes are
    too frequent to be useful in a chat.

    Usage:
        notifier = AdminNotifier(TelegramBot(token), ["123456"])
        registry.set_on_state_change(notifier)
    """

    def __init__(self, bot: TelegramBot, chat_ids: list[str]):
        self.bot = bot
        self.chat_ids = chat_ids
        self._pending: set[asyncio.Task] = set()

    def __call__(self, name: str, old_state: CircuitState, new_state: CircuitState) -> None:
        if new_state == CircuitState.HALF_OPEN or not self.chat_ids:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No event loop, dropping alert for '{name}' → {new_state.value}")
            return

        task = loop.create_task(self.notify(format_state_change(name, old_state, new_state)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def notify(self, message: str) -> None:
        """Send a message to every admin chat; one failing chat does not stop the rest."""
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(message, chat_id)
            except RuntimeError as e:
                logger.error(f"Admin alert to {chat_id} failed: {e}")

    async def drain(self) -> None:
        """Wait for alerts still being sent."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def build_application(token: str, dispatcher: "CommandDispatcher") -> Application:
    """Create the Telegram application with admin commands registered."""
    application = Application.builder().token(token).build()
    application.add_handler(CommandHandler("circuits", dispatcher.handle_circuits))
    application.add_handler(
        CommandHandler("reset_circuits", dispatcher.handle_reset_circuits)
    )
    return application
