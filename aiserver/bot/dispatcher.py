"""Telegram admin command handlers (dispatcher)."""

from loguru import logger
from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from aiserver.bot.formatter import escape_md, format_circuit_status
from aiserver.services.circuit_breaker import CircuitBreakerRegistry


class CommandDispatcher:
    """Handles admin-only Telegram commands for circuit breaker operations."""

    def __init__(self, registry: CircuitBreakerRegistry, admin_chat_ids: list[str]):
        self.registry = registry
        self.admin_chat_ids = {str(chat_id) for chat_id in admin_chat_ids}

    def _is_admin(self, update: Update) -> bool:
        assert update.effective_chat is not None
        return str(update.effective_chat.id) in self.admin_chat_ids

    async def handle_circuits(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /circuits command - show every circuit breaker."""
        assert update.effective_chat is not None
        assert update.message is not None
        chat_id = update.effective_chat.id
        logger.info(f"/circuits command from chat {chat_id}")

        if not self._is_admin(update):
            logger.warning(f"/circuits rejected for non-admin chat {chat_id}")
            return

        message = format_circuit_status(self.registry.get_all_stats())
        await update.message.reply_text(message, parse_mode=ParseMode.MARKDOWN)

    async def handle_reset_circuits(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /reset_circuits [name] command - reset one breaker or all."""
        assert update.effective_chat is not None
        assert update.message is not None
        chat_id = update.effective_chat.id
        logger.info(f"/reset_circuits command from chat {chat_id}")

        if not self._is_admin(update):
            logger.warning(f"/reset_circuits rejected for non-admin chat {chat_id}")
            return

        args = context.args or []
        if not args:
            self.registry.reset_all()
            await update.message.reply_text(
                f"🔄 Reset {len(self.registry)} circuit breakers"
            )
            return

        name = args[0]
        if self.registry.reset(name):
            await update.message.reply_text(
                f"🔄 Circuit breaker *{escape_md(name)}* reset",
                parse_mode=ParseMode.MARKDOWN,
            )
        else:
            await update.message.reply_text(
                f"❌ Unknown circuit breaker: {name}\n"
                f"Known: {', '.join(sorted(self.registry.names()))}"
            )
