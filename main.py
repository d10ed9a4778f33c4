"""
AI server entry point.
Wires the circuit breaker registry, providers, health API and Telegram admin bot.
"""

import asyncio
import sys

import uvicorn
from loguru import logger

from aiserver.api.health import create_health_server
from aiserver.bot.dispatcher import CommandDispatcher
from aiserver.bot.telegram import AdminNotifier, TelegramBot, build_application
from aiserver.providers import build_providers
from aiserver.services.client import close_service_client, get_service_client
from aiserver.services.registry import clear_registry, init_registry
from aiserver.settings import global_settings


async def main() -> None:
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)
    logger.info("Starting AI server...")

    registry = init_registry()
    client = get_service_client()
    providers = build_providers(client)

    application = None
    notifier = None
    if global_settings.telegram_bot_token:
        notifier = AdminNotifier(
            TelegramBot(global_settings.telegram_bot_token),
            global_settings.admin_chat_ids,
        )
        registry.set_on_state_change(notifier)
        application = build_application(
            global_settings.telegram_bot_token,
            CommandDispatcher(registry, global_settings.admin_chat_ids),
        )
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set, admin bot disabled")

    app = create_health_server(
        registry, providers, admin_token=global_settings.admin_api_token
    )
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=global_settings.api_host,
            port=global_settings.api_port,
            log_level=global_settings.log_level.lower(),
        )
    )

    try:
        if application:
            await application.initialize()
            await application.start()
            await application.updater.start_polling()
            logger.info("Telegram admin bot started")

        logger.info(
            f"Health API listening on {global_settings.api_host}:{global_settings.api_port}"
        )
        await server.serve()
    finally:
        if application:
            logger.info("Stopping Telegram admin bot...")
            await application.updater.stop()
            await application.stop()
            await application.shutdown()

        if notifier:
            await notifier.drain()

        logger.info("Closing service client...")
        await close_service_client()
        clear_registry()
        logger.info("AI server stopped")


if __name__ == "__main__":
    asyncio.run(main())
