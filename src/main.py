"""Entry point for the demotion bot."""

import asyncio
import logging

import discord

from src.bot import DemotionBot
from src.config import settings


async def main() -> None:
    """Run the bot."""
    discord.utils.setup_logging(level=logging.getLevelName(settings.log_level.upper()))
    bot = DemotionBot()
    async with bot:
        await bot.start(settings.discord_token)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
