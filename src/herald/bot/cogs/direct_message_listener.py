"""Direct message listener Cog.

Feeds every direct message into the shared :class:`ModmailService`. Guild
messages are ignored here; server logging lives in the ServerLogsListenerCog.
"""

import discord
from discord.ext import commands

from herald.modmail.modmail_service import ModmailService
from herald.util.logger import get_logger

logger = get_logger("direct_message_listener_cog")


class DirectMessageListenerCog(commands.Cog):
    """Cog that relays direct messages to the modmail service."""

    def __init__(self, discord_bot_instance, modmail_service: ModmailService):
        self.bot = discord_bot_instance
        self.modmail_service = modmail_service
        logger.info("Direct message listener cog loaded")

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message):
        """Hand direct messages from people (not bots) to the modmail service."""
        if message.guild is not None or message.author.bot:
            return
        logger.debug(f"Received direct message from {message.author}: {(message.content or '[no text]')[:80]}")
        await self.modmail_service.handle_direct_message(message)


def setup(discord_bot_instance, modmail_service: ModmailService):
    """Register the DirectMessageListenerCog with the bot."""
    discord_bot_instance.add_cog(DirectMessageListenerCog(discord_bot_instance, modmail_service))
