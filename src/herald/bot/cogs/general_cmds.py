"""
General commands cog: /ping and /help.
"""

import discord
from discord.ext import commands

from herald.configuration.app_configuration import app_config
from herald.util.embeds import INFO_COLOR, create_embed
from herald.util.logger import get_logger

logger = get_logger("general_commands")

HELP_SECTIONS = (
    (
        "📬 Modmail",
        "DM the bot to reach a server's staff.\n"
        "`/modmail reply` `/modmail close` `/modmail block` `/modmail unblock`\n"
        "`/modmail-setup enable|disable|status` `/modmail-stats overview|timeframe`",
    ),
    (
        "📋 Logging",
        "`/setup channel` `/logs view|setchannel|reset` `/enable` `/disable` `/categories`\n"
        "`/ignore channel|role|list` `/reset all|logging|modmail`",
    ),
    ("⚙️ General", "`/ping` `/help`"),
)


class GeneralCog(commands.Cog):
    """Cog for general purpose commands."""

    def __init__(self, bot: discord.Bot):
        self.bot = bot
        logger.info("General commands cog loaded")

    @commands.slash_command(name="ping", description="Check that the bot is responsive.")
    async def ping(self, application_context: discord.ApplicationContext) -> None:
        latency_ms = round(self.bot.latency * 1000)
        embed = create_embed(
            title="🏓 Pong!",
            description=f"Gateway latency: **{latency_ms} ms**",
            color=INFO_COLOR,
        )
        await application_context.respond(embed=embed, ephemeral=True)
        logger.debug(f"Ping from {application_context.user}: {latency_ms} ms")

    @commands.slash_command(name="help", description="Show what the bot can do.")
    async def help(self, application_context: discord.ApplicationContext) -> None:
        embed = create_embed(
            title=f"👑 {app_config.bot_name} Help",
            description=f"{app_config.bot_slogan}. Here is everything I can do:",
            color=INFO_COLOR,
            fields=[(name, value, False) for name, value in HELP_SECTIONS],
        )
        await application_context.respond(embed=embed, ephemeral=True)


def setup(bot: discord.Bot):
    """Register the GeneralCog with the bot."""
    bot.add_cog(GeneralCog(bot))
