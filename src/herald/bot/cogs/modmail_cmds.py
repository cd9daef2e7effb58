"""
Modmail cog: staff commands for modmail threads.

Slash groups:
- /modmail reply | close | block | unblock: used inside a thread channel
  (block/unblock work anywhere in the guild)
- /modmail-setup enable | disable | status: per-guild configuration
- /modmail-stats overview | timeframe: thread history statistics

Permissions
- reply/close need Manage Messages.
- block/unblock, setup and stats need Manage Server (or Administrator).

All responses are ephemeral except what the modmail service itself posts in
the thread channel.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import discord
from discord import Option
from discord.ext import commands

from herald.modmail.errors import ModmailError
from herald.modmail.modmail_service import NOT_A_THREAD_MESSAGE, ModmailService
from herald.repositories.thread_history_repo import ThreadStats
from herald.ui.modmail_ui import ReplyModal
from herald.util.discord_utils import has_any_permission
from herald.util.embeds import INFO_COLOR, create_embed, error_embed, success_embed
from herald.util.format_utils import format_duration
from herald.util.logger import get_logger

logger = get_logger("modmail_cog")

TIMEFRAME_CHOICES = ["today", "week", "month", "all"]
NO_PERMISSION_MESSAGE = "You do not have permission to use this command."
GUILD_ONLY_MESSAGE = "This command can only be used in a server."


def timeframe_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Return the start of a stats window, or None for all time."""
    now = now or datetime.now(timezone.utc)
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    return None


def build_stats_embed(guild_name: str, stats: ThreadStats, period_label: str) -> discord.Embed:
    """Summarise :class:`ThreadStats` for display."""
    average = (
        format_duration(stats.average_duration_seconds) if stats.average_duration_seconds is not None else "N/A"
    )
    by_reason = "\n".join(f"**{reason.replace('_', ' ').title()}**: {count}" for reason, count in stats.by_reason.items())
    closers = "\n".join(f"<@{user_id}>: {count}" for user_id, count in stats.top_closers)
    return create_embed(
        title=f"📊 Modmail Statistics - {guild_name}",
        description=f"Period: **{period_label}**",
        color=INFO_COLOR,
        fields=[
            ("Total Threads", str(stats.total), True),
            ("Open", str(stats.open), True),
            ("Closed", str(stats.closed), True),
            ("Unique Users", str(stats.unique_users), True),
            ("Average Duration", average, True),
            ("Close Reasons", by_reason or "None", False),
            ("Top Closers", closers or "None", False),
        ],
    )


class ModmailCog(commands.Cog):
    """Staff-side modmail commands backed by the shared :class:`ModmailService`."""

    modmail = discord.SlashCommandGroup("modmail", "Manage modmail threads")
    modmail_setup = discord.SlashCommandGroup("modmail-setup", "Configure the modmail system")
    modmail_stats = discord.SlashCommandGroup("modmail-stats", "Modmail statistics")

    def __init__(self, discord_bot_instance, modmail_service: ModmailService):
        self.discord_bot_instance = discord_bot_instance
        self.modmail_service = modmail_service
        self.settings_manager = modmail_service.settings_manager
        logger.info("Modmail cog loaded")

    async def _check_access(self, ctx: discord.ApplicationContext, *permission_names: str) -> bool:
        """Require a guild context and one of ``permission_names``; reply and return False otherwise."""
        if ctx.guild is None:
            await ctx.respond(GUILD_ONLY_MESSAGE, ephemeral=True)
            return False
        if not has_any_permission(ctx, *permission_names):
            await ctx.respond(NO_PERMISSION_MESSAGE, ephemeral=True)
            return False
        return True

    # -------------------- /modmail --------------------

    @modmail.command(name="reply", description="Reply to the user of this modmail thread.")
    async def reply(
        self,
        ctx: discord.ApplicationContext,
        message: Option(str, "The reply to send. Leave empty to open an editor.", required=False, default=None),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx, "manage_messages"):
            return
        if self.modmail_service.thread_for_channel(ctx.channel_id) is None:
            await ctx.respond(embed=error_embed(NOT_A_THREAD_MESSAGE), ephemeral=True)
            return
        if not message:
            await ctx.send_modal(ReplyModal(self.modmail_service, ctx.channel_id))
            return

        await ctx.defer(ephemeral=True)
        try:
            await self.modmail_service.staff_reply(ctx.channel_id, ctx.author, message)
        except ModmailError as exc:
            await ctx.send_followup(embed=error_embed(str(exc), command="modmail reply"), ephemeral=True)
            return
        await ctx.send_followup(embed=success_embed("Your reply has been sent to the user."), ephemeral=True)

    @modmail.command(name="close", description="Close this modmail thread.")
    async def close(
        self,
        ctx: discord.ApplicationContext,
        reason: Option(str, "Reason for closing the thread.", required=False, default=None),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx, "manage_messages"):
            return
        await ctx.defer(ephemeral=True)
        try:
            await self.modmail_service.close(ctx.channel_id, ctx.author, reason)
        except ModmailError as exc:
            await ctx.send_followup(embed=error_embed(str(exc), command="modmail close"), ephemeral=True)
            return
        await ctx.send_followup(embed=success_embed("The modmail thread has been closed."), ephemeral=True)

    @modmail.command(name="block", description="Block a user from contacting this server through modmail.")
    async def block(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to block.", required=True),  # type: ignore
        reason: Option(str, "Reason for the block.", default="No reason provided"),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx, "manage_guild"):
            return
        if user.id == ctx.author.id:
            await ctx.respond(embed=error_embed("You cannot block yourself."), ephemeral=True)
            return

        await ctx.defer(ephemeral=True)
        if not await self.modmail_service.block_user(ctx.guild, user, ctx.author, reason):
            await ctx.send_followup(embed=error_embed(f"{user} is already blocked from modmail."), ephemeral=True)
            return
        await ctx.send_followup(
            embed=success_embed(f"{user.mention} has been blocked from using modmail.\n**Reason:** {reason}"),
            ephemeral=True,
        )

    @modmail.command(name="unblock", description="Allow a blocked user to use modmail again.")
    async def unblock(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to unblock.", required=True),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx, "manage_guild"):
            return
        await ctx.defer(ephemeral=True)
        if not await self.modmail_service.unblock_user(ctx.guild, user):
            await ctx.send_followup(embed=error_embed(f"{user} is not blocked from modmail."), ephemeral=True)
            return
        await ctx.send_followup(embed=success_embed(f"{user.mention} can use modmail again."), ephemeral=True)

    # -------------------- /modmail-setup --------------------

    @modmail_setup.command(name="enable", description="Enable modmail for this server.")
    async def setup_enable(
        self,
        ctx: discord.ApplicationContext,
        category: Option(discord.CategoryChannel, "Category for thread channels.", required=False, default=None),  # type: ignore
        staff_role: Option(discord.Role, "Role that can see modmail threads.", required=False, default=None),  # type: ignore
        log_channel: Option(discord.TextChannel, "Channel for closed thread logs.", required=False, default=None),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx, "manage_guild"):
            return
        self.settings_manager.enable_modmail(
            ctx.guild.id,
            category_id=category.id if category else None,
            staff_role_id=staff_role.id if staff_role else None,
            log_channel_id=log_channel.id if log_channel else None,
        )
        logger.info(f"Modmail enabled in guild {ctx.guild.name} ({ctx.guild.id}) by {ctx.author}")
        await ctx.respond(
            embeds=[success_embed("Modmail has been **enabled** for this server."), self._status_embed(ctx.guild)],
            ephemeral=True,
        )

    @modmail_setup.command(name="disable", description="Disable modmail for this server and close open threads.")
    async def setup_disable(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx, "manage_guild"):
            return
        await ctx.defer(ephemeral=True)
        self.settings_manager.disable_modmail(ctx.guild.id)
        closed = await self.modmail_service.close_guild_threads(ctx.guild.id, ctx.author, "Modmail was disabled")
        logger.info(f"Modmail disabled in guild {ctx.guild.name} ({ctx.guild.id}), {closed} threads closed")
        await ctx.send_followup(
            embed=success_embed(f"Modmail has been **disabled** for this server. Closed {closed} open thread(s)."),
            ephemeral=True,
        )

    @modmail_setup.command(name="status", description="Show the modmail configuration for this server.")
    async def setup_status(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx, "manage_guild"):
            return
        await ctx.respond(embed=self._status_embed(ctx.guild), ephemeral=True)

    def _status_embed(self, guild: discord.Guild) -> discord.Embed:
        settings, blocks = self.settings_manager.snapshot(guild.id)
        open_threads = self.modmail_service.threads_in_guild(guild.id)

        def mention(value: Optional[int], template: str) -> str:
            return template.format(value) if value else "Not set"

        return create_embed(
            title="📬 Modmail Status",
            color=INFO_COLOR,
            fields=[
                ("Enabled", "✅ Yes" if settings.modmail_enabled else "❌ No", True),
                ("Category", mention(settings.modmail_category_id, "<#{}>"), True),
                ("Staff Role", mention(settings.modmail_staff_role_id, "<@&{}>"), True),
                ("Log Channel", mention(settings.modmail_log_channel_id, "<#{}>"), True),
                ("Open Threads", str(len(open_threads)), True),
                ("Blocked Users", str(len(blocks)), True),
            ],
        )

    # -------------------- /modmail-stats --------------------

    @modmail_stats.command(name="overview", description="Show modmail statistics for all time.")
    async def stats_overview(self, ctx: discord.ApplicationContext) -> None:
        await self._send_stats(ctx, "all")

    @modmail_stats.command(name="timeframe", description="Show modmail statistics for a period.")
    async def stats_timeframe(
        self,
        ctx: discord.ApplicationContext,
        period: Option(str, "Period to report on.", choices=TIMEFRAME_CHOICES, default="week"),  # type: ignore
    ) -> None:
        await self._send_stats(ctx, period)

    async def _send_stats(self, ctx: discord.ApplicationContext, period: str) -> None:
        if not await self._check_access(ctx, "manage_guild"):
            return
        await ctx.defer(ephemeral=True)
        try:
            stats = await self.modmail_service.stats(ctx.guild.id, timeframe_start(period))
        except ModmailError as exc:
            await ctx.send_followup(embed=error_embed(str(exc)), ephemeral=True)
            return
        label = "All time" if period == "all" else period.title()
        await ctx.send_followup(embed=build_stats_embed(ctx.guild.name, stats, label), ephemeral=True)


def setup(discord_bot_instance, modmail_service: ModmailService):
    """Register the ModmailCog with the bot."""
    discord_bot_instance.add_cog(ModmailCog(discord_bot_instance, modmail_service))
