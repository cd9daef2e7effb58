"""Server logs listener Cog.

Turns guild events into log embeds and posts them to the category's channel
(the per-category override, else the main log channel). Nothing is posted
unless the guild finished ``/setup``, the category is enabled, and neither the
source channel nor the acting member's roles are ignored.
"""

from typing import Iterable, Optional, Tuple

import discord
from discord.ext import commands

from herald.configuration.guild_settings import guild_settings_manager
from herald.datatypes.log_categories import LogCategory
from herald.util.discord_utils import has_ignored_role, safe_send
from herald.util.embeds import log_embed
from herald.util.format_utils import discord_timestamp
from herald.util.logger import get_logger

logger = get_logger("server_logs_listener_cog")

FIELD_LIMIT = 1024


def _clip(text: Optional[str]) -> str:
    if not text:
        return "[No text content]"
    return text if len(text) <= FIELD_LIMIT else text[: FIELD_LIMIT - 1] + "…"


class ServerLogsListenerCog(commands.Cog):
    """Cog that mirrors guild events into the configured log channels."""

    def __init__(self, discord_bot_instance):
        self.bot = discord_bot_instance
        logger.info("Server logs listener cog loaded")

    def resolve_log_channel(
        self,
        guild: Optional[discord.Guild],
        category: LogCategory,
        *,
        source_channel_id: Optional[int] = None,
        actor: Optional[discord.abc.User] = None,
    ) -> Optional[discord.abc.Messageable]:
        """Return where a ``category`` event should be logged, or None to skip it."""
        if guild is None:
            return None
        settings = guild_settings_manager.get_guild_settings(guild.id)
        if not settings.setup_completed or not settings.is_category_enabled(category):
            return None
        if source_channel_id is not None and settings.is_channel_ignored(source_channel_id):
            return None
        if has_ignored_role(actor, settings.ignored_roles):
            return None

        channel_id = settings.category_channel_id(category)
        if channel_id is None:
            return None
        # Never log events about the log channel itself
        if source_channel_id is not None and source_channel_id == channel_id:
            return None
        return guild.get_channel(channel_id)

    async def _post(
        self,
        guild: Optional[discord.Guild],
        category: LogCategory,
        action: str,
        description: Optional[str] = None,
        *,
        fields: Iterable[Tuple[str, str, bool]] = (),
        thumbnail: Optional[str] = None,
        source_channel_id: Optional[int] = None,
        actor: Optional[discord.abc.User] = None,
    ) -> bool:
        channel = self.resolve_log_channel(guild, category, source_channel_id=source_channel_id, actor=actor)
        if channel is None:
            return False
        embed = log_embed(category, action, description, fields=fields, thumbnail=thumbnail)
        return await safe_send(channel, embed=embed) is not None

    # -------------------- Messages --------------------

    @commands.Cog.listener(name="on_message_delete")
    async def on_message_delete(self, message: discord.Message):
        if message.guild is None or message.author.bot:
            return
        await self._post(
            message.guild,
            LogCategory.MESSAGES,
            "Message Deleted",
            f"A message by {message.author.mention} was deleted in {message.channel.mention}.",
            fields=[("Content", _clip(message.content), False)],
            source_channel_id=message.channel.id,
            actor=message.author,
        )

    @commands.Cog.listener(name="on_message_edit")
    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        if after.guild is None or after.author.bot:
            return
        if (before.content or "") == (after.content or ""):
            return
        await self._post(
            after.guild,
            LogCategory.MESSAGES,
            "Message Edited",
            f"{after.author.mention} edited a [message]({after.jump_url}) in {after.channel.mention}.",
            fields=[("Before", _clip(before.content), False), ("After", _clip(after.content), False)],
            source_channel_id=after.channel.id,
            actor=after.author,
        )

    # -------------------- Members --------------------

    @commands.Cog.listener(name="on_member_join")
    async def on_member_join(self, member: discord.Member):
        await self._post(
            member.guild,
            LogCategory.MEMBERS,
            "Member Joined",
            f"{member.mention} joined the server.",
            fields=[
                ("User", f"{member} ({member.id})", True),
                ("Account Created", discord_timestamp(member.created_at, "R"), True),
            ],
            thumbnail=member.display_avatar.url,
        )

    @commands.Cog.listener(name="on_member_remove")
    async def on_member_remove(self, member: discord.Member):
        await self._post(
            member.guild,
            LogCategory.MEMBERS,
            "Member Left",
            f"{member.mention} left the server.",
            fields=[("User", f"{member} ({member.id})", True)],
            thumbnail=member.display_avatar.url,
            actor=member,
        )

    # -------------------- Roles --------------------

    @commands.Cog.listener(name="on_guild_role_create")
    async def on_guild_role_create(self, role: discord.Role):
        await self._post(role.guild, LogCategory.ROLES, "Role Created", f"Role {role.mention} was created.")

    @commands.Cog.listener(name="on_guild_role_delete")
    async def on_guild_role_delete(self, role: discord.Role):
        await self._post(role.guild, LogCategory.ROLES, "Role Deleted", f"Role **{role.name}** was deleted.")

    # -------------------- Channels --------------------

    @commands.Cog.listener(name="on_guild_channel_create")
    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel):
        await self._post(
            channel.guild,
            LogCategory.CHANNELS,
            "Channel Created",
            f"Channel {channel.mention} was created.",
            source_channel_id=channel.id,
        )

    @commands.Cog.listener(name="on_guild_channel_delete")
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel):
        await self._post(
            channel.guild,
            LogCategory.CHANNELS,
            "Channel Deleted",
            f"Channel **#{channel.name}** was deleted.",
            source_channel_id=channel.id,
        )

    # -------------------- Voice --------------------

    @commands.Cog.listener(name="on_voice_state_update")
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ):
        if before.channel == after.channel:
            return
        if before.channel is None:
            action, description = "Joined", f"{member.mention} joined {after.channel.mention}."
            source = after.channel.id
        elif after.channel is None:
            action, description = "Left", f"{member.mention} left {before.channel.mention}."
            source = before.channel.id
        else:
            action = "Moved"
            description = f"{member.mention} moved from {before.channel.mention} to {after.channel.mention}."
            source = after.channel.id
        await self._post(
            member.guild,
            LogCategory.VOICE,
            f"Member {action}",
            description,
            source_channel_id=source,
            actor=member,
        )


def setup(discord_bot_instance):
    """Register the ServerLogsListenerCog with the bot."""
    discord_bot_instance.add_cog(ServerLogsListenerCog(discord_bot_instance))
