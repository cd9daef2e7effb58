"""
Thread lifecycle controller: ``NONE -> OPEN -> CLOSED`` for each member.

Opening creates the support channel under the guild's modmail category and
posts the header and first message. Every relayed message (either direction)
restarts the idle timeout sequence::

    +warning_after        warning posted in the channel and DMed to the member
    +final_warning_after  final warning, same
    +close_after          thread closed, channel deleted after a short grace

The stage timers are ``asyncio.Task`` handles stored on the record. A timer
that wakes up re-fetches the record from the registry and only acts if it is
still the same open record, the idle time has really elapsed, and the stage
has not fired yet in this idle period.
"""

import asyncio
from typing import Dict, Optional, Tuple, Union

import discord

from herald.configuration.app_configuration import AppConfig, app_config
from herald.configuration.guild_settings import GuildSettingsManager
from herald.database.database import Database
from herald.datatypes.discord_datatypes import ChannelID, GuildID, UserID
from herald.datatypes.modmail_datatypes import (
    Clock,
    CloseReason,
    IdleStage,
    IdleTimeoutPolicy,
    InboundMessage,
    ThreadRecord,
    utcnow,
)
from herald.modmail.errors import StaleChannelError, ThreadCreationError
from herald.modmail.relay_formatting import (
    auto_close_embeds,
    blocked_thread_embed,
    deletion_notice,
    idle_warning_embeds,
    inbound_relay_embed,
    staff_close_embeds,
    thread_channel_name,
    thread_header_embed,
    thread_topic,
)
from herald.modmail.thread_registry import ThreadRegistry
from herald.util.logger import get_logger

logger = get_logger("thread_lifecycle")

DEFAULT_CLOSE_REASON = "No reason provided"


class ThreadLifecycleController:
    """
    Create, relay into, time out and close modmail threads.

    Attributes:
        bot: Client used to look up channels and members.
        registry: The open threads, shared with :class:`ModmailService`.
        policy: Idle timeout offsets.
        settings_manager: Guild configuration (modmail category, staff role).
        config: App configuration (category name, channel prefix).
        history: Optional database for the thread audit log.
    """

    def __init__(
        self,
        bot: discord.Bot,
        registry: ThreadRegistry,
        *,
        policy: IdleTimeoutPolicy,
        settings_manager: GuildSettingsManager,
        config: AppConfig = app_config,
        history: Optional[Database] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.bot = bot
        self.registry = registry
        self.policy = policy
        self.settings_manager = settings_manager
        self.config = config
        self.history = history
        self._clock = clock
        self._pending_deletions: Dict[int, asyncio.Task] = {}

    def now(self):
        return self._clock()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def get_channel(self, record: ThreadRecord) -> Optional[discord.TextChannel]:
        """Return the record's support channel if Discord still knows it."""
        channel = self.bot.get_channel(record.channel_id.to_int())
        if channel is None:
            return None
        return channel  # type: ignore[return-value]

    async def _ensure_category(self, guild: discord.Guild) -> discord.CategoryChannel:
        """Return the guild's modmail category, creating it when absent."""
        settings = self.settings_manager.get_guild_settings(guild.id)

        if settings.modmail_category_id:
            category = guild.get_channel(settings.modmail_category_id)
            if isinstance(category, discord.CategoryChannel):
                return category
            logger.info(
                "[THREAD LIFECYCLE] Configured modmail category %s is gone in guild %s, recreating",
                settings.modmail_category_id,
                guild.id,
            )

        category_name = self.config.modmail_category_name
        category = discord.utils.get(guild.categories, name=category_name)
        if category is None:
            overwrites = {
                guild.default_role: discord.PermissionOverwrite(view_channel=False),
                guild.me: discord.PermissionOverwrite(view_channel=True, send_messages=True, manage_channels=True),
            }
            staff_role = self._staff_role(guild)
            if staff_role is not None:
                overwrites[staff_role] = discord.PermissionOverwrite(view_channel=True, send_messages=True)
            elif guild.owner is not None:
                overwrites[guild.owner] = discord.PermissionOverwrite(view_channel=True, send_messages=True)
            category = await guild.create_category(category_name, overwrites=overwrites, reason="Modmail category")
            logger.info("[THREAD LIFECYCLE] Created modmail category %s in guild %s", category.id, guild.id)

        self.settings_manager.set_modmail_category(guild.id, category.id)
        return category

    def _staff_role(self, guild: discord.Guild) -> Optional[discord.Role]:
        settings = self.settings_manager.get_guild_settings(guild.id)
        if settings.modmail_staff_role_id:
            role = guild.get_role(settings.modmail_staff_role_id)
            if role is not None:
                return role
        return discord.utils.get(guild.roles, name=self.config.support_role_name)

    # ------------------------------------------------------------------
    # NONE -> OPEN
    # ------------------------------------------------------------------

    async def open_thread(self, guild: discord.Guild, message: InboundMessage) -> ThreadRecord:
        """Create a support channel for ``message.author_id`` and register the thread.

        Raises:
            ThreadCreationError: If the category or channel could not be created,
                or the first message could not be posted.
        """
        if message.author_id in self.registry:
            raise ThreadCreationError(f"User {message.author_id} already has an open modmail thread")

        name = thread_channel_name(self.config.modmail_channel_prefix, message.author_name, message.author_id.to_int())
        try:
            category = await self._ensure_category(guild)
            channel = await guild.create_text_channel(
                name,
                category=category,
                topic=thread_topic(message.author_tag, message.author_id.to_int()),
                reason=f"Modmail thread for {message.author_tag}",
            )
        except discord.HTTPException as exc:
            logger.error("[THREAD LIFECYCLE] Could not create modmail channel in guild %s: %s", guild.id, exc)
            raise ThreadCreationError(f"Could not create a modmail channel in guild {guild.id}") from exc

        try:
            staff_role = self._staff_role(guild)
            await channel.send(
                content=staff_role.mention if staff_role is not None else None,
                embed=thread_header_embed(message),
            )
            await channel.send(embed=inbound_relay_embed(message))
        except discord.HTTPException as exc:
            logger.error("[THREAD LIFECYCLE] Could not post into new modmail channel %s: %s", channel.id, exc)
            await self._delete_channel(channel, reason="Modmail thread could not be opened")
            raise ThreadCreationError(f"Could not post into modmail channel {channel.id}") from exc

        now = self.now()
        record = ThreadRecord(
            user_id=message.author_id,
            channel_id=ChannelID.from_channel(channel),
            guild_id=GuildID.from_guild(guild),
            created_at=now,
            last_activity_at=now,
            user_tag=message.author_tag,
        )
        self.registry.add(record)
        self.schedule_idle_timers(record)
        logger.info(
            "[THREAD LIFECYCLE] Opened thread %s for user %s in guild %s",
            record.channel_id,
            record.user_id,
            record.guild_id,
        )

        if self.history is not None:
            try:
                await self.history.log_thread_opened(record.guild_id, record.user_id, record.channel_id, now)
            except Exception:
                logger.exception("[THREAD LIFECYCLE] Failed to record thread %s in history", record.channel_id)
        return record

    # ------------------------------------------------------------------
    # OPEN -> OPEN
    # ------------------------------------------------------------------

    async def relay_inbound(self, record: ThreadRecord, message: InboundMessage) -> None:
        """Forward a member's message into their existing support channel.

        Raises:
            StaleChannelError: If the support channel no longer exists.
        """
        channel = self.get_channel(record)
        if channel is None:
            raise StaleChannelError(record.channel_id.to_int())
        # Activity counts from arrival, not from when the relay lands
        self.record_activity(record)
        try:
            await channel.send(embed=inbound_relay_embed(message))
        except discord.NotFound as exc:
            raise StaleChannelError(record.channel_id.to_int()) from exc

    def record_activity(self, record: ThreadRecord) -> None:
        """Start a new idle period: reset warning flags and reschedule all stages."""
        if not record.is_open:
            return
        record.touch(self.now())
        self.schedule_idle_timers(record)

    # ------------------------------------------------------------------
    # Idle timeout sequence
    # ------------------------------------------------------------------

    def schedule_idle_timers(self, record: ThreadRecord) -> None:
        """(Re)schedule the three stage timers relative to ``last_activity_at``."""
        idle = record.idle_seconds(self.now())
        loop = asyncio.get_running_loop()
        for stage in IdleStage:
            delay = max(0.0, self.policy.offset_for(stage) - idle)
            task = loop.create_task(
                self._stage_timer(record, stage, delay),
                name=f"herald-modmail-{stage.value}-{record.user_id}",
            )
            record.timers.set(stage, task)

    async def _stage_timer(self, record: ThreadRecord, stage: IdleStage, delay: float) -> None:
        await asyncio.sleep(delay)
        # The event loop clock and the wall clock can disagree by a hair
        offset = self.policy.offset_for(stage)
        while self.registry.get(record.user_id) is record and record.is_open:
            remaining = offset - record.idle_seconds(self.now())
            if remaining <= 0 or remaining > offset:
                break
            await asyncio.sleep(remaining)
        try:
            await self.run_stage(record.user_id, stage, expected=record)
        except Exception:
            logger.exception("[THREAD LIFECYCLE] Idle stage %s failed for user %s", stage.value, record.user_id)

    async def run_stage(
        self,
        user_id: Union[UserID, int],
        stage: IdleStage,
        *,
        expected: Optional[ThreadRecord] = None,
    ) -> bool:
        """Fire one idle stage if, and only if, it is still due.

        Returns:
            True if the stage acted, False if it was a no-op.
        """
        record = self.registry.get(user_id)
        if record is None or not record.is_open:
            return False
        if expected is not None and record is not expected:
            return False
        if record.idle_seconds(self.now()) < self.policy.offset_for(stage):
            return False

        if stage is IdleStage.AUTO_CLOSE:
            return await self.close_thread(record.user_id, reason=CloseReason.INACTIVITY, expected=record) is not None

        flags = record.warnings_sent
        if stage is IdleStage.WARNING:
            if flags.thirty_second_warning:
                return False
            flags.thirty_second_warning = True
        else:
            if flags.final_warning:
                return False
            flags.final_warning = True

        channel_embed, dm_embed = idle_warning_embeds(stage, self.policy.seconds_remaining(stage))
        channel = self.get_channel(record)
        if channel is None:
            await self.discard_stale(record)
            return False
        try:
            await channel.send(embed=channel_embed)
        except discord.NotFound:
            await self.discard_stale(record)
            return False
        except discord.HTTPException as exc:
            logger.warning("[THREAD LIFECYCLE] Could not post %s in %s: %s", stage.value, record.channel_id, exc)
        await self.send_dm(record.user_id, embed=dm_embed)
        logger.debug("[THREAD LIFECYCLE] Sent %s for thread %s", stage.value, record.channel_id)
        return True

    # ------------------------------------------------------------------
    # OPEN -> CLOSED
    # ------------------------------------------------------------------

    async def close_thread(
        self,
        user_id: Union[UserID, int],
        *,
        reason: CloseReason,
        closed_by: Optional[Union[discord.Member, discord.User]] = None,
        note: Optional[str] = None,
        expected: Optional[ThreadRecord] = None,
    ) -> Optional[ThreadRecord]:
        """Close a member's thread.

        The record leaves the registry (timers cancelled) before anything is
        posted, so no other caller can act on it meanwhile. Then the closure
        notice is posted, the member is DMed, history is written and the
        channel is deleted after the grace period.

        Returns:
            The closed record, or None if there was nothing to close.
        """
        record = self.registry.remove(user_id, expected=expected)
        if record is None:
            return None

        now = self.now()
        duration = record.duration(now).total_seconds()
        channel_embed, dm_embed = self._closure_embeds(record, reason, closed_by, note, duration, now)

        channel = self.get_channel(record)
        if channel is not None:
            try:
                await channel.send(content=deletion_notice(self.policy.deletion_grace), embed=channel_embed)
            except discord.HTTPException as exc:
                logger.warning("[THREAD LIFECYCLE] Could not post closure notice in %s: %s", record.channel_id, exc)
        await self._post_to_log_channel(record, channel_embed)
        if dm_embed is not None:
            await self.send_dm(record.user_id, embed=dm_embed)

        await self._log_closed(record, reason, closed_by)
        if channel is not None:
            self._schedule_deletion(channel, self.policy.deletion_grace)

        logger.info(
            "[THREAD LIFECYCLE] Closed thread %s for user %s (%s)",
            record.channel_id,
            record.user_id,
            reason.value,
        )
        return record

    def _closure_embeds(
        self,
        record: ThreadRecord,
        reason: CloseReason,
        closed_by: Optional[Union[discord.Member, discord.User]],
        note: Optional[str],
        duration: float,
        now,
    ) -> Tuple[Optional[discord.Embed], Optional[discord.Embed]]:
        user_id = record.user_id.to_int()
        if reason is CloseReason.INACTIVITY:
            return auto_close_embeds(record.user_tag, user_id, duration, record.idle_seconds(now))
        closed_by_tag = str(closed_by) if closed_by is not None else "a staff member"
        if reason is CloseReason.BLOCKED:
            return blocked_thread_embed(record.user_tag, closed_by_tag, note or DEFAULT_CLOSE_REASON), None
        if reason is CloseReason.STAFF:
            return staff_close_embeds(closed_by_tag, record.user_tag, user_id, note or DEFAULT_CLOSE_REASON, duration)
        return None, None

    async def _post_to_log_channel(self, record: ThreadRecord, embed: Optional[discord.Embed]) -> None:
        """Copy a closure notice into the guild's modmail log channel, if one is set."""
        if embed is None:
            return
        settings = self.settings_manager.get_guild_settings(record.guild_id)
        if not settings.modmail_log_channel_id:
            return
        log_channel = self.bot.get_channel(settings.modmail_log_channel_id)
        if log_channel is None:
            return
        try:
            await log_channel.send(embed=embed)
        except discord.HTTPException as exc:
            logger.warning("[THREAD LIFECYCLE] Could not post to modmail log channel %s: %s", log_channel.id, exc)

    async def discard_stale(self, record: ThreadRecord) -> bool:
        """Forget a thread whose channel was deleted outside the bot."""
        removed = self.registry.remove(record.user_id, expected=record)
        if removed is None:
            return False
        logger.warning(
            "[THREAD LIFECYCLE] Channel %s of user %s no longer exists, dropping the thread",
            record.channel_id,
            record.user_id,
        )
        await self._log_closed(record, CloseReason.CHANNEL_DELETED, None)
        return True

    async def _log_closed(
        self,
        record: ThreadRecord,
        reason: CloseReason,
        closed_by: Optional[Union[discord.Member, discord.User]],
    ) -> None:
        if self.history is None:
            return
        try:
            await self.history.log_thread_closed(
                record.channel_id,
                self.now(),
                reason.value,
                closed_by.id if closed_by is not None else None,
            )
        except Exception:
            logger.exception("[THREAD LIFECYCLE] Failed to record closure of thread %s", record.channel_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def send_dm(self, user_id: Union[UserID, int], **kwargs) -> bool:
        """DM a member. Closed DMs and API errors are logged, not raised."""
        user_key = UserID(user_id)
        try:
            user = self.bot.get_user(user_key.to_int()) or await self.bot.fetch_user(user_key.to_int())
            await user.send(**kwargs)
            return True
        except discord.Forbidden:
            logger.info("[THREAD LIFECYCLE] User %s does not accept direct messages", user_key)
        except discord.HTTPException as exc:
            logger.warning("[THREAD LIFECYCLE] Could not DM user %s: %s", user_key, exc)
        return False

    def _schedule_deletion(self, channel: discord.abc.GuildChannel, delay: float) -> None:
        task = asyncio.get_running_loop().create_task(
            self._delete_later(channel, delay), name=f"herald-modmail-delete-{channel.id}"
        )
        self._pending_deletions[channel.id] = task
        task.add_done_callback(lambda _: self._pending_deletions.pop(channel.id, None))

    async def _delete_later(self, channel: discord.abc.GuildChannel, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._delete_channel(channel, reason="Modmail thread closed")

    async def _delete_channel(self, channel: discord.abc.GuildChannel, *, reason: str) -> None:
        try:
            await channel.delete(reason=reason)
            logger.debug("[THREAD LIFECYCLE] Deleted modmail channel %s", channel.id)
        except discord.NotFound:
            pass
        except discord.HTTPException as exc:
            logger.warning("[THREAD LIFECYCLE] Could not delete modmail channel %s: %s", channel.id, exc)

    def pending_deletions(self) -> int:
        return len(self._pending_deletions)

    async def shutdown(self) -> None:
        """Close every open thread in history and finish pending channel deletions now."""
        for record in self.registry.clear():
            await self._log_closed(record, CloseReason.SHUTDOWN, None)

        pending = list(self._pending_deletions.items())
        for _, task in pending:
            task.cancel()
        await asyncio.gather(*(task for _, task in pending), return_exceptions=True)
        for channel_id, _ in pending:
            channel = self.bot.get_channel(channel_id)
            if channel is not None:
                await self._delete_channel(channel, reason="Modmail thread closed")
        logger.info("[THREAD LIFECYCLE] Shutdown complete")
