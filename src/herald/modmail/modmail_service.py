"""
Modmail service: the single owner of all modmail state.

One :class:`ModmailService` is built at startup and handed to the cogs that
need it. It owns the thread registry, the server resolver (with its pending
selections) and the lifecycle controller, and it is the entry point for
direct messages, server selections and staff commands.

Every failure is caught here and turned into a log entry plus a short reply
to the member; nothing escapes into the gateway event loop.
"""

import asyncio
import collections
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Counter, Dict, List, Optional, Sequence, Union

import discord

from herald.configuration.app_configuration import AppConfig, app_config
from herald.configuration.guild_settings import GuildSettingsManager, guild_settings_manager
from herald.database.database import Database
from herald.datatypes.discord_datatypes import ChannelID, GuildID, UserID
from herald.datatypes.modmail_datatypes import (
    AttachmentRef,
    Clock,
    CloseReason,
    IdleTimeoutPolicy,
    InboundMessage,
    PendingSelectionPolicy,
    PendingServerSelection,
    ResolutionOutcome,
    ThreadRecord,
    utcnow,
)
from herald.modmail.errors import ModmailError, StaleChannelError, ThreadCreationError
from herald.modmail.relay_formatting import (
    acknowledgement_embed,
    blocked_user_embed,
    server_selection_embed,
    staff_reply_embeds,
    unblocked_user_embed,
)
from herald.modmail.server_resolution import ServerResolver
from herald.modmail.thread_lifecycle import ThreadLifecycleController
from herald.modmail.thread_registry import ThreadRegistry
from herald.repositories.thread_history_repo import ThreadStats
from herald.ui.modmail_ui import ServerSelectView
from herald.util.logger import get_logger

logger = get_logger("modmail_service")

NO_ELIGIBLE_GUILDS_MESSAGE = "You are not a member of any servers that have the modmail system enabled."
BLOCKED_MESSAGE = "You have been blocked from using the modmail system."
UNEXPECTED_ERROR_MESSAGE = "There was an unexpected error in the modmail system. Please try again later."
CREATION_FAILED_MESSAGE = "There was an error processing your modmail request. Please try again later."
SELECTION_EXPIRED_MESSAGE = "Your message has expired. Please send a new message to start a modmail thread."
SELECTION_GUILD_MISSING_MESSAGE = "The selected server was not found. Please try contacting a different server."
SELECTION_BLOCKED_MESSAGE = "You have been blocked from using the modmail system in that server."
SELECTION_CONFIRMED_MESSAGE = (
    "You've selected to contact **{guild}**. Your message has been forwarded to their staff team."
)
REPROMPT_NOTICE = "Your previous server selection was replaced by this message."
DEFAULT_GUILD_NOTICE = (
    "You had a server selection open, so this message was sent to **{guild}**. "
    "Your earlier message was discarded."
)
NOT_A_THREAD_MESSAGE = "This channel is not an active modmail thread."
REPLY_UNDELIVERED_MESSAGE = "Could not deliver the reply. The user may have direct messages disabled."
RECEIVED_REACTION = "✅"


class ModmailService:
    """
    Direct message relay between members and guild staff.

    Messages from one member are handled one at a time (a per-member lock), so
    two quick messages can never open two channels.
    """

    def __init__(
        self,
        bot: discord.Bot,
        *,
        settings_manager: GuildSettingsManager = guild_settings_manager,
        config: AppConfig = app_config,
        history: Optional[Database] = None,
        policy: Optional[IdleTimeoutPolicy] = None,
        pending_policy: Optional[PendingSelectionPolicy] = None,
        support_guild_id: Optional[int] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.bot = bot
        self.settings_manager = settings_manager
        self.config = config
        self.history = history
        self._clock = clock

        self.pending_policy = pending_policy or config.pending_selection_policy
        self.support_guild_id = support_guild_id if support_guild_id is not None else config.support_guild_id
        self.blocked_notice_cooldown = config.blocked_notice_cooldown

        self.registry = ThreadRegistry()
        self.resolver = ServerResolver(
            bot,
            settings_manager,
            selection_timeout=config.selection_timeout,
            clock=clock,
        )
        self.lifecycle = ThreadLifecycleController(
            bot,
            self.registry,
            policy=policy or config.idle_timeout_policy,
            settings_manager=settings_manager,
            config=config,
            history=history,
            clock=clock,
        )

        self._blocked_notices: Dict[UserID, datetime] = {}
        self._user_locks: Dict[UserID, asyncio.Lock] = {}
        self._user_lock_holders: Counter[UserID] = collections.Counter()

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    async def handle_direct_message(self, message: discord.Message) -> None:
        """Entry point for every direct message the bot receives."""
        if message.author.bot or message.guild is not None:
            return
        inbound = InboundMessage.from_discord(message)
        await self.process_inbound(inbound)

    @asynccontextmanager
    async def _user_lock(self, user_id: UserID) -> AsyncIterator[None]:
        """Serialise work for one member. The lock is dropped once nobody holds or waits on it."""
        lock = self._user_locks.setdefault(user_id, asyncio.Lock())
        self._user_lock_holders[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._user_lock_holders[user_id] -= 1
            if self._user_lock_holders[user_id] <= 0:
                del self._user_lock_holders[user_id]
                self._user_locks.pop(user_id, None)

    async def process_inbound(self, inbound: InboundMessage) -> None:
        async with self._user_lock(inbound.author_id):
            try:
                await self._dispatch(inbound)
            except Exception:
                logger.exception("[MODMAIL] Failed to handle direct message from user %s", inbound.author_id)
                await self._send_to_member(inbound, content=UNEXPECTED_ERROR_MESSAGE)

    async def _dispatch(self, inbound: InboundMessage) -> None:
        record = self.registry.get(inbound.author_id)
        if record is not None:
            try:
                await self.lifecycle.relay_inbound(record, inbound)
                await self._react(inbound, RECEIVED_REACTION)
                return
            except StaleChannelError:
                # Fall through and open a fresh thread
                await self.lifecycle.discard_stale(record)

        notice = None
        pending = self.resolver.get_pending(inbound.author_id)
        if pending is not None:
            if await self._resolve_pending_conflict(pending, inbound):
                return
            notice = REPROMPT_NOTICE

        result = await self.resolver.resolve(inbound.author_id)
        if result.outcome is ResolutionOutcome.NO_ELIGIBLE_GUILDS:
            await self._send_to_member(inbound, content=NO_ELIGIBLE_GUILDS_MESSAGE)
        elif result.outcome is ResolutionOutcome.BLOCKED:
            if self._should_send_blocked_notice(inbound.author_id):
                await self._send_to_member(inbound, content=BLOCKED_MESSAGE)
        elif result.outcome is ResolutionOutcome.RESOLVED:
            guild = self.resolver.get_guild(result.guild_ids[0])
            if guild is None:
                await self._send_to_member(inbound, content=CREATION_FAILED_MESSAGE)
                return
            await self._deliver(guild, inbound)
        else:
            await self._prompt_selection(inbound, result.guild_ids, notice=notice)

    async def _resolve_pending_conflict(self, pending: PendingServerSelection, inbound: InboundMessage) -> bool:
        """Deal with a new message while a server selection is outstanding.

        Returns:
            True if the message was handled, False if it should be resolved
            (and prompted for) again.
        """
        self.resolver.discard_pending(pending.user_id)

        if self.pending_policy is PendingSelectionPolicy.DEFAULT_GUILD and self.support_guild_id is not None:
            guild = self.resolver.get_guild(self.support_guild_id)
            if (
                guild is not None
                and pending.offers(self.support_guild_id)
                and not self.settings_manager.is_user_blocked(self.support_guild_id, inbound.author_id)
            ):
                logger.info(
                    "[MODMAIL] User %s wrote again during server selection, using support guild %s",
                    inbound.author_id,
                    guild.id,
                )
                await self._deliver(guild, inbound, notice=DEFAULT_GUILD_NOTICE.format(guild=guild.name))
                return True

        logger.info("[MODMAIL] User %s wrote again during server selection, prompting again", inbound.author_id)
        return False

    async def _deliver(
        self,
        guild: discord.Guild,
        inbound: InboundMessage,
        *,
        notice: Optional[str] = None,
    ) -> Optional[ThreadRecord]:
        try:
            record = await self.lifecycle.open_thread(guild, inbound)
        except ThreadCreationError:
            logger.exception("[MODMAIL] Could not open a thread for user %s in guild %s", inbound.author_id, guild.id)
            await self._send_to_member(inbound, content=CREATION_FAILED_MESSAGE)
            return None
        await self._send_to_member(inbound, content=notice, embed=acknowledgement_embed())
        return record

    async def _prompt_selection(
        self,
        inbound: InboundMessage,
        guild_ids: Sequence[GuildID],
        *,
        notice: Optional[str] = None,
    ) -> None:
        guilds = [guild for guild in (self.resolver.get_guild(guild_id) for guild_id in guild_ids) if guild is not None]
        view = ServerSelectView(self, guilds, timeout=self.resolver.selection_timeout)
        prompt = await self._send_to_member(inbound, content=notice, embed=server_selection_embed(), view=view)
        if prompt is None:
            return
        self.resolver.store_pending(
            PendingServerSelection(
                user_id=inbound.author_id,
                message=inbound,
                guild_ids=[GuildID.from_guild(guild) for guild in guilds],
                created_at=self._clock(),
                prompt_message_id=prompt.id,
            )
        )
        logger.info("[MODMAIL] Asked user %s to choose between %d servers", inbound.author_id, len(guilds))

    async def handle_selection(
        self,
        user_id: Union[UserID, int],
        guild_id: Union[GuildID, int],
        prompt_message_id: Optional[int] = None,
    ) -> str:
        """Complete a pending selection. Returns the text to show the member."""
        user_key = UserID(user_id)
        async with self._user_lock(user_key):
            selection = self.resolver.get_pending(user_key)
            if (
                selection is None
                or (prompt_message_id is not None and selection.prompt_message_id != prompt_message_id)
                or not selection.offers(guild_id)
            ):
                return SELECTION_EXPIRED_MESSAGE
            self.resolver.pop_pending(user_key)

            guild = self.resolver.get_guild(guild_id)
            if guild is None or not self.settings_manager.is_modmail_enabled(guild_id):
                return SELECTION_GUILD_MISSING_MESSAGE
            if self.settings_manager.is_user_blocked(guild_id, user_key):
                return SELECTION_BLOCKED_MESSAGE

            try:
                await self.lifecycle.open_thread(guild, selection.message)
            except ThreadCreationError:
                logger.exception("[MODMAIL] Could not open selected thread for user %s in guild %s", user_key, guild.id)
                return CREATION_FAILED_MESSAGE
            return SELECTION_CONFIRMED_MESSAGE.format(guild=guild.name)

    def _should_send_blocked_notice(self, user_id: UserID) -> bool:
        now = self._clock()
        expired = [
            key
            for key, sent_at in self._blocked_notices.items()
            if (now - sent_at).total_seconds() >= self.blocked_notice_cooldown
        ]
        for key in expired:
            del self._blocked_notices[key]

        last = self._blocked_notices.get(user_id)
        if last is not None and (now - last).total_seconds() < self.blocked_notice_cooldown:
            return False
        self._blocked_notices[user_id] = now
        return True

    async def _send_to_member(self, inbound: InboundMessage, **kwargs) -> Optional[discord.Message]:
        """Send into the member's DM channel. Returns the sent message, or None on failure."""
        if kwargs.get("content") is None:
            kwargs.pop("content", None)
        try:
            if inbound.source is not None:
                return await inbound.source.channel.send(**kwargs)
            user = self.bot.get_user(inbound.author_id.to_int()) or await self.bot.fetch_user(inbound.author_id.to_int())
            return await user.send(**kwargs)
        except discord.HTTPException as exc:
            logger.warning("[MODMAIL] Could not message user %s: %s", inbound.author_id, exc)
            return None

    async def _react(self, inbound: InboundMessage, emoji: str) -> None:
        if inbound.source is None:
            return
        try:
            await inbound.source.add_reaction(emoji)
        except discord.HTTPException as exc:
            logger.debug("[MODMAIL] Could not react to message from user %s: %s", inbound.author_id, exc)

    # ------------------------------------------------------------------
    # Staff side
    # ------------------------------------------------------------------

    def thread_for_channel(self, channel_id: Union[ChannelID, int]) -> Optional[ThreadRecord]:
        return self.registry.find_by_channel(channel_id)

    def threads_in_guild(self, guild_id: Union[GuildID, int]) -> List[ThreadRecord]:
        key = GuildID(guild_id)
        return [record for record in self.registry if record.guild_id == key]

    async def staff_reply(
        self,
        channel_id: Union[ChannelID, int],
        staff: Union[discord.Member, discord.User],
        content: str,
        attachments: Sequence[AttachmentRef] = (),
    ) -> ThreadRecord:
        """Relay a staff reply to the member and echo it in the thread channel.

        Raises:
            ModmailError: If the channel is not a thread or the DM failed.
        """
        record = self.thread_for_channel(channel_id)
        if record is None:
            raise ModmailError(NOT_A_THREAD_MESSAGE)

        self.lifecycle.record_activity(record)
        dm_embed, echo_embed = staff_reply_embeds(str(staff), staff.display_avatar.url, content, attachments)
        if not await self.lifecycle.send_dm(record.user_id, embed=dm_embed):
            raise ModmailError(REPLY_UNDELIVERED_MESSAGE)

        channel = self.lifecycle.get_channel(record)
        if channel is not None:
            try:
                await channel.send(embed=echo_embed)
            except discord.HTTPException as exc:
                logger.warning("[MODMAIL] Could not echo staff reply in %s: %s", record.channel_id, exc)
        logger.info("[MODMAIL] %s replied to user %s", staff, record.user_id)
        return record

    async def close(
        self,
        channel_id: Union[ChannelID, int],
        staff: Union[discord.Member, discord.User],
        reason: Optional[str] = None,
    ) -> ThreadRecord:
        """Close the thread bound to ``channel_id`` on behalf of ``staff``.

        Raises:
            ModmailError: If the channel is not an open thread.
        """
        record = self.thread_for_channel(channel_id)
        if record is None:
            raise ModmailError(NOT_A_THREAD_MESSAGE)
        closed = await self.lifecycle.close_thread(
            record.user_id,
            reason=CloseReason.STAFF,
            closed_by=staff,
            note=reason,
            expected=record,
        )
        if closed is None:
            raise ModmailError(NOT_A_THREAD_MESSAGE)
        return closed

    async def close_guild_threads(
        self,
        guild_id: Union[GuildID, int],
        staff: Union[discord.Member, discord.User],
        reason: str,
    ) -> int:
        """Close every open thread of a guild, e.g. when modmail is disabled."""
        closed = 0
        for record in self.threads_in_guild(guild_id):
            if await self.lifecycle.close_thread(
                record.user_id, reason=CloseReason.STAFF, closed_by=staff, note=reason, expected=record
            ):
                closed += 1
        return closed

    async def block_user(
        self,
        guild: discord.Guild,
        user: Union[discord.Member, discord.User],
        moderator: Union[discord.Member, discord.User],
        reason: str,
    ) -> bool:
        """Block ``user`` from this guild's modmail and close their thread there.

        Returns:
            False if the user was already blocked.
        """
        if not self.settings_manager.block_user(
            guild.id, user.id, blocked_by_id=moderator.id, reason=reason, when=self._clock()
        ):
            return False

        record = self.registry.get(user.id)
        if record is not None and record.guild_id == guild.id:
            await self.lifecycle.close_thread(
                user.id, reason=CloseReason.BLOCKED, closed_by=moderator, note=reason, expected=record
            )
        await self.lifecycle.send_dm(user.id, embed=blocked_user_embed(guild.name, reason))
        logger.info("[MODMAIL] %s blocked user %s in guild %s", moderator, user.id, guild.id)
        return True

    async def unblock_user(self, guild: discord.Guild, user: Union[discord.Member, discord.User]) -> bool:
        """Lift a block. Returns False if the user was not blocked."""
        if not self.settings_manager.unblock_user(guild.id, user.id):
            return False
        self._blocked_notices.pop(UserID(user.id), None)
        await self.lifecycle.send_dm(user.id, embed=unblocked_user_embed(guild.name))
        logger.info("[MODMAIL] Unblocked user %s in guild %s", user.id, guild.id)
        return True

    async def stats(self, guild_id: Union[GuildID, int], since: Optional[datetime] = None) -> ThreadStats:
        """Thread history statistics for a guild.

        Raises:
            ModmailError: If no history database is attached.
        """
        if self.history is None:
            raise ModmailError("Modmail statistics are not available.")
        return await self.history.get_thread_stats(GuildID(guild_id), since)

    async def shutdown(self) -> None:
        """Cancel every timer and pending selection."""
        self.resolver.clear()
        await self.lifecycle.shutdown()
        logger.info("[MODMAIL] Modmail service shut down")
