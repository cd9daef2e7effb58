"""
Data structures for the modmail relay.

A :class:`ThreadRecord` exists for every member with an open modmail
conversation and owns that conversation's idle timers. A
:class:`PendingServerSelection` holds a first message while the member picks
which guild to contact. :class:`IdleTimeoutPolicy` carries the warning,
final warning, and close offsets measured from the last activity.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import discord

from herald.datatypes.discord_datatypes import ChannelID, GuildID, UserID

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Default clock for modmail state: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class ThreadStatus(str, Enum):
    """Lifecycle state of a thread record. CLOSED records leave the registry."""

    OPEN = "open"
    CLOSED = "closed"


class IdleStage(Enum):
    """The three deferred actions of the idle timeout sequence, in firing order."""

    WARNING = "warning"
    FINAL_WARNING = "final_warning"
    AUTO_CLOSE = "auto_close"


class CloseReason(str, Enum):
    """Why a thread was closed; stored in the thread history."""

    INACTIVITY = "inactivity"
    STAFF = "staff"
    BLOCKED = "blocked"
    SHUTDOWN = "shutdown"
    CHANNEL_DELETED = "channel_deleted"


class PendingSelectionPolicy(str, Enum):
    """What to do with a new direct message while a server selection is pending."""

    REPROMPT = "reprompt"
    DEFAULT_GUILD = "default_guild"

    @classmethod
    def parse(cls, value: object) -> "PendingSelectionPolicy":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.REPROMPT


class ResolutionOutcome(Enum):
    """Result kinds of server resolution."""

    NO_ELIGIBLE_GUILDS = "no_eligible_guilds"
    BLOCKED = "blocked"
    RESOLVED = "resolved"
    NEEDS_SELECTION = "needs_selection"


@dataclass(slots=True)
class WarningFlags:
    """Per-idle-period guards so each warning is sent at most once."""

    thirty_second_warning: bool = False
    final_warning: bool = False

    def reset(self) -> None:
        self.thirty_second_warning = False
        self.final_warning = False


@dataclass(slots=True)
class ThreadTimers:
    """
    Pending idle-timeout tasks owned by one thread record.

    Attributes:
        tasks (Dict[IdleStage, asyncio.Task]): One scheduled task per stage.
    """

    tasks: Dict[IdleStage, asyncio.Task] = field(default_factory=dict)

    def set(self, stage: IdleStage, task: asyncio.Task) -> None:
        previous = self.tasks.get(stage)
        if previous is not None and previous is not task and not previous.done():
            previous.cancel()
        self.tasks[stage] = task

    def get(self, stage: IdleStage) -> Optional[asyncio.Task]:
        return self.tasks.get(stage)

    def pending(self) -> List[asyncio.Task]:
        """Return the tasks that have not finished yet."""
        return [task for task in self.tasks.values() if not task.done()]

    def cancel_all(self) -> int:
        """Cancel every pending stage task and forget them.

        The task running this call (an auto-close firing) is left alone so it
        can finish its own side effects.

        Returns:
            Number of tasks that were cancelled.
        """
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None

        cancelled = 0
        for task in self.tasks.values():
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1
        self.tasks.clear()
        return cancelled


@dataclass(frozen=True, slots=True)
class AttachmentRef:
    """A file attached to a relayed message, referenced by link."""

    filename: str
    url: str

    @classmethod
    def from_attachment(cls, attachment: discord.Attachment) -> "AttachmentRef":
        return cls(filename=attachment.filename, url=attachment.url)


@dataclass(slots=True)
class InboundMessage:
    """
    A member's direct message, captured so it can be relayed later.

    ``source`` keeps the original :class:`discord.Message` so the sender can be
    answered with a reply or reaction once the message has been delivered.
    """

    author_id: UserID
    author_tag: str
    author_name: str
    content: str
    account_created_at: datetime
    attachments: Tuple[AttachmentRef, ...] = ()
    avatar_url: Optional[str] = None
    source: Optional[discord.Message] = None

    @classmethod
    def from_discord(cls, message: discord.Message) -> "InboundMessage":
        author = message.author
        avatar = getattr(author, "display_avatar", None)
        return cls(
            author_id=UserID.from_user(author),
            author_tag=str(author),
            author_name=author.name,
            content=message.content or "",
            account_created_at=author.created_at,
            attachments=tuple(AttachmentRef.from_attachment(a) for a in message.attachments),
            avatar_url=getattr(avatar, "url", None),
            source=message,
        )


@dataclass(slots=True)
class ThreadRecord:
    """
    One open modmail conversation.

    Attributes:
        user_id: Member the conversation belongs to; the registry key.
        channel_id: Guild-side support channel.
        guild_id: Guild the conversation is scoped to.
        created_at: When the thread was opened.
        last_activity_at: Last message from either side. Never decreases.
        status: OPEN until the thread is closed and removed.
        warnings_sent: Idle warning guards for the current idle period.
        timers: Pending idle-timeout tasks.
        user_tag: Display tag of the member, for staff-facing embeds.
    """

    user_id: UserID
    channel_id: ChannelID
    guild_id: GuildID
    created_at: datetime
    last_activity_at: datetime
    status: ThreadStatus = ThreadStatus.OPEN
    warnings_sent: WarningFlags = field(default_factory=WarningFlags)
    timers: ThreadTimers = field(default_factory=ThreadTimers)
    user_tag: str = ""

    @property
    def is_open(self) -> bool:
        return self.status is ThreadStatus.OPEN

    def touch(self, when: datetime) -> bool:
        """Record activity at ``when`` and start a new idle period.

        ``last_activity_at`` only moves forward; an older timestamp still
        starts a new idle period but leaves the stored time unchanged.

        Returns:
            True if ``last_activity_at`` advanced.
        """
        self.warnings_sent.reset()
        if when > self.last_activity_at:
            self.last_activity_at = when
            return True
        return False

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_activity_at).total_seconds()

    def duration(self, now: datetime) -> timedelta:
        return now - self.created_at


@dataclass(slots=True)
class PendingServerSelection:
    """
    A first message waiting for the member to choose a guild.

    Attributes:
        user_id: Member who sent the message.
        message: The captured message to relay once a guild is chosen.
        guild_ids: Guilds offered in the prompt.
        created_at: When the prompt was sent.
        prompt_message_id: ID of the prompt message, used to reject stale selections.
        expiry_task: Task that discards this entry when the selection window ends.
    """

    user_id: UserID
    message: InboundMessage
    guild_ids: List[GuildID]
    created_at: datetime
    prompt_message_id: Optional[int] = None
    expiry_task: Optional[asyncio.Task] = None

    def is_expired(self, now: datetime, timeout_seconds: float) -> bool:
        return (now - self.created_at).total_seconds() >= timeout_seconds

    def offers(self, guild_id: GuildID | int) -> bool:
        return any(candidate == guild_id for candidate in self.guild_ids)


@dataclass(frozen=True, slots=True)
class IdleTimeoutPolicy:
    """
    Offsets of the idle timeout sequence, in seconds since last activity.

    Raises:
        ValueError: If the offsets are not strictly increasing and positive.
    """

    warning_after: float = 30.0
    final_warning_after: float = 50.0
    close_after: float = 60.0
    deletion_grace: float = 10.0

    def __post_init__(self) -> None:
        if not 0 < self.warning_after < self.final_warning_after < self.close_after:
            raise ValueError(
                "Idle timeout offsets must satisfy 0 < warning < final warning < close "
                f"(got {self.warning_after}, {self.final_warning_after}, {self.close_after})"
            )
        if self.deletion_grace < 0:
            raise ValueError(f"Deletion grace must be non-negative (got {self.deletion_grace})")

    def offset_for(self, stage: IdleStage) -> float:
        return {
            IdleStage.WARNING: self.warning_after,
            IdleStage.FINAL_WARNING: self.final_warning_after,
            IdleStage.AUTO_CLOSE: self.close_after,
        }[stage]

    def seconds_remaining(self, stage: IdleStage) -> int:
        """Seconds between ``stage`` firing and the auto-close."""
        return int(round(self.close_after - self.offset_for(stage)))


@dataclass(slots=True)
class ResolutionResult:
    """Outcome of resolving which guild a direct message belongs to."""

    outcome: ResolutionOutcome
    guild_ids: List[GuildID] = field(default_factory=list)

    @property
    def guild_id(self) -> Optional[GuildID]:
        """The resolved guild when exactly one applies."""
        if self.outcome is ResolutionOutcome.RESOLVED and self.guild_ids:
            return self.guild_ids[0]
        return None
