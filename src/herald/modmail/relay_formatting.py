"""
Embeds and names for everything the modmail relay posts.

Member messages and staff replies share one layout: the author line, the text
(or a placeholder), and an "Attachments" field listing ``[name](url)`` links.
"""

import re
from typing import Optional, Sequence, Tuple

import discord

from herald.datatypes.modmail_datatypes import AttachmentRef, IdleStage, InboundMessage
from herald.util.embeds import (
    DANGER_COLOR,
    ERROR_COLOR,
    INFO_COLOR,
    REPLY_COLOR,
    SUCCESS_COLOR,
    WARNING_COLOR,
    create_embed,
)
from herald.util.format_utils import discord_timestamp, format_duration

EMPTY_CONTENT_PLACEHOLDER = "[No text content]"
STAFF_REPLY_FOOTER = "Staff Reply"
THREAD_COMMANDS_HELP = (
    "`/modmail close` - Close this thread\n"
    "`/modmail reply` - Reply to user\n"
    "`/modmail block` - Block user from modmail"
)

# Discord limits
DESCRIPTION_LIMIT = 4096
FIELD_VALUE_LIMIT = 1024
CHANNEL_NAME_LIMIT = 100

_CHANNEL_NAME_INVALID = re.compile(r"[^a-z0-9_-]+")


def thread_channel_name(prefix: str, username: str, user_id: int) -> str:
    """Deterministic support channel name, e.g. ``modmail-royal_jester``.

    Names are lower-cased with unsupported characters collapsed to ``-``.
    A name that sanitises to nothing falls back to the member's id.
    """
    slug = _CHANNEL_NAME_INVALID.sub("-", username.lower()).strip("-")
    if not slug:
        slug = str(user_id)
    return f"{prefix}{slug}"[:CHANNEL_NAME_LIMIT]


def thread_topic(user_tag: str, user_id: int) -> str:
    return f"Modmail thread with {user_tag} ({user_id})"


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def format_attachments(attachments: Sequence[AttachmentRef]) -> Optional[str]:
    """Markdown links for attachments, or None when there are none."""
    if not attachments:
        return None
    lines = []
    used = 0
    for index, attachment in enumerate(attachments):
        line = f"[{attachment.filename}]({attachment.url})"
        # Leave room for the "...and N more" line
        if used + len(line) + 1 > FIELD_VALUE_LIMIT - 20:
            lines.append(f"...and {len(attachments) - index} more")
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)


def relay_embed(
    *,
    author_name: str,
    author_icon: Optional[str],
    content: str,
    attachments: Sequence[AttachmentRef] = (),
    color: discord.Colour = INFO_COLOR,
    footer: str,
) -> discord.Embed:
    """The shared layout for relayed messages in both directions."""
    attachment_links = format_attachments(attachments)
    fields = [("Attachments", attachment_links, False)] if attachment_links else []
    return create_embed(
        author_name=author_name,
        author_icon=author_icon,
        description=_truncate(content or EMPTY_CONTENT_PLACEHOLDER, DESCRIPTION_LIMIT),
        color=color,
        fields=fields,
        footer=footer,
    )


def inbound_relay_embed(message: InboundMessage) -> discord.Embed:
    """A member's direct message as shown in the support channel."""
    return relay_embed(
        author_name=message.author_tag,
        author_icon=message.avatar_url,
        content=message.content,
        attachments=message.attachments,
        footer=f"User ID: {message.author_id}",
    )


def staff_reply_embeds(
    staff_tag: str,
    staff_icon: Optional[str],
    content: str,
    attachments: Sequence[AttachmentRef] = (),
) -> Tuple[discord.Embed, discord.Embed]:
    """Return ``(dm_embed, channel_embed)`` for a staff reply."""
    author_name = f"{staff_tag} (Staff)"
    dm = relay_embed(
        author_name=author_name,
        author_icon=staff_icon,
        content=content,
        attachments=attachments,
        color=REPLY_COLOR,
        footer=STAFF_REPLY_FOOTER,
    )
    echo = relay_embed(
        author_name=author_name,
        author_icon=staff_icon,
        content=content,
        attachments=attachments,
        color=INFO_COLOR,
        footer=STAFF_REPLY_FOOTER,
    )
    return dm, echo


def thread_header_embed(message: InboundMessage) -> discord.Embed:
    return create_embed(
        title=f"New Modmail Thread - {message.author_tag}",
        description="A new modmail conversation has been started.",
        thumbnail=message.avatar_url,
        color=INFO_COLOR,
        fields=[
            ("User", f"{message.author_tag} ({message.author_id})", True),
            ("Account Created", discord_timestamp(message.account_created_at, "R"), True),
            ("Commands", THREAD_COMMANDS_HELP, False),
        ],
    )


def acknowledgement_embed() -> discord.Embed:
    return create_embed(
        title="✅ Message Received",
        description=(
            "Thank you for contacting us! Your message has been sent to our support team. "
            "A staff member will reply to you as soon as possible."
        ),
        color=REPLY_COLOR,
    )


def server_selection_embed() -> discord.Embed:
    return create_embed(
        title="📬 Server Selection",
        description=(
            "You are a member of multiple servers that use our modmail system. "
            "Please select which server you would like to contact:"
        ),
        color=INFO_COLOR,
    )


# -------------------- Idle timeout --------------------

def idle_warning_embeds(stage: IdleStage, seconds_left: int) -> Tuple[discord.Embed, discord.Embed]:
    """Return ``(channel_embed, dm_embed)`` for a warning stage."""
    if stage is IdleStage.WARNING:
        channel = create_embed(
            title="⚠️ Inactivity Warning",
            description=f"This thread will automatically close in {seconds_left} seconds due to inactivity.",
            color=WARNING_COLOR,
        )
        dm = create_embed(
            title="⚠️ Modmail Thread Closing Soon",
            description=(
                f"Your modmail thread will close in {seconds_left} seconds due to inactivity. "
                "Send a message to keep it open."
            ),
            color=WARNING_COLOR,
        )
        return channel, dm
    if stage is IdleStage.FINAL_WARNING:
        channel = create_embed(
            title="⚠️ Final Warning",
            description=f"This thread will automatically close in {seconds_left} seconds due to inactivity.",
            color=ERROR_COLOR,
        )
        dm = create_embed(
            title="⚠️ Modmail Thread Closing",
            description=(
                f"Your modmail thread will close in {seconds_left} seconds due to inactivity. "
                "Send a message now to keep it open."
            ),
            color=ERROR_COLOR,
        )
        return channel, dm
    raise ValueError(f"{stage} is not a warning stage")


def _idle_span(seconds: float) -> str:
    seconds = int(seconds)
    if seconds % 60 == 0:
        minutes = seconds // 60
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return format_duration(seconds)


def auto_close_embeds(
    user_tag: str,
    user_id: int,
    duration_seconds: float,
    idle_seconds: float,
) -> Tuple[discord.Embed, discord.Embed]:
    """Return ``(channel_embed, dm_embed)`` for an inactivity close."""
    span = _idle_span(idle_seconds)
    channel = create_embed(
        title="🔒 Thread Auto-Closed",
        description=f"This modmail thread has been automatically closed due to {span} of inactivity.",
        color=DANGER_COLOR,
        fields=[
            ("User", f"{user_tag} ({user_id})", True),
            ("Thread Duration", format_duration(duration_seconds), True),
        ],
    )
    dm = create_embed(
        title="🔒 Modmail Thread Closed",
        description=(
            f"Your modmail thread has been automatically closed due to {span} of inactivity. "
            "Feel free to send a new message if you need further assistance."
        ),
        color=DANGER_COLOR,
    )
    return channel, dm


def staff_close_embeds(
    closed_by_tag: str,
    user_tag: str,
    user_id: int,
    reason: str,
    duration_seconds: float,
) -> Tuple[discord.Embed, discord.Embed]:
    """Return ``(channel_embed, dm_embed)`` for a staff close."""
    channel = create_embed(
        title="🔒 Thread Closed",
        description=f"This modmail thread has been closed by {closed_by_tag}.",
        color=DANGER_COLOR,
        fields=[
            ("User", f"{user_tag} ({user_id})", True),
            ("Reason", reason, True),
            ("Thread Duration", format_duration(duration_seconds), True),
        ],
    )
    dm = create_embed(
        title="📝 Modmail Thread Closed",
        description="Your modmail thread has been closed by a staff member.",
        color=DANGER_COLOR,
        fields=[
            ("Reason", reason, False),
            ("Need more help?", "You can send another message anytime to open a new modmail thread.", False),
        ],
    )
    return channel, dm


def blocked_thread_embed(user_tag: str, moderator_tag: str, reason: str) -> discord.Embed:
    return create_embed(
        title="🚫 User Blocked",
        description=f"This thread is being closed because {user_tag} has been blocked from using modmail.",
        color=DANGER_COLOR,
        fields=[("Blocked By", moderator_tag, True), ("Reason", reason, True)],
    )


def blocked_user_embed(guild_name: str, reason: str) -> discord.Embed:
    return create_embed(
        title="🚫 You Have Been Blocked",
        description=f"You have been blocked from using the modmail system in **{guild_name}**.",
        color=DANGER_COLOR,
        fields=[("Reason", reason, False)],
    )


def unblocked_user_embed(guild_name: str) -> discord.Embed:
    return create_embed(
        title="✅ Modmail Access Restored",
        description=f"You have been unblocked and can now use the modmail system in **{guild_name}** again.",
        color=SUCCESS_COLOR,
    )


def deletion_notice(grace_seconds: float) -> str:
    return f"This channel will be deleted in {int(grace_seconds)} seconds."
