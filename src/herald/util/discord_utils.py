"""Small helpers around py-cord objects shared by the cogs."""

from typing import Iterable, Optional

import discord

from herald.util.logger import get_logger

logger = get_logger("discord_utils")


def has_any_permission(application_context: discord.ApplicationContext, *permission_names: str) -> bool:
    """Return True if the issuer has at least one of ``permission_names`` (administrator always counts)."""
    if not isinstance(application_context.author, discord.Member):
        return False
    permissions = application_context.author.guild_permissions
    if getattr(permissions, "administrator", False):
        return True
    return any(getattr(permissions, name, False) for name in permission_names)


def has_ignored_role(member: Optional[discord.abc.User], ignored_role_ids: Iterable[int]) -> bool:
    """Return True if ``member`` carries any of the ignored roles."""
    ignored = set(ignored_role_ids)
    if not ignored or not isinstance(member, discord.Member):
        return False
    return any(role.id in ignored for role in member.roles)


async def safe_send(channel: discord.abc.Messageable, **kwargs) -> Optional[discord.Message]:
    """Send to ``channel``, logging instead of raising when Discord refuses."""
    try:
        return await channel.send(**kwargs)
    except discord.Forbidden:
        logger.warning("[DISCORD UTILS] Missing permissions to send in %s", getattr(channel, "id", channel))
    except discord.HTTPException as exc:
        logger.warning("[DISCORD UTILS] Failed to send in %s: %s", getattr(channel, "id", channel), exc)
    return None
