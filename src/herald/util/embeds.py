"""
Branded embed builders.

Every embed the Herald sends carries the configured footer and a timestamp.
Colours for the common message kinds are defined here so cogs and the modmail
formatter agree on them.
"""

import datetime
from typing import Iterable, Optional, Tuple

import discord

from herald.configuration.app_configuration import app_config
from herald.datatypes.log_categories import LogCategory

SUCCESS_COLOR = discord.Colour(0x77B255)
ERROR_COLOR = discord.Colour(0xFF0000)
INFO_COLOR = discord.Colour(0x5865F2)
WARNING_COLOR = discord.Colour(0xFFA500)
DANGER_COLOR = discord.Colour(0xF04747)
REPLY_COLOR = discord.Colour(0x43B581)
UPDATE_COLOR = discord.Colour(0x3498DB)
REMOVE_COLOR = discord.Colour(0xDD2E44)

Field = Tuple[str, str, bool]


def create_embed(
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[discord.Colour] = None,
    fields: Iterable[Field] = (),
    footer: Optional[str] = None,
    author_name: Optional[str] = None,
    author_icon: Optional[str] = None,
    thumbnail: Optional[str] = None,
    timestamp: bool = True,
) -> discord.Embed:
    """Build an embed with the bot's colour, footer and a timestamp.

    Args:
        title: Embed title.
        description: Embed body.
        color: Overrides the configured brand colour.
        fields: ``(name, value, inline)`` triples.
        footer: Overrides the configured footer text.
        author_name: Optional author line.
        author_icon: Icon URL for the author line.
        thumbnail: Thumbnail URL.
        timestamp: Whether to stamp the embed with the current time.
    """
    embed = discord.Embed(
        title=title,
        description=description,
        color=color or app_config.embed_color,
        timestamp=datetime.datetime.now(datetime.timezone.utc) if timestamp else None,
    )
    for name, value, inline in fields:
        embed.add_field(name=name, value=value, inline=inline)
    if author_name:
        if author_icon:
            embed.set_author(name=author_name, icon_url=author_icon)
        else:
            embed.set_author(name=author_name)
    if thumbnail:
        embed.set_thumbnail(url=thumbnail)
    embed.set_footer(text=footer or app_config.embed_footer)
    return embed


def success_embed(message: str, title: str = "✅ Success") -> discord.Embed:
    return create_embed(title=title, description=message, color=SUCCESS_COLOR)


def error_embed(message: str, command: Optional[str] = None) -> discord.Embed:
    fields = [("Command", command, True)] if command else []
    return create_embed(title="❌ Error", description=message, color=ERROR_COLOR, fields=fields)


def log_embed(
    category: LogCategory,
    action: str,
    description: Optional[str] = None,
    *,
    fields: Iterable[Field] = (),
    thumbnail: Optional[str] = None,
    color: Optional[discord.Colour] = None,
) -> discord.Embed:
    """Build a server log entry titled ``<emoji> <Category>: <action>``.

    Without an explicit colour, actions containing "Created"/"Joined" are green,
    "Deleted"/"Left" red and "Updated"/"Edited"/"Moved" blue.
    """
    info = app_config.log_categories[category]
    if color is None:
        if any(word in action for word in ("Created", "Joined")):
            color = SUCCESS_COLOR
        elif any(word in action for word in ("Deleted", "Left")):
            color = REMOVE_COLOR
        elif any(word in action for word in ("Updated", "Edited", "Moved")):
            color = UPDATE_COLOR
    return create_embed(
        title=f"{info.emoji} {info.name}: {action}",
        description=description,
        color=color,
        fields=fields,
        thumbnail=thumbnail,
    )
