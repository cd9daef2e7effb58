"""
Pytest configuration and fixtures for Herald tests.

The fakes below stand in for the handful of py-cord objects the modmail relay
touches. They record what was sent so tests can assert on the conversation.
"""

import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import discord  # noqa: E402

from herald.configuration.guild_settings import GuildSettingsManager  # noqa: E402
from herald.datatypes.modmail_datatypes import IdleTimeoutPolicy  # noqa: E402

_ids = itertools.count(900_000_000_000_000_000)

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def next_id() -> int:
    return next(_ids)


def not_found(text: str = "Unknown Channel") -> discord.NotFound:
    return discord.NotFound(MagicMock(status=404, reason="Not Found"), text)


def http_error(text: str = "Internal Server Error") -> discord.HTTPException:
    return discord.HTTPException(MagicMock(status=500, reason="Internal Server Error"), text)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeUser:
    def __init__(self, name: str, user_id: int | None = None, *, bot: bool = False):
        self.id = user_id or next_id()
        self.name = name
        self.bot = bot
        self.created_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
        self.display_avatar = SimpleNamespace(url=f"https://cdn.example/avatars/{self.id}.png")
        self.mention = f"<@{self.id}>"
        self.sent: list[dict] = []
        self.dm_closed = False

    def __str__(self) -> str:
        return self.name

    def __hash__(self) -> int:
        return hash(self.id)

    async def send(self, content=None, **kwargs):
        if self.dm_closed:
            raise discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "Cannot send messages to this user")
        self.sent.append({"content": content, **kwargs})
        return SimpleNamespace(id=next_id())

    def embed_titles(self) -> list:
        return [entry["embed"].title for entry in self.sent if entry.get("embed") is not None]


class FakeChannel:
    def __init__(self, bot: "FakeBot", guild: "FakeGuild", name: str, **options):
        self.id = next_id()
        self.name = name
        self.guild = guild
        self.category = options.get("category")
        self.topic = options.get("topic")
        self.mention = f"<#{self.id}>"
        self.sent: list[dict] = []
        self.fail_with: Exception | None = None
        self._bot = bot
        self.delete = AsyncMock(side_effect=self._on_delete)

    def _on_delete(self, reason=None):
        self._bot.channels.pop(self.id, None)
        self.guild.channels.pop(self.id, None)

    async def send(self, content=None, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"content": content, **kwargs})
        return SimpleNamespace(id=next_id())

    def embed_titles(self) -> list:
        return [entry["embed"].title for entry in self.sent if entry.get("embed") is not None]


class FakeRole:
    def __init__(self, name: str):
        self.id = next_id()
        self.name = name
        self.mention = f"<@&{self.id}>"

    def __hash__(self) -> int:
        return hash(self.id)


class FakeGuild:
    def __init__(self, bot: "FakeBot", name: str, members=(), roles=()):
        self.id = next_id()
        self.name = name
        self._bot = bot
        self.members = {member.id: member for member in members}
        self.channels: dict = {}
        self.categories: list = []
        self.roles = list(roles)
        self.default_role = FakeRole("@everyone")
        self.me = FakeUser(f"{name}-bot", bot=True)
        self.owner = FakeUser(f"{name}-owner")
        self.create_category_calls = 0
        self.fail_channel_creation = False

    def get_member(self, user_id: int):
        return self.members.get(user_id)

    async def fetch_member(self, user_id: int):
        raise discord.NotFound(MagicMock(status=404, reason="Not Found"), "Unknown Member")

    def get_channel(self, channel_id: int):
        return self.channels.get(channel_id)

    def get_role(self, role_id: int):
        return next((role for role in self.roles if role.id == role_id), None)

    async def create_category(self, name, overwrites=None, reason=None):
        self.create_category_calls += 1
        category = MagicMock(spec=discord.CategoryChannel)
        category.id = next_id()
        category.name = name
        category.overwrites = overwrites
        self.categories.append(category)
        self.channels[category.id] = category
        return category

    async def create_text_channel(self, name, **options):
        if self.fail_channel_creation:
            raise discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "Missing Permissions")
        channel = FakeChannel(self._bot, self, name, **options)
        self.channels[channel.id] = channel
        self._bot.channels[channel.id] = channel
        return channel


class FakeBot:
    def __init__(self):
        self.guild_map: dict = {}
        self.channels: dict = {}
        self.users: dict = {}
        self.user = SimpleNamespace(id=1, name="Monkey Bytes")
        self.latency = 0.042

    @property
    def guilds(self) -> list:
        return list(self.guild_map.values())

    def add_guild(self, name: str, members=(), roles=()) -> FakeGuild:
        guild = FakeGuild(self, name, members, roles)
        self.guild_map[guild.id] = guild
        for member in members:
            self.users[member.id] = member
        return guild

    def add_channel(self, guild: FakeGuild, name: str) -> FakeChannel:
        channel = FakeChannel(self, guild, name)
        guild.channels[channel.id] = channel
        self.channels[channel.id] = channel
        return channel

    def get_guild(self, guild_id: int):
        return self.guild_map.get(guild_id)

    def get_channel(self, channel_id: int):
        return self.channels.get(channel_id)

    def get_user(self, user_id: int):
        return self.users.get(user_id)

    async def fetch_user(self, user_id: int):
        user = self.users.get(user_id)
        if user is None:
            raise not_found("Unknown User")
        return user


class FakeDMChannel:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, content=None, **kwargs):
        message = SimpleNamespace(id=next_id())
        self.sent.append({"content": content, "id": message.id, **kwargs})
        return message


class FakeDMMessage:
    def __init__(self, author: FakeUser, content: str, attachments=()):
        self.id = next_id()
        self.author = author
        self.content = content
        self.attachments = list(attachments)
        self.guild = None
        self.channel = getattr(author, "dm_channel", None) or FakeDMChannel()
        author.dm_channel = self.channel
        self.add_reaction = AsyncMock()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_bot():
    return FakeBot()


@pytest.fixture
def settings_manager(monkeypatch):
    """A fresh settings manager whose background writes are recorded instead of run."""
    manager = GuildSettingsManager()
    monkeypatch.setattr(manager, "_trigger_persist", MagicMock())
    monkeypatch.setattr(manager, "_trigger_persist_block", MagicMock())
    return manager


@pytest.fixture
def policy():
    return IdleTimeoutPolicy(warning_after=30, final_warning_after=50, close_after=60, deletion_grace=10)


def staff_member(name: str = "Duchess", **permissions) -> MagicMock:
    """A guild member issuing slash commands, with the given guild permissions."""
    member = MagicMock(spec=discord.Member)
    member.id = next_id()
    member.name = name
    member.display_name = name
    member.mention = f"<@{member.id}>"
    member.bot = False
    member.roles = []
    member.guild_permissions = SimpleNamespace(**permissions)
    member.__str__.return_value = name
    return member


def make_ctx(author, guild=None, channel=None) -> SimpleNamespace:
    """Application context stand-in; responses are recorded on AsyncMocks."""
    return SimpleNamespace(
        author=author,
        user=author,
        guild=guild,
        guild_id=guild.id if guild is not None else None,
        channel=channel,
        channel_id=channel.id if channel is not None else None,
        respond=AsyncMock(),
        defer=AsyncMock(),
        send_followup=AsyncMock(),
        send_modal=AsyncMock(),
    )


def sent_embed(mock: AsyncMock) -> discord.Embed:
    """The embed passed to the last call of a respond/send_followup mock."""
    return mock.call_args.kwargs["embed"]
