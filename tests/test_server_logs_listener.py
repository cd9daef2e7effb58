"""Tests for the server logs listener."""

from types import SimpleNamespace

import pytest

from herald.bot.cogs import server_logs_listener
from herald.bot.cogs.server_logs_listener import ServerLogsListenerCog
from herald.datatypes.log_categories import LogCategory

from conftest import FakeRole, FakeUser, http_error, staff_member


@pytest.fixture
def manager(settings_manager, monkeypatch):
    monkeypatch.setattr(server_logs_listener, "guild_settings_manager", settings_manager)
    return settings_manager


@pytest.fixture
def cog(fake_bot):
    return ServerLogsListenerCog(fake_bot)


@pytest.fixture
def guild(fake_bot):
    return fake_bot.add_guild("Royal Court")


@pytest.fixture
def log_channel(fake_bot, guild):
    return fake_bot.add_channel(guild, "monkey-logs")


@pytest.fixture
def general(fake_bot, guild):
    return fake_bot.add_channel(guild, "general")


@pytest.fixture
def configured(manager, guild, log_channel):
    manager.complete_setup(guild.id, log_channel.id, list(LogCategory))
    return manager


def message(guild, channel, author, content):
    return SimpleNamespace(
        guild=guild,
        channel=channel,
        author=author,
        content=content,
        jump_url="https://discord.com/channels/1/2/3",
    )


class TestResolveLogChannel:
    def test_requires_setup(self, cog, manager, guild, log_channel):
        manager.set_category_enabled(guild.id, LogCategory.MESSAGES, True)
        assert cog.resolve_log_channel(guild, LogCategory.MESSAGES) is None

    def test_disabled_category(self, cog, configured, guild):
        configured.set_category_enabled(guild.id, LogCategory.VOICE, False)
        assert cog.resolve_log_channel(guild, LogCategory.VOICE) is None

    def test_main_channel_and_override(self, cog, configured, fake_bot, guild, log_channel):
        voice_logs = fake_bot.add_channel(guild, "voice-logs")
        configured.set_category_channel(guild.id, LogCategory.VOICE, voice_logs.id)

        assert cog.resolve_log_channel(guild, LogCategory.MESSAGES) is log_channel
        assert cog.resolve_log_channel(guild, LogCategory.VOICE) is voice_logs

    def test_ignored_channel(self, cog, configured, guild, general):
        configured.toggle_ignored_channel(guild.id, general.id)
        assert cog.resolve_log_channel(guild, LogCategory.MESSAGES, source_channel_id=general.id) is None

    def test_ignored_role(self, cog, configured, guild):
        role = FakeRole("Muted")
        member = staff_member("Jester")
        member.roles = [role]
        configured.toggle_ignored_role(guild.id, role.id)

        assert cog.resolve_log_channel(guild, LogCategory.MEMBERS, actor=member) is None
        assert cog.resolve_log_channel(guild, LogCategory.MEMBERS, actor=staff_member("Duchess")) is not None

    def test_log_channel_events_are_skipped(self, cog, configured, guild, log_channel):
        assert cog.resolve_log_channel(guild, LogCategory.CHANNELS, source_channel_id=log_channel.id) is None

    def test_no_guild(self, cog, configured):
        assert cog.resolve_log_channel(None, LogCategory.MESSAGES) is None


class TestMessageEvents:
    async def test_delete_is_logged(self, cog, configured, guild, general, log_channel):
        author = FakeUser("RoyalJester")

        await cog.on_message_delete(message(guild, general, author, "oops"))

        (entry,) = log_channel.sent
        embed = entry["embed"]
        assert embed.title == "💬 Messages: Message Deleted"
        assert embed.fields[0].value == "oops"
        assert author.mention in embed.description

    async def test_bot_and_dm_messages_are_skipped(self, cog, configured, guild, general, log_channel):
        await cog.on_message_delete(message(guild, general, FakeUser("Bot", bot=True), "beep"))
        await cog.on_message_delete(message(None, general, FakeUser("RoyalJester"), "hi"))

        assert log_channel.sent == []

    async def test_edit_is_logged_only_when_content_changes(self, cog, configured, guild, general, log_channel):
        author = FakeUser("RoyalJester")
        before = message(guild, general, author, "helo")
        after = message(guild, general, author, "hello")

        await cog.on_message_edit(before, before)
        await cog.on_message_edit(before, after)

        (entry,) = log_channel.sent
        fields = {field.name: field.value for field in entry["embed"].fields}
        assert fields == {"Before": "helo", "After": "hello"}

    async def test_long_and_empty_content_is_clipped(self, cog, configured, guild, general, log_channel):
        await cog.on_message_delete(message(guild, general, FakeUser("RoyalJester"), "x" * 2000))
        await cog.on_message_delete(message(guild, general, FakeUser("RoyalJester"), ""))

        long_value, empty_value = (entry["embed"].fields[0].value for entry in log_channel.sent)
        assert len(long_value) == 1024
        assert empty_value == "[No text content]"

    async def test_send_failure_is_swallowed(self, cog, configured, guild, general, log_channel):
        log_channel.fail_with = http_error()

        await cog.on_message_delete(message(guild, general, FakeUser("RoyalJester"), "oops"))

        assert log_channel.sent == []


class TestMemberAndGuildEvents:
    async def test_member_join_and_leave(self, cog, configured, guild, log_channel):
        member = FakeUser("RoyalJester")
        member.guild = guild

        await cog.on_member_join(member)
        await cog.on_member_remove(member)

        assert log_channel.embed_titles() == ["👥 Members: Member Joined", "👥 Members: Member Left"]

    async def test_role_events(self, cog, configured, guild, log_channel):
        role = FakeRole("Knights")
        role.guild = guild

        await cog.on_guild_role_create(role)
        await cog.on_guild_role_delete(role)

        assert log_channel.embed_titles() == ["👑 Roles: Role Created", "👑 Roles: Role Deleted"]

    async def test_channel_events(self, cog, configured, guild, general, log_channel):
        await cog.on_guild_channel_create(general)
        await cog.on_guild_channel_delete(general)
        await cog.on_guild_channel_delete(log_channel)

        assert log_channel.embed_titles() == ["📝 Channels: Channel Created", "📝 Channels: Channel Deleted"]

    async def test_voice_events(self, cog, configured, fake_bot, guild, log_channel):
        member = staff_member("Duchess")
        member.guild = guild
        hall = fake_bot.add_channel(guild, "Great Hall")
        tower = fake_bot.add_channel(guild, "Tower")

        def state(channel):
            return SimpleNamespace(channel=channel)

        await cog.on_voice_state_update(member, state(None), state(hall))
        await cog.on_voice_state_update(member, state(hall), state(tower))
        await cog.on_voice_state_update(member, state(tower), state(None))
        await cog.on_voice_state_update(member, state(tower), state(tower))

        assert log_channel.embed_titles() == [
            "🔊 Voice: Member Joined",
            "🔊 Voice: Member Moved",
            "🔊 Voice: Member Left",
        ]


def test_setup_registers_cog(fake_bot):
    added = []

    server_logs_listener.setup(SimpleNamespace(add_cog=added.append))

    assert isinstance(added[0], ServerLogsListenerCog)
