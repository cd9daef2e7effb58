"""Tests for server resolution and pending server selections."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from herald.datatypes.discord_datatypes import GuildID, UserID
from herald.datatypes.modmail_datatypes import InboundMessage, PendingServerSelection, ResolutionOutcome
from herald.modmail.server_resolution import MAX_SELECTION_OPTIONS, ServerResolver

from conftest import FakeDMMessage, FakeUser, http_error


@pytest.fixture
def member():
    return FakeUser("RoyalJester")


@pytest.fixture
def resolver(fake_bot, settings_manager, clock):
    instance = ServerResolver(fake_bot, settings_manager, selection_timeout=300, clock=clock)
    yield instance
    instance.clear()


def modmail_guild(fake_bot, settings_manager, name, *members):
    guild = fake_bot.add_guild(name, members=list(members))
    settings_manager.enable_modmail(guild.id)
    return guild


def selection_for(member, clock, guild_ids, prompt_id=None) -> PendingServerSelection:
    return PendingServerSelection(
        user_id=UserID(member.id),
        message=InboundMessage.from_discord(FakeDMMessage(member, "hello")),
        guild_ids=[GuildID(guild_id) for guild_id in guild_ids],
        created_at=clock(),
        prompt_message_id=prompt_id,
    )


class TestResolve:
    async def test_no_modmail_guilds(self, resolver, member):
        result = await resolver.resolve(UserID(member.id))
        assert result.outcome is ResolutionOutcome.NO_ELIGIBLE_GUILDS

    async def test_guild_without_modmail_is_skipped(self, resolver, fake_bot, member):
        fake_bot.add_guild("Quiet Court", members=[member])
        result = await resolver.resolve(UserID(member.id))
        assert result.outcome is ResolutionOutcome.NO_ELIGIBLE_GUILDS

    async def test_single_guild_resolves(self, resolver, fake_bot, settings_manager, member):
        guild = modmail_guild(fake_bot, settings_manager, "Royal Court", member)
        modmail_guild(fake_bot, settings_manager, "Other Court")

        result = await resolver.resolve(UserID(member.id))

        assert result.outcome is ResolutionOutcome.RESOLVED
        assert result.guild_id == guild.id

    async def test_several_guilds_need_selection_sorted_by_name(self, resolver, fake_bot, settings_manager, member):
        zeta = modmail_guild(fake_bot, settings_manager, "zeta", member)
        alpha = modmail_guild(fake_bot, settings_manager, "Alpha", member)

        result = await resolver.resolve(UserID(member.id))

        assert result.outcome is ResolutionOutcome.NEEDS_SELECTION
        assert result.guild_ids == [alpha.id, zeta.id]

    async def test_blocked_everywhere(self, resolver, fake_bot, settings_manager, member):
        guild = modmail_guild(fake_bot, settings_manager, "Royal Court", member)
        settings_manager.block_user(guild.id, member.id)

        result = await resolver.resolve(UserID(member.id))

        assert result.outcome is ResolutionOutcome.BLOCKED

    async def test_selection_is_capped(self, resolver, fake_bot, settings_manager, member):
        for index in range(MAX_SELECTION_OPTIONS + 3):
            modmail_guild(fake_bot, settings_manager, f"Court {index:02d}", member)

        result = await resolver.resolve(UserID(member.id))

        assert len(result.guild_ids) == MAX_SELECTION_OPTIONS

    async def test_membership_fetched_when_not_cached(self, resolver, fake_bot, settings_manager, member):
        guild = modmail_guild(fake_bot, settings_manager, "Royal Court")
        guild.fetch_member = AsyncMock(return_value=member)

        assert await resolver.is_member(guild, UserID(member.id))

    async def test_membership_lookup_errors_mean_not_a_member(self, resolver, fake_bot, settings_manager, member):
        guild = modmail_guild(fake_bot, settings_manager, "Royal Court")
        guild.fetch_member = AsyncMock(side_effect=http_error())

        assert not await resolver.is_member(guild, UserID(member.id))


class TestPendingSelections:
    async def test_store_and_pop(self, resolver, member, clock):
        selection = selection_for(member, clock, [1, 2], prompt_id=55)
        resolver.store_pending(selection)

        assert resolver.get_pending(member.id) is selection
        assert resolver.pop_pending(member.id, prompt_message_id=54) is None
        assert resolver.pop_pending(member.id, prompt_message_id=55) is selection
        assert resolver.pending_count() == 0

    async def test_new_selection_replaces_old(self, resolver, member, clock):
        first = selection_for(member, clock, [1, 2])
        second = selection_for(member, clock, [1, 2])
        resolver.store_pending(first)
        first_expiry = first.expiry_task

        resolver.store_pending(second)
        await asyncio.sleep(0.01)

        assert resolver.get_pending(member.id) is second
        assert first_expiry.cancelled()
        assert resolver.pending_count() == 1

    async def test_lazy_expiry(self, resolver, member, clock):
        resolver.store_pending(selection_for(member, clock, [1, 2]))

        clock.advance(300)

        assert resolver.get_pending(member.id) is None
        assert resolver.pending_count() == 0

    async def test_expiry_task_discards_selection(self, fake_bot, settings_manager, member, clock):
        resolver = ServerResolver(fake_bot, settings_manager, selection_timeout=0.05, clock=clock)
        resolver.store_pending(selection_for(member, clock, [1, 2]))

        await asyncio.sleep(0.2)

        assert resolver.pending_count() == 0

    async def test_discard(self, resolver, member, clock):
        resolver.store_pending(selection_for(member, clock, [1, 2]))

        assert resolver.discard_pending(member.id)
        assert not resolver.discard_pending(member.id)
