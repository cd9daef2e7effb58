"""Tests for the modmail thread lifecycle: opening, idle timeouts and closing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from herald.datatypes.discord_datatypes import UserID
from herald.datatypes.modmail_datatypes import CloseReason, IdleStage, IdleTimeoutPolicy, InboundMessage
from herald.modmail.errors import StaleChannelError, ThreadCreationError
from herald.modmail.thread_lifecycle import ThreadLifecycleController
from herald.modmail.thread_registry import ThreadRegistry

from conftest import FakeRole, FakeUser


def inbound(user: FakeUser, content: str = "hello") -> InboundMessage:
    return InboundMessage(
        author_id=UserID(user.id),
        author_tag=str(user),
        author_name=user.name,
        content=content,
        account_created_at=user.created_at,
        avatar_url=user.display_avatar.url,
    )


@pytest.fixture
def member():
    return FakeUser("RoyalJester")


@pytest.fixture
def staff_role():
    return FakeRole("Staff")


@pytest.fixture
def guild(fake_bot, member, staff_role):
    return fake_bot.add_guild("Royal Court", members=[member], roles=[staff_role])


@pytest.fixture
async def lifecycle(fake_bot, settings_manager, policy, clock):
    controller = ThreadLifecycleController(
        fake_bot,
        ThreadRegistry(),
        policy=policy,
        settings_manager=settings_manager,
        clock=clock,
    )
    yield controller
    await controller.shutdown()


class TestOpenThread:
    async def test_creates_channel_header_and_first_message(self, lifecycle, guild, member, staff_role, settings_manager):
        record = await lifecycle.open_thread(guild, inbound(member))

        channel = lifecycle.get_channel(record)
        assert channel is not None
        assert channel.name == "modmail-royaljester"
        assert channel.category.name == "MODMAIL TICKETS"
        assert str(member.id) in channel.topic

        header, first = channel.sent
        assert header["content"] == staff_role.mention
        assert header["embed"].title == "New Modmail Thread - RoyalJester"
        assert first["embed"].description == "hello"

        assert lifecycle.registry.get(member.id) is record
        assert record.is_open
        assert settings_manager.get_guild_settings(guild.id).modmail_category_id == channel.category.id

    async def test_reuses_existing_category(self, lifecycle, fake_bot, guild):
        first_user, second_user = FakeUser("alice"), FakeUser("bob")
        guild.members.update({first_user.id: first_user, second_user.id: second_user})

        await lifecycle.open_thread(guild, inbound(first_user))
        await lifecycle.open_thread(guild, inbound(second_user))

        assert guild.create_category_calls == 1
        assert len(lifecycle.registry) == 2

    async def test_second_thread_for_same_member_is_rejected(self, lifecycle, guild, member):
        await lifecycle.open_thread(guild, inbound(member))

        with pytest.raises(ThreadCreationError):
            await lifecycle.open_thread(guild, inbound(member, "again"))
        assert len(lifecycle.registry) == 1

    async def test_channel_creation_failure_registers_nothing(self, lifecycle, guild, member):
        guild.fail_channel_creation = True

        with pytest.raises(ThreadCreationError):
            await lifecycle.open_thread(guild, inbound(member))
        assert len(lifecycle.registry) == 0

    async def test_history_row_written(self, fake_bot, settings_manager, policy, clock, guild, member):
        history = AsyncMock()
        controller = ThreadLifecycleController(
            fake_bot, ThreadRegistry(), policy=policy, settings_manager=settings_manager, history=history, clock=clock
        )
        record = await controller.open_thread(guild, inbound(member))

        history.log_thread_opened.assert_awaited_once_with(record.guild_id, record.user_id, record.channel_id, clock.now)
        await controller.shutdown()
        history.log_thread_closed.assert_awaited_once()
        assert history.log_thread_closed.await_args.args[2] == CloseReason.SHUTDOWN.value


class TestIdleTimeout:
    async def test_full_sequence_in_order(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        clock.advance(30)
        assert await lifecycle.run_stage(member.id, IdleStage.WARNING)
        clock.advance(20)
        assert await lifecycle.run_stage(member.id, IdleStage.FINAL_WARNING)
        clock.advance(10)
        assert await lifecycle.run_stage(member.id, IdleStage.AUTO_CLOSE)

        assert channel.embed_titles()[2:] == ["⚠️ Inactivity Warning", "⚠️ Final Warning", "🔒 Thread Auto-Closed"]
        assert "30 seconds" in channel.sent[2]["embed"].description
        assert "10 seconds" in channel.sent[3]["embed"].description
        assert "1 minute of inactivity" in channel.sent[4]["embed"].description
        assert channel.sent[4]["content"] == "This channel will be deleted in 10 seconds."

        assert member.embed_titles() == [
            "⚠️ Modmail Thread Closing Soon",
            "⚠️ Modmail Thread Closing",
            "🔒 Modmail Thread Closed",
        ]
        assert len(lifecycle.registry) == 0
        assert not record.is_open
        assert lifecycle.pending_deletions() == 1

    async def test_stage_not_due_yet_does_nothing(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))

        clock.advance(29)
        assert not await lifecycle.run_stage(member.id, IdleStage.WARNING)
        assert not record.warnings_sent.thirty_second_warning

    async def test_warning_is_sent_once_per_idle_period(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        clock.advance(31)
        assert await lifecycle.run_stage(member.id, IdleStage.WARNING)
        assert not await lifecycle.run_stage(member.id, IdleStage.WARNING)
        assert channel.embed_titles().count("⚠️ Inactivity Warning") == 1

    async def test_activity_starts_a_new_idle_period(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        clock.advance(25)
        lifecycle.record_activity(record)
        clock.advance(10)
        assert not await lifecycle.run_stage(member.id, IdleStage.WARNING)
        assert not await lifecycle.run_stage(member.id, IdleStage.AUTO_CLOSE)
        assert "⚠️ Inactivity Warning" not in channel.embed_titles()

        clock.advance(20)
        assert await lifecycle.run_stage(member.id, IdleStage.WARNING)
        assert record.is_open

    async def test_activity_after_warning_allows_another_warning(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))

        clock.advance(30)
        assert await lifecycle.run_stage(member.id, IdleStage.WARNING)
        await lifecycle.relay_inbound(record, inbound(member, "still here"))
        assert not record.warnings_sent.thirty_second_warning

        clock.advance(30)
        assert await lifecycle.run_stage(member.id, IdleStage.WARNING)

    async def test_rescheduling_replaces_stage_tasks(self, lifecycle, guild, member):
        record = await lifecycle.open_thread(guild, inbound(member))
        old_tasks = dict(record.timers.tasks)

        lifecycle.record_activity(record)
        await asyncio.sleep(0.01)

        assert set(record.timers.tasks) == set(IdleStage)
        for stage, task in old_tasks.items():
            assert task.cancelled() or task.done()
            assert record.timers.get(stage) is not task

    async def test_late_timer_for_replaced_record_is_ignored(self, lifecycle, guild, member, clock):
        first = await lifecycle.open_thread(guild, inbound(member))
        await lifecycle.close_thread(member.id, reason=CloseReason.STAFF)
        second = await lifecycle.open_thread(guild, inbound(member, "new conversation"))

        clock.advance(60)
        assert not await lifecycle.run_stage(member.id, IdleStage.AUTO_CLOSE, expected=first)
        assert lifecycle.registry.get(member.id) is second

    async def test_deleted_channel_drops_the_thread(self, lifecycle, fake_bot, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))
        fake_bot.channels.pop(record.channel_id.to_int())

        clock.advance(30)
        assert not await lifecycle.run_stage(member.id, IdleStage.WARNING)
        assert len(lifecycle.registry) == 0
        assert member.sent == []

    async def test_real_timers_fire_in_order(self, fake_bot, settings_manager, guild, member):
        controller = ThreadLifecycleController(
            fake_bot,
            ThreadRegistry(),
            policy=IdleTimeoutPolicy(warning_after=0.05, final_warning_after=0.1, close_after=0.15, deletion_grace=0),
            settings_manager=settings_manager,
        )
        record = await controller.open_thread(guild, inbound(member))
        channel = controller.get_channel(record)

        await asyncio.sleep(0.5)

        assert channel.embed_titles()[2:] == ["⚠️ Inactivity Warning", "⚠️ Final Warning", "🔒 Thread Auto-Closed"]
        channel.delete.assert_awaited_once()
        assert len(controller.registry) == 0
        await controller.shutdown()


class TestRelayAndClose:
    async def test_relay_inbound_posts_and_records_activity(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        clock.advance(12)
        await lifecycle.relay_inbound(record, inbound(member, "more details"))

        assert channel.sent[-1]["embed"].description == "more details"
        assert record.last_activity_at == clock.now

    async def test_slow_relay_does_not_race_auto_close(self, lifecycle, guild, member, clock):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)
        original_send = channel.send
        fired = []

        async def slow_send(content=None, **kwargs):
            # The close deadline passes while the relay is still in flight
            clock.advance(5)
            fired.append(await lifecycle.run_stage(member.id, IdleStage.AUTO_CLOSE))
            return await original_send(content, **kwargs)

        channel.send = slow_send
        clock.advance(58)
        await lifecycle.relay_inbound(record, inbound(member, "still here"))

        assert fired == [False]
        assert lifecycle.registry.get(member.id) is record
        assert record.is_open
        assert channel.sent[-1]["embed"].description == "still here"
        channel.delete.assert_not_awaited()

    async def test_relay_into_missing_channel_raises_stale(self, lifecycle, fake_bot, guild, member):
        record = await lifecycle.open_thread(guild, inbound(member))
        fake_bot.channels.pop(record.channel_id.to_int())

        with pytest.raises(StaleChannelError):
            await lifecycle.relay_inbound(record, inbound(member, "anyone?"))

    async def test_staff_close_notifies_both_sides(self, lifecycle, fake_bot, guild, member, clock, settings_manager):
        log_channel = fake_bot.add_channel(guild, "modmail-logs")
        settings_manager.enable_modmail(guild.id, log_channel_id=log_channel.id)
        moderator = FakeUser("Duchess")
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        clock.advance(125)
        closed = await lifecycle.close_thread(member.id, reason=CloseReason.STAFF, closed_by=moderator, note="Resolved")

        assert closed is record
        notice = channel.sent[-1]["embed"]
        assert notice.title == "🔒 Thread Closed"
        assert notice.description == "This modmail thread has been closed by Duchess."
        fields = {field.name: field.value for field in notice.fields}
        assert fields["Reason"] == "Resolved"
        assert fields["Thread Duration"] == "2m 5s"
        assert log_channel.embed_titles() == ["🔒 Thread Closed"]
        assert member.embed_titles() == ["📝 Modmail Thread Closed"]

    async def test_close_without_note_uses_default_reason(self, lifecycle, guild, member):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        await lifecycle.close_thread(member.id, reason=CloseReason.STAFF)

        fields = {field.name: field.value for field in channel.sent[-1]["embed"].fields}
        assert fields["Reason"] == "No reason provided"

    async def test_blocked_close_does_not_dm(self, lifecycle, guild, member):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)

        await lifecycle.close_thread(member.id, reason=CloseReason.BLOCKED, note="Spam")

        assert channel.sent[-1]["embed"].title == "🚫 User Blocked"
        assert member.sent == []

    async def test_closing_twice_is_a_no_op(self, lifecycle, guild, member):
        await lifecycle.open_thread(guild, inbound(member))

        assert await lifecycle.close_thread(member.id, reason=CloseReason.STAFF) is not None
        assert await lifecycle.close_thread(member.id, reason=CloseReason.STAFF) is None
        assert lifecycle.pending_deletions() == 1

    async def test_close_cancels_timers(self, lifecycle, guild, member):
        record = await lifecycle.open_thread(guild, inbound(member))
        tasks = list(record.timers.tasks.values())

        await lifecycle.close_thread(member.id, reason=CloseReason.STAFF)
        await asyncio.sleep(0.01)

        assert all(task.cancelled() for task in tasks)
        assert record.timers.tasks == {}

    async def test_shutdown_deletes_channels_immediately(self, lifecycle, guild, member):
        record = await lifecycle.open_thread(guild, inbound(member))
        channel = lifecycle.get_channel(record)
        await lifecycle.close_thread(member.id, reason=CloseReason.STAFF)

        await lifecycle.shutdown()

        channel.delete.assert_awaited_once()
        assert lifecycle.pending_deletions() == 0

    async def test_send_dm_reports_closed_dms(self, lifecycle, member, fake_bot):
        fake_bot.users[member.id] = member
        member.dm_closed = True

        assert await lifecycle.send_dm(member.id, content="hi") is False
