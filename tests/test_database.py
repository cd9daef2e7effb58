"""Tests for the database layer and the repositories."""

from datetime import datetime, timedelta, timezone

import pytest

from herald.database.database import Database
from herald.database.db_connection import ConnectionManager
from herald.datatypes.discord_datatypes import ChannelID, GuildID, UserID
from herald.datatypes.guild_settings import BlockedUser, GuildSettings
from herald.repositories.blocked_users_repo import BlockedUsersRepository
from herald.repositories.guild_settings_repo import GuildSettingsRepository, row_to_settings

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "data" / "herald.db")
    assert await database.initialize()
    yield database
    await database.shutdown()


class TestConnection:
    async def test_initialize_creates_file_and_tables(self, db, tmp_path):
        assert db.initialized
        assert (tmp_path / "data" / "herald.db").exists()
        async with db.read() as conn:
            cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            tables = {row[0] for row in await cursor.fetchall()}
        assert {"guild_settings", "modmail_blocked_users", "modmail_thread_history", "schema_version"} <= tables

    async def test_initialize_twice_is_harmless(self, db):
        assert await db.initialize()

    async def test_transaction_rolls_back_on_error(self, db):
        with pytest.raises(RuntimeError):
            async with db.transaction() as conn:
                await GuildSettingsRepository.upsert(conn, GuildSettings(guild_id=GuildID(1)))
                raise RuntimeError("abort")

        async with db.read() as conn:
            assert await GuildSettingsRepository.get(conn, GuildID(1)) is None

    def test_unopened_connection_raises(self):
        with pytest.raises(RuntimeError):
            ConnectionManager().connection

    async def test_shutdown_twice(self, tmp_path):
        database = Database(tmp_path / "herald.db")
        await database.initialize()
        await database.shutdown()
        await database.shutdown()
        assert not database.initialized


class TestGuildSettingsRepository:
    async def test_upsert_and_get(self, db):
        settings = GuildSettings(
            guild_id=GuildID(1),
            logging_channel_id=10,
            setup_completed=True,
            enabled_categories={"MESSAGES": True},
            category_channels={"VOICE": 11},
            ignored_channels=[12],
            ignored_roles=[13],
            modmail_enabled=True,
            modmail_category_id=14,
        )
        async with db.transaction() as conn:
            await GuildSettingsRepository.upsert(conn, settings)
            settings.modmail_staff_role_id = 15
            await GuildSettingsRepository.upsert(conn, settings)

        async with db.read() as conn:
            loaded = await GuildSettingsRepository.get(conn, GuildID(1))
            everything = await GuildSettingsRepository.get_all(conn)

        assert loaded == settings
        assert list(everything) == [GuildID(1)]

    async def test_delete(self, db):
        async with db.transaction() as conn:
            await GuildSettingsRepository.upsert(conn, GuildSettings(guild_id=GuildID(1)))
            await GuildSettingsRepository.delete(conn, GuildID(1))
        async with db.read() as conn:
            assert await GuildSettingsRepository.get_all(conn) == {}

    def test_malformed_json_loads_as_empty(self):
        row = (1, None, 1, "{not json", "[]", "[1, 2]", "null", 0, None, None, None)
        settings = row_to_settings(row)

        assert settings.enabled_categories == {}
        assert settings.category_channels == {}
        assert settings.ignored_channels == [1, 2]
        assert settings.ignored_roles == []


class TestBlockedUsersRepository:
    async def test_upsert_deactivate_and_reactivate(self, db):
        block = BlockedUser(GuildID(1), UserID(2), 3, "Spam", T0)
        async with db.transaction() as conn:
            await BlockedUsersRepository.upsert(conn, block)
        async with db.read() as conn:
            assert await BlockedUsersRepository.get(conn, GuildID(1), UserID(2)) == block

        async with db.transaction() as conn:
            await BlockedUsersRepository.deactivate(conn, GuildID(1), UserID(2))
        async with db.read() as conn:
            assert await BlockedUsersRepository.get(conn, GuildID(1), UserID(2)) is None
            assert await BlockedUsersRepository.get_active(conn) == []

        async with db.transaction() as conn:
            await BlockedUsersRepository.upsert(conn, BlockedUser(GuildID(1), UserID(2), 4, "Again", T0))
        async with db.read() as conn:
            (active,) = await BlockedUsersRepository.get_active(conn)
        assert active.reason == "Again"

    async def test_delete_for_guild(self, db):
        async with db.transaction() as conn:
            await BlockedUsersRepository.upsert(conn, BlockedUser(GuildID(1), UserID(2), None, "", T0))
            await BlockedUsersRepository.upsert(conn, BlockedUser(GuildID(5), UserID(2), None, "", T0))
            await BlockedUsersRepository.delete_for_guild(conn, GuildID(1))
        async with db.read() as conn:
            active = await BlockedUsersRepository.get_active(conn)
        assert [block.guild_id for block in active] == [GuildID(5)]


class TestThreadHistory:
    async def test_open_close_and_stats(self, db):
        guild = GuildID(1)
        await db.log_thread_opened(guild, UserID(10), ChannelID(100), T0)
        await db.log_thread_opened(guild, UserID(11), ChannelID(101), T0)
        await db.log_thread_opened(guild, UserID(10), ChannelID(102), T0 + timedelta(days=2))
        await db.log_thread_opened(GuildID(2), UserID(12), ChannelID(103), T0)

        assert await db.log_thread_closed(ChannelID(100), T0 + timedelta(minutes=10), "staff", 500)
        assert await db.log_thread_closed(ChannelID(101), T0 + timedelta(minutes=20), "inactivity")
        assert not await db.log_thread_closed(ChannelID(100), T0 + timedelta(hours=1), "staff", 500)

        stats = await db.get_thread_stats(guild)
        assert (stats.total, stats.open, stats.closed) == (3, 1, 2)
        assert stats.unique_users == 2
        assert stats.average_duration_seconds == 900
        assert stats.by_reason == {"staff": 1, "inactivity": 1}
        assert stats.top_closers == [(500, 1)]

        recent = await db.get_thread_stats(guild, since=T0 + timedelta(days=1))
        assert (recent.total, recent.open, recent.closed) == (1, 1, 0)
        assert recent.average_duration_seconds is None

    async def test_close_dangling_threads(self, db):
        await db.log_thread_opened(GuildID(1), UserID(10), ChannelID(100), T0)
        await db.log_thread_opened(GuildID(1), UserID(11), ChannelID(101), T0)
        await db.log_thread_closed(ChannelID(100), T0 + timedelta(minutes=1), "staff")

        assert await db.close_dangling_threads(T0 + timedelta(hours=1), "shutdown") == 1

        stats = await db.get_thread_stats(GuildID(1))
        assert stats.open == 0
        assert stats.by_reason == {"staff": 1, "shutdown": 1}
