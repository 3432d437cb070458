"""Tests for the SQLite whitelist store and outbox table."""

import sqlite3

import pytest

from ballotproof.exceptions import DatabaseTransactionError, InvalidIdentity
from ballotproof.store import WhitelistStore


@pytest.mark.asyncio
class TestWhitelist:
    async def test_add_returns_new_identities(self, store, voters):
        added = await store.add(0, voters[:3])
        assert added == voters[:3]
        assert await store.identities(0) == voters[:3]
        assert await store.count(0) == 3

    async def test_duplicates_skipped(self, store, voters):
        await store.add(0, voters[:3])
        added = await store.add(0, [voters[1].lower(), voters[3], voters[3]])
        assert added == [voters[3]]
        assert await store.count(0) == 4

    async def test_ballots_are_independent(self, store, voters):
        await store.add(0, voters[:2])
        await store.add(1, voters[:1])
        assert await store.count(0) == 2
        assert await store.count(1) == 1
        assert await store.identities(2) == []

    async def test_invalid_identity_stores_nothing(self, store, voters):
        with pytest.raises(InvalidIdentity):
            await store.add(0, [voters[0], "0xnope"])
        assert await store.count(0) == 0

    async def test_entries_carry_timestamps(self, store, voters):
        await store.add(4, voters[:2])
        entries = await store.entries(4)
        assert [e.identity for e in entries] == voters[:2]
        assert all(e.ballot_id == 4 and e.added_at for e in entries)

    async def test_all_grouped(self, store, voters):
        await store.add(1, voters[2:4])
        await store.add(0, voters[:2])
        grouped = await store.all_grouped()
        assert grouped == {0: voters[:2], 1: voters[2:4]}

    async def test_insert_failure_rolls_back(self, store, voters):
        await store.conn.execute("DROP TABLE whitelist_entries")
        await store.conn.commit()
        with pytest.raises(DatabaseTransactionError) as exc:
            await store.add(0, voters[:1])
        assert isinstance(exc.value.__cause__, sqlite3.Error)


@pytest.mark.asyncio
class TestPersistence:
    async def test_whitelist_survives_reopen(self, db_path, voters):
        async with WhitelistStore(db_path) as store:
            await store.add(0, voters)

        async with WhitelistStore(db_path) as store:
            assert await store.identities(0) == voters

    async def test_meta_written_once(self, db_path):
        async with WhitelistStore(db_path) as store:
            async with store.conn.execute(
                "SELECT value FROM ballotproof_meta WHERE key = 'schema_version'"
            ) as cursor:
                row = await cursor.fetchone()
        assert row is not None

    async def test_not_connected(self, db_path):
        store = WhitelistStore(db_path)
        with pytest.raises(RuntimeError):
            store.conn


@pytest.mark.asyncio
class TestOutboxTable:
    async def test_insert_and_update(self, store):
        row_id = await store.outbox_insert(0, "0x" + "ab" * 32)
        [row] = await store.outbox_rows()
        assert row.id == row_id
        assert row.status == "pending"
        assert row.attempts == 0
        assert row.processed_at is None

        await store.outbox_update(row_id, "failed", 3, "ledger unreachable")
        [row] = await store.outbox_rows(status="failed")
        assert row.attempts == 3
        assert row.last_error == "ledger unreachable"
        assert row.processed_at is not None

    async def test_filters(self, store):
        await store.outbox_insert(0, "0x" + "01" * 32)
        second = await store.outbox_insert(1, "0x" + "02" * 32)
        await store.outbox_insert(1, "0x" + "03" * 32)
        await store.outbox_update(second, "confirmed", 1)

        assert [r.ballot_id for r in await store.outbox_rows(ballot_id=1)] == [1, 1]
        assert [r.id for r in await store.outbox_rows(status="pending", ballot_id=1)] == [second + 1]
        assert len(await store.outbox_rows(status="superseded")) == 0
