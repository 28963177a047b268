"""Tests for ledger store operations."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.db.ledgers import DISTRIBUTION_LEDGER
from cardkeeper.db.operations import (
    IN_CLAUSE_CHUNK,
    acquire_commit_lock,
    append_audit_entries,
    copy_rows_to_archive,
    count_rows,
    delete_inventory_cards,
    delete_row_range,
    find_inventory_numbers,
    find_issued_keys,
    insert_distribution_rows,
    insert_inventory_cards,
    list_row_ids,
    load_inventory_rows,
    read_usage_batch,
    select_aged_row_ids,
    select_oldest_row_ids,
)
from cardkeeper.models.card import CardKey, CardType
from cardkeeper.models.db import (
    AuditLogDB,
    CommitLockDB,
    DistributionArchiveDB,
    DistributionRecordDB,
)
from cardkeeper.models.ledger import AuditRow, DistributionRow

NOW = datetime(2024, 6, 1, tzinfo=UTC)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


def distribution_row(number: str, recorded_at: datetime = NOW) -> DistributionRow:
    return DistributionRow(
        recorded_at=recorded_at,
        client_name="Pat",
        card_key=CardKey(CardType.WALMART, number),
        issued_by="sam",
    )


class TestInventoryOperations:
    async def test_insert_and_load(self, session: AsyncSession) -> None:
        await insert_inventory_cards(session, CardType.TARGET, ["T2", "T1"], added_by="manager")
        await session.commit()

        rows = await load_inventory_rows(session)

        assert rows == [("Target", "T2"), ("Target", "T1")]

    async def test_find_is_per_type(self, session: AsyncSession) -> None:
        await insert_inventory_cards(session, CardType.WALMART, ["1", "2"], added_by="m")
        await insert_inventory_cards(session, CardType.TARGET, ["3"], added_by="m")

        found = await find_inventory_numbers(session, CardType.WALMART, ["1", "3", "9"])

        assert found == {"1"}

    async def test_find_chunks_large_lists(self, session: AsyncSession) -> None:
        numbers = [f"N{i}" for i in range(IN_CLAUSE_CHUNK * 2 + 5)]
        await insert_inventory_cards(session, CardType.WALMART, numbers, added_by="m")

        found = await find_inventory_numbers(session, CardType.WALMART, numbers)

        assert found == set(numbers)

    async def test_delete(self, session: AsyncSession) -> None:
        await insert_inventory_cards(session, CardType.WALMART, ["1", "2"], added_by="m")

        deleted = await delete_inventory_cards(session, CardType.WALMART, ["2", "7"])

        assert deleted == 1
        assert await load_inventory_rows(session) == [("Walmart", "1")]


class TestDistributionOperations:
    async def test_insert_assigns_ids(self, session: AsyncSession) -> None:
        records = await insert_distribution_rows(session, [distribution_row("A")])

        assert records[0].id is not None
        assert records[0].mode == "normal"

    async def test_read_usage_batch_keyset(self, session: AsyncSession) -> None:
        records = await insert_distribution_rows(
            session, [distribution_row(n) for n in ("A", "B", "C")]
        )

        first = await read_usage_batch(session, DistributionRecordDB, 0, 2)
        rest = await read_usage_batch(session, DistributionRecordDB, first[-1][0], 2)

        assert [row[2] for row in first] == ["A", "B"]
        assert rest == [(records[2].id, "Walmart", "C")]

    async def test_find_issued_keys_checks_archive(self, session: AsyncSession) -> None:
        await insert_distribution_rows(session, [distribution_row("A")])
        session.add(
            DistributionArchiveDB(
                source_row_id=1,
                recorded_at=NOW,
                client_name="Pat",
                card_type="Walmart",
                card_number="B",
                issued_by="sam",
            )
        )
        await session.flush()

        taken = await find_issued_keys(
            session,
            [
                CardKey(CardType.WALMART, "A"),
                CardKey(CardType.WALMART, "B"),
                CardKey(CardType.WALMART, "C"),
                CardKey(CardType.TARGET, "A"),
            ],
        )

        assert taken == {CardKey(CardType.WALMART, "A"), CardKey(CardType.WALMART, "B")}

    async def test_append_audit_entries(self, session: AsyncSession) -> None:
        written = await append_audit_entries(
            session,
            [AuditRow(NOW, "sam", "issue", CardKey(CardType.BUS_PASS, "7"), detail="x")],
        )

        assert written == 1
        assert await count_rows(session, AuditLogDB) == 1


class TestLockOperations:
    async def test_lock_row_created_then_reused(self, session: AsyncSession) -> None:
        await acquire_commit_lock(session, "issuance", "sam")
        await session.commit()
        await acquire_commit_lock(session, "issuance", "alex")
        await session.commit()

        locks = (await session.execute(select(CommitLockDB))).scalars().all()

        assert [(lock.name, lock.holder) for lock in locks] == [("issuance", "alex")]


class TestArchiveOperations:
    async def test_select_and_copy(self, session: AsyncSession) -> None:
        old = NOW - timedelta(days=100)
        records = await insert_distribution_rows(
            session,
            [
                distribution_row("OLD1", old),
                distribution_row("NEW1", NOW),
                distribution_row("OLD2", old),
                distribution_row("NEW2", NOW + timedelta(hours=1)),
            ],
        )
        ids = [r.id for r in records]
        cutoff = NOW - timedelta(days=90)

        aged = await select_aged_row_ids(session, DISTRIBUTION_LEDGER, cutoff)
        oldest = await select_oldest_row_ids(session, DISTRIBUTION_LEDGER, cutoff, 1)
        copied = await copy_rows_to_archive(session, DISTRIBUTION_LEDGER, aged)

        assert aged == [ids[0], ids[2]]
        assert oldest == [ids[1]]
        assert copied == 2
        assert await count_rows(session, DistributionArchiveDB) == 2
        assert await select_oldest_row_ids(session, DISTRIBUTION_LEDGER, cutoff, 0) == []

    async def test_delete_row_range(self, session: AsyncSession) -> None:
        records = await insert_distribution_rows(
            session, [distribution_row(n) for n in ("A", "B", "C", "D")]
        )
        ids = [r.id for r in records]

        deleted = await delete_row_range(session, DISTRIBUTION_LEDGER, ids[1], ids[2])

        assert deleted == 2
        assert await list_row_ids(session, DISTRIBUTION_LEDGER) == [ids[0], ids[3]]
