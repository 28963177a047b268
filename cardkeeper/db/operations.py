"""
Ledger store operations.

Async functions over a session for reading and writing the inventory,
distribution and audit ledgers, and the row-level primitives the
archiver is built from. Callers own the transaction.
"""

from collections.abc import Iterable, Iterator, Sequence
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.db.ledgers import ManagedLedger
from cardkeeper.models.card import CardKey, CardType
from cardkeeper.models.db import (
    AuditLogDB,
    CardInventoryDB,
    CommitLockDB,
    DistributionArchiveDB,
    DistributionRecordDB,
)
from cardkeeper.models.ledger import AuditRow, DistributionRow
from cardkeeper.services.normalizer import normalize_card_number

# Keep IN (...) lists well under driver parameter limits
IN_CLAUSE_CHUNK = 500


def _chunks(values: Sequence[int] | Sequence[str], size: int = IN_CLAUSE_CHUNK) -> Iterator[list]:
    for start in range(0, len(values), size):
        yield list(values[start : start + size])


# Serializes every write that adds distribution records
ISSUANCE_LOCK = "issuance"


# --- Inventory Operations ---


async def load_inventory_rows(session: AsyncSession) -> list[tuple[str, str]]:
    """Return every (card_type, card_number) in the inventory, in insertion order."""
    result = await session.execute(
        select(CardInventoryDB.card_type, CardInventoryDB.card_number).order_by(
            CardInventoryDB.id
        )
    )
    return [(row.card_type, row.card_number) for row in result]


async def find_inventory_numbers(
    session: AsyncSession, card_type: CardType, numbers: Iterable[str]
) -> set[str]:
    """Return the subset of normalized numbers present in the inventory for a type."""
    wanted = sorted(set(numbers))
    found: set[str] = set()
    for chunk in _chunks(wanted):
        result = await session.execute(
            select(CardInventoryDB.card_number).where(
                CardInventoryDB.card_type == card_type.value,
                CardInventoryDB.card_number.in_(chunk),
            )
        )
        found.update(result.scalars().all())
    return found


async def insert_inventory_cards(
    session: AsyncSession, card_type: CardType, numbers: Iterable[str], added_by: str
) -> int:
    """Append cards to the inventory. Numbers must already be normalized."""
    records = [
        CardInventoryDB(card_type=card_type.value, card_number=number, added_by=added_by)
        for number in numbers
    ]
    session.add_all(records)
    await session.flush()
    return len(records)


async def delete_inventory_cards(
    session: AsyncSession, card_type: CardType, numbers: Iterable[str]
) -> int:
    """Remove cards from the inventory. Returns the number of rows deleted."""
    deleted = 0
    for chunk in _chunks(sorted(set(numbers))):
        result = await session.execute(
            delete(CardInventoryDB).where(
                CardInventoryDB.card_type == card_type.value,
                CardInventoryDB.card_number.in_(chunk),
            )
        )
        # rowcount is available on DELETE results; type stubs incomplete for async
        deleted += int(result.rowcount)  # type: ignore[attr-defined]
    return deleted


# --- Lock Operations ---


async def acquire_commit_lock(session: AsyncSession, name: str, holder: str) -> None:
    """
    Take a store-level lock that is held until the session's transaction ends.

    The lock is a write to the named row of commit_locks. PostgreSQL blocks
    other writers of that row; SQLite blocks every other writer. Call it
    before the reads the commit unit depends on.
    """
    now = datetime.now(UTC)
    result = await session.execute(
        update(CommitLockDB)
        .where(CommitLockDB.name == name)
        .values(holder=holder, acquired_at=now)
    )
    if result.rowcount == 0:  # type: ignore[attr-defined]
        session.add(CommitLockDB(name=name, holder=holder, acquired_at=now))
        await session.flush()


# --- Distribution Operations ---


async def read_usage_batch(
    session: AsyncSession,
    model: type[DistributionRecordDB] | type[DistributionArchiveDB],
    after_id: int,
    limit: int,
) -> list[tuple[int, str, str]]:
    """
    Read one batch of (id, card_type, card_number) from a distribution ledger.

    Keyset pagination: rows with id > after_id, ascending, at most limit.
    """
    result = await session.execute(
        select(model.id, model.card_type, model.card_number)
        .where(model.id > after_id)
        .order_by(model.id)
        .limit(limit)
    )
    return [(row.id, row.card_type, row.card_number) for row in result]


async def find_issued_keys(session: AsyncSession, keys: Iterable[CardKey]) -> set[CardKey]:
    """
    Return which of the given keys appear in the active or archived distribution ledger.

    Reads the store directly, never the cache.
    """
    wanted = {(key.card_type.value, key.number): key for key in keys}
    numbers = sorted({number for _, number in wanted})
    found: set[CardKey] = set()

    for model in (DistributionRecordDB, DistributionArchiveDB):
        for chunk in _chunks(numbers):
            result = await session.execute(
                select(model.card_type, model.card_number).where(model.card_number.in_(chunk))
            )
            for row in result:
                hit = wanted.get((row.card_type, normalize_card_number(row.card_number)))
                if hit is not None:
                    found.add(hit)
    return found


async def insert_distribution_rows(
    session: AsyncSession, rows: Iterable[DistributionRow]
) -> list[DistributionRecordDB]:
    """Append issuance rows to the active ledger. Returns them with ids assigned."""
    records = [
        DistributionRecordDB(
            recorded_at=row.recorded_at.astimezone(UTC),
            client_name=row.client_name,
            card_type=row.card_key.card_type.value,
            card_number=row.card_key.number,
            issued_by=row.issued_by,
            mode=row.mode.value,
            signature_ref=row.signature_ref,
            notes=row.notes,
        )
        for row in rows
    ]
    session.add_all(records)
    await session.flush()
    return records


async def get_distribution_record(
    session: AsyncSession, record_id: int
) -> DistributionRecordDB | None:
    """Get an active issuance record by id."""
    return await session.get(DistributionRecordDB, record_id)


async def delete_distribution_record(session: AsyncSession, record: DistributionRecordDB) -> None:
    """Remove an active issuance record."""
    await session.delete(record)
    await session.flush()


# --- Audit Operations ---


async def append_audit_entries(session: AsyncSession, entries: Iterable[AuditRow]) -> int:
    """Append entries to the active audit log."""
    records = [
        AuditLogDB(
            recorded_at=entry.recorded_at.astimezone(UTC),
            actor=entry.actor,
            action=entry.action,
            card_type=entry.card_key.card_type.value,
            card_number=entry.card_key.number,
            detail=entry.detail,
        )
        for entry in entries
    ]
    session.add_all(records)
    await session.flush()
    return len(records)


# --- Archive Operations ---


async def count_rows(session: AsyncSession, model: type) -> int:
    """Count rows in a ledger table."""
    result = await session.execute(select(func.count()).select_from(model))
    return int(result.scalar_one())


async def ensure_archive_table(session: AsyncSession, ledger: ManagedLedger) -> None:
    """Create the archive table if it does not exist yet."""
    conn = await session.connection()
    table = ledger.archive.__table__
    await conn.run_sync(lambda sync_conn: table.create(sync_conn, checkfirst=True))


async def list_row_ids(session: AsyncSession, ledger: ManagedLedger) -> list[int]:
    """Return active row ids in row order."""
    model = ledger.active
    result = await session.execute(select(model.id).order_by(model.id))
    return list(result.scalars().all())


async def select_aged_row_ids(
    session: AsyncSession, ledger: ManagedLedger, cutoff: datetime
) -> list[int]:
    """Return ids of active rows recorded at or before cutoff, in row order."""
    model = ledger.active
    result = await session.execute(
        select(model.id).where(model.recorded_at <= cutoff.astimezone(UTC)).order_by(model.id)
    )
    return list(result.scalars().all())


async def select_oldest_row_ids(
    session: AsyncSession, ledger: ManagedLedger, after: datetime, limit: int
) -> list[int]:
    """Return up to limit ids of the oldest active rows recorded after a cutoff."""
    if limit <= 0:
        return []
    model = ledger.active
    result = await session.execute(
        select(model.id)
        .where(model.recorded_at > after.astimezone(UTC))
        .order_by(model.recorded_at, model.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def copy_rows_to_archive(
    session: AsyncSession, ledger: ManagedLedger, row_ids: Sequence[int]
) -> int:
    """
    Copy active rows into the archive table, in row order.

    Column values are copied verbatim; each archive row records the id it
    was copied from.
    """
    copied = 0
    for chunk in _chunks(sorted(row_ids)):
        result = await session.execute(
            select(ledger.active).where(ledger.active.id.in_(chunk)).order_by(ledger.active.id)
        )
        archived = [
            ledger.archive(
                source_row_id=row.id,
                **{name: getattr(row, name) for name in ledger.fields},
            )
            for row in result.scalars()
        ]
        session.add_all(archived)
        copied += len(archived)
    await session.flush()
    return copied


async def delete_row_range(
    session: AsyncSession, ledger: ManagedLedger, first_id: int, last_id: int
) -> int:
    """Delete active rows with first_id <= id <= last_id. Returns rows deleted."""
    model = ledger.active
    result = await session.execute(delete(model).where(model.id.between(first_id, last_id)))
    return int(result.rowcount)  # type: ignore[attr-defined]
