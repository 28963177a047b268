"""
Archiver — keeps the active ledgers small.

Every usage-cache rebuild scans the active distribution ledger first, so
its size bounds rebuild latency. The archiver moves rows out of each
managed ledger into the ledger's archive twin:

1. Rows older than the age threshold.
2. High-water trimming: if the ledger is still over max_active_rows,
   the oldest remaining rows, at most trim_batch of them.

Rows are copied first, then deleted in contiguous blocks from the
highest row down. Archival never changes which cards are used; a row
that is copied but fails to delete exists in both tables, which the
used set absorbs.

Failure policy:
- A failed block delete is logged and alerted; remaining blocks continue
- A failure of the run as a whole is alerted and re-raised
- The Usage Cache is invalidated once per run, even after a failure
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.config import settings
from cardkeeper.db.ledgers import MANAGED_LEDGERS, ManagedLedger
from cardkeeper.db.operations import (
    copy_rows_to_archive,
    count_rows,
    delete_row_range,
    ensure_archive_table,
    list_row_ids,
    select_aged_row_ids,
    select_oldest_row_ids,
)
from cardkeeper.models.failure import ValidationError
from cardkeeper.services.notifier import Notifier
from cardkeeper.services.usage_cache import UsageCache

logger = logging.getLogger(__name__)


@dataclass
class LedgerArchiveResult:
    """What one archive run did to one ledger."""

    ledger: str
    aged: int = 0
    trimmed: int = 0
    copied: int = 0
    deleted: int = 0
    remaining: int = 0
    failed_blocks: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class ArchiveReport:
    """Outcome of one archive run."""

    started_at: datetime
    cutoff: datetime
    ledgers: list[LedgerArchiveResult] = field(default_factory=list)

    @property
    def total_archived(self) -> int:
        return sum(result.copied for result in self.ledgers)

    @property
    def has_failures(self) -> bool:
        return any(result.failed_blocks for result in self.ledgers)


def plan_trim(total_rows: int, aged_rows: int, max_active_rows: int, trim_batch: int) -> int:
    """
    Number of extra rows to trim beyond the age-based selection.

    Enough to bring the ledger down to max_active_rows, never more than
    trim_batch.
    """
    remaining = total_rows - aged_rows
    if remaining <= max_active_rows:
        return 0
    return min(trim_batch, remaining - max_active_rows)


def contiguous_blocks(ordered_ids: Sequence[int], selected: set[int]) -> list[tuple[int, int]]:
    """
    Group selected rows into runs that are adjacent in the current row order.

    Returns (first_id, last_id) pairs, highest block first, so deleting
    them in order never disturbs a block still waiting to be deleted.
    """
    blocks: list[tuple[int, int]] = []
    start: int | None = None
    previous: int | None = None

    for row_id in ordered_ids:
        if row_id in selected:
            if start is None:
                start = row_id
            previous = row_id
        elif start is not None and previous is not None:
            blocks.append((start, previous))
            start = None

    if start is not None and previous is not None:
        blocks.append((start, previous))

    blocks.reverse()
    return blocks


class Archiver:
    """Moves old and excess rows from the active ledgers to their archives."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        usage_cache: UsageCache,
        notifier: Notifier,
        ledgers: Sequence[ManagedLedger] = MANAGED_LEDGERS,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.session_factory = session_factory
        self.usage_cache = usage_cache
        self.notifier = notifier
        self.ledgers = tuple(ledgers)
        self.now = now

    async def archive(
        self,
        threshold_days: int | None = None,
        max_active_rows: int | None = None,
        trim_batch: int | None = None,
    ) -> ArchiveReport:
        """
        Run one archival pass over every managed ledger.

        Args:
            threshold_days: Rows at least this old are archived
            max_active_rows: Cap on active rows after the pass
            trim_batch: Most rows trimmed per ledger beyond the age selection

        Raises:
            ValidationError: If a parameter is not positive
            Exception: Any failure of the run is re-raised after alerting
        """
        threshold_days = (
            threshold_days if threshold_days is not None else settings.archive_threshold_days
        )
        max_active_rows = (
            max_active_rows if max_active_rows is not None else settings.archive_max_active_rows
        )
        trim_batch = trim_batch if trim_batch is not None else settings.archive_trim_batch
        if threshold_days <= 0 or max_active_rows <= 0 or trim_batch < 0:
            raise ValidationError(
                "Archive parameters must be positive",
                detail=f"threshold_days={threshold_days} max_active_rows={max_active_rows} "
                f"trim_batch={trim_batch}",
            )

        started_at = self.now()
        report = ArchiveReport(
            started_at=started_at,
            cutoff=started_at - timedelta(days=threshold_days),
        )
        logger.info(
            "Archive run started: cutoff=%s max_active_rows=%d trim_batch=%d",
            report.cutoff.isoformat(),
            max_active_rows,
            trim_batch,
        )

        try:
            for ledger in self.ledgers:
                result = await self._archive_ledger(
                    ledger, report.cutoff, max_active_rows, trim_batch
                )
                report.ledgers.append(result)
        except Exception as e:
            logger.exception("Archive run failed")
            await self.notifier.alert(
                "Archive run failed",
                f"{type(e).__name__}: {e}\nCompleted ledgers: "
                + (", ".join(r.ledger for r in report.ledgers) or "none"),
            )
            raise
        finally:
            self.usage_cache.invalidate()

        logger.info(
            "Archive run complete: %d rows archived across %d ledgers",
            report.total_archived,
            len(report.ledgers),
        )
        return report

    async def _archive_ledger(
        self,
        ledger: ManagedLedger,
        cutoff: datetime,
        max_active_rows: int,
        trim_batch: int,
    ) -> LedgerArchiveResult:
        result = LedgerArchiveResult(ledger=ledger.name)

        async with self.session_factory() as session:
            await ensure_archive_table(session, ledger)
            total = await count_rows(session, ledger.active)
            aged = await select_aged_row_ids(session, ledger, cutoff)
            extra = plan_trim(total, len(aged), max_active_rows, trim_batch)
            trimmed = await select_oldest_row_ids(session, ledger, cutoff, extra)

            result.aged = len(aged)
            result.trimmed = len(trimmed)
            selected = aged + trimmed
            if not selected:
                await session.commit()
                result.remaining = total
                logger.info("Ledger %s: nothing to archive (%d active rows)", ledger.name, total)
                return result

            result.copied = await copy_rows_to_archive(session, ledger, selected)
            ordered_ids = await list_row_ids(session, ledger)
            await session.commit()

        for first_id, last_id in contiguous_blocks(ordered_ids, set(selected)):
            try:
                async with self.session_factory() as session:
                    result.deleted += await delete_row_range(session, ledger, first_id, last_id)
                    await session.commit()
            except (SQLAlchemyError, OSError) as e:
                result.failed_blocks.append((first_id, last_id))
                logger.error(
                    "ARCHIVE_BLOCK_DELETE_FAILED",
                    extra={"ledger": ledger.name, "first_id": first_id, "last_id": last_id},
                )
                await self.notifier.alert(
                    f"Archive delete failed on {ledger.name}",
                    f"Rows {first_id}-{last_id} were copied to the archive but not "
                    f"removed from the active ledger: {e}",
                )

        async with self.session_factory() as session:
            result.remaining = await count_rows(session, ledger.active)

        logger.info(
            "Ledger %s: archived %d rows (%d aged, %d trimmed), %d remain active",
            ledger.name,
            result.copied,
            result.aged,
            result.trimmed,
            result.remaining,
        )
        return result
