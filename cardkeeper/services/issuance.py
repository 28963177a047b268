"""
Issuance — the commit path for handing out cards.

The availability views are served from caches and can be stale, so two
staff members can both see the same card as available. This module is
where that race is settled: every batch is checked and written inside
one commit unit, against a fresh read of the ledgers, never the cache.
The commit unit is an asyncio.Lock within the process plus the
store-level issuance lock row, so workers sharing one database queue
behind each other too.

INVARIANTS:
- Validation happens BEFORE any store access
- A batch is all-or-nothing: one taken card rejects the whole batch
- The later of two conflicting submissions gets CardAlreadyIssuedError
- The Usage Cache is invalidated before a successful call returns
- Every write-path failure is alerted
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.db.operations import (
    ISSUANCE_LOCK,
    acquire_commit_lock,
    append_audit_entries,
    delete_distribution_record,
    find_inventory_numbers,
    find_issued_keys,
    get_distribution_record,
    insert_distribution_rows,
)
from cardkeeper.models.card import CardKey, CardType, IssueMode
from cardkeeper.models.db import DistributionRecordDB
from cardkeeper.models.failure import (
    CardAlreadyIssuedError,
    KnownError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from cardkeeper.models.ledger import AuditRow, DistributionRow, IssuanceRequest, IssuedCard
from cardkeeper.services.notifier import Notifier
from cardkeeper.services.usage_cache import UsageCache

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 200


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_batch(batch: Sequence[IssuanceRequest], now: datetime) -> list[DistributionRow]:
    """
    Turn untrusted requests into distribution rows.

    Raises:
        ValidationError: On an empty or oversized batch, a blank field, an
            unknown card type, an invalid number, or a card repeated in the batch
    """
    if not batch:
        raise ValidationError("Issuance batch cannot be empty")
    if len(batch) > MAX_BATCH_SIZE:
        raise ValidationError(
            f"Issuance batch too large ({len(batch)} cards)",
            detail=f"limit is {MAX_BATCH_SIZE}",
        )

    rows: list[DistributionRow] = []
    seen: set[CardKey] = set()
    for position, request in enumerate(batch, start=1):
        client_name = (request.client_name or "").strip()
        issued_by = (request.issued_by or "").strip()
        if not client_name:
            raise ValidationError(f"Item {position}: client name is required")
        if not issued_by:
            raise ValidationError(f"Item {position}: issued by is required")

        key = CardKey.of(request.card_type, request.card_number)
        if key in seen:
            raise ValidationError(f"Item {position}: {key.label()} appears twice in the batch")
        seen.add(key)

        try:
            mode = IssueMode(request.mode)
        except ValueError as e:
            raise ValidationError(f"Item {position}: unknown mode {request.mode!r}") from e

        rows.append(
            DistributionRow(
                recorded_at=now,
                client_name=client_name,
                card_key=key,
                issued_by=issued_by,
                mode=mode,
                signature_ref=request.signature_ref,
                notes=request.notes,
            )
        )
    return rows


def record_to_issued(record: DistributionRecordDB) -> IssuedCard:
    """Convert a stored distribution record to a domain model."""
    return IssuedCard(
        record_id=record.id,
        card_key=CardKey(card_type=CardType(record.card_type), number=record.card_number),
        client_name=record.client_name,
        issued_by=record.issued_by,
        recorded_at=record.recorded_at,
        mode=IssueMode(record.mode),
    )


class IssuanceService:
    """Records and reverts card issuance."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        usage_cache: UsageCache,
        notifier: Notifier,
        now: Callable[[], datetime] = _utcnow,
        commit_lock: asyncio.Lock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.usage_cache = usage_cache
        self.notifier = notifier
        self.now = now
        # One commit unit at a time within this process
        self.commit_lock = commit_lock if commit_lock is not None else asyncio.Lock()

    async def record_issuance(self, batch: Sequence[IssuanceRequest]) -> list[IssuedCard]:
        """
        Record a batch of issued cards.

        Raises:
            ValidationError: If the batch is malformed (no store access made)
            NotFoundError: If a card is not in the inventory
            CardAlreadyIssuedError: If any card was already issued
            StoreUnavailableError: If the ledger store fails
        """
        try:
            rows = validate_batch(batch, self.now())
            keys = [row.card_key for row in rows]

            async with self.commit_lock:
                async with self.session_factory() as session:
                    await acquire_commit_lock(session, ISSUANCE_LOCK, rows[0].issued_by)
                    await self._require_in_inventory(session, keys)

                    taken = await find_issued_keys(session, keys)
                    if taken:
                        raise CardAlreadyIssuedError(sorted(key.label() for key in taken))

                    records = await insert_distribution_rows(session, rows)
                    await append_audit_entries(
                        session,
                        [
                            AuditRow(
                                recorded_at=row.recorded_at,
                                actor=row.issued_by,
                                action="issue",
                                card_key=row.card_key,
                                detail=f"client={row.client_name} mode={row.mode.value}",
                            )
                            for row in rows
                        ],
                    )
                    issued = [record_to_issued(record) for record in records]
                    await session.commit()

                self.usage_cache.invalidate()
        except KnownError as e:
            await self._alert_failure("record_issuance", e.message, e.detail)
            raise
        except (SQLAlchemyError, OSError) as e:
            await self._alert_failure("record_issuance", "ledger store error", str(e))
            raise StoreUnavailableError("record_issuance", detail=str(e)) from e

        logger.info(
            "ISSUANCE_RECORDED",
            extra={"cards": len(issued), "issued_by": rows[0].issued_by},
        )
        return issued

    async def undo_issuance(self, record_id: int, actor: str) -> IssuedCard:
        """
        Revert one active issuance, returning the card to availability.

        Archived issuances cannot be undone.

        Raises:
            ValidationError: If actor is blank
            NotFoundError: If no active record has this id
            StoreUnavailableError: If the ledger store fails
        """
        actor = (actor or "").strip()
        try:
            if not actor:
                raise ValidationError("Actor is required to undo an issuance")

            async with self.commit_lock:
                async with self.session_factory() as session:
                    await acquire_commit_lock(session, ISSUANCE_LOCK, actor)
                    record = await get_distribution_record(session, record_id)
                    if record is None:
                        raise NotFoundError("Issuance record", str(record_id))

                    undone = record_to_issued(record)
                    await delete_distribution_record(session, record)
                    await append_audit_entries(
                        session,
                        [
                            AuditRow(
                                recorded_at=self.now(),
                                actor=actor,
                                action="undo",
                                card_key=undone.card_key,
                                detail=f"record={record_id} client={undone.client_name}",
                            )
                        ],
                    )
                    await session.commit()

                self.usage_cache.invalidate()
        except KnownError as e:
            await self._alert_failure("undo_issuance", e.message, e.detail)
            raise
        except (SQLAlchemyError, OSError) as e:
            await self._alert_failure("undo_issuance", "ledger store error", str(e))
            raise StoreUnavailableError("undo_issuance", detail=str(e)) from e

        logger.info("ISSUANCE_UNDONE", extra={"record_id": record_id, "actor": actor})
        return undone

    async def get_issuance(self, record_id: int) -> IssuedCard:
        """
        Look up one active issuance.

        Raises:
            NotFoundError: If no active record has this id
            StoreUnavailableError: If the ledger store fails
        """
        try:
            async with self.session_factory() as session:
                record = await get_distribution_record(session, record_id)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError("get_issuance", detail=str(e)) from e

        if record is None:
            raise NotFoundError("Issuance record", str(record_id))
        return record_to_issued(record)

    async def _require_in_inventory(self, session: AsyncSession, keys: list[CardKey]) -> None:
        missing: list[str] = []
        for card_type in CardType:
            wanted = {key.number for key in keys if key.card_type == card_type}
            if not wanted:
                continue
            present = await find_inventory_numbers(session, card_type, wanted)
            missing.extend(
                CardKey(card_type=card_type, number=n).label() for n in sorted(wanted - present)
            )
        if missing:
            raise NotFoundError("Card", ", ".join(missing))

    async def _alert_failure(self, operation: str, message: str, detail: str | None) -> None:
        logger.warning(
            "WRITE_PATH_FAILED",
            extra={"operation": operation, "reason": message},
        )
        await self.notifier.alert(
            f"Card issuance failure: {operation}",
            f"{message}\n{detail or ''}",
        )
