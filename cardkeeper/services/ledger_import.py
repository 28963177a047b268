"""
Bulk import of historical ledger rows from spreadsheet exports.

Imported issuances join the active distribution ledger, so they go
through the same commit unit as record_issuance: a card listed twice in
the export, or already recorded in the active or archived ledger,
rejects the whole export. The Usage Cache is invalidated after every
import that reaches the store.
"""

import asyncio
import logging
from collections import Counter

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.db.operations import (
    ISSUANCE_LOCK,
    acquire_commit_lock,
    append_audit_entries,
    find_issued_keys,
    insert_distribution_rows,
)
from cardkeeper.models.failure import (
    CardAlreadyIssuedError,
    KnownError,
    StoreUnavailableError,
    ValidationError,
)
from cardkeeper.parsers.ledger_import import parse_audit_csv, parse_distribution_csv
from cardkeeper.services.notifier import Notifier
from cardkeeper.services.usage_cache import UsageCache

logger = logging.getLogger(__name__)


class LedgerImporter:
    """Loads spreadsheet exports into the active ledgers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        usage_cache: UsageCache,
        notifier: Notifier,
        commit_lock: asyncio.Lock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.usage_cache = usage_cache
        self.notifier = notifier
        self.commit_lock = commit_lock if commit_lock is not None else asyncio.Lock()

    async def import_distribution(self, text: str) -> int:
        """
        Append every row of a distribution export to the active ledger.

        Raises:
            ValidationError: If the export is malformed or lists a card twice
            CardAlreadyIssuedError: If a card in the export is already recorded
            StoreUnavailableError: If the ledger store fails

        Nothing is written when any of these is raised.
        """
        try:
            rows = parse_distribution_csv(text)
            repeated = [
                key.label()
                for key, count in Counter(row.card_key for row in rows).items()
                if count > 1
            ]
            if repeated:
                raise ValidationError(
                    "Export lists a card more than once", detail=", ".join(sorted(repeated))
                )
            if not rows:
                return 0

            try:
                async with self.commit_lock:
                    async with self.session_factory() as session:
                        await acquire_commit_lock(session, ISSUANCE_LOCK, "ledger import")
                        taken = await find_issued_keys(session, [row.card_key for row in rows])
                        if taken:
                            raise CardAlreadyIssuedError(sorted(key.label() for key in taken))

                        await insert_distribution_rows(session, rows)
                        await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await self.notifier.alert("Distribution import failed", str(e))
                raise StoreUnavailableError("distribution import", detail=str(e)) from e
            finally:
                self.usage_cache.invalidate()
        except KnownError as e:
            if not isinstance(e, StoreUnavailableError):
                await self.notifier.alert(
                    "Distribution import rejected", f"{e.message}\n{e.detail or ''}"
                )
            raise

        logger.info("Imported %d distribution rows", len(rows))
        return len(rows)

    async def import_audit(self, text: str) -> int:
        """
        Append every row of an audit export to the active audit log.

        Raises:
            ValidationError: If the export is malformed (nothing is written)
            StoreUnavailableError: If the ledger store fails
        """
        try:
            entries = parse_audit_csv(text)
        except KnownError as e:
            await self.notifier.alert("Audit import rejected", f"{e.message}\n{e.detail or ''}")
            raise
        if not entries:
            return 0

        try:
            async with self.session_factory() as session:
                await append_audit_entries(session, entries)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.notifier.alert("Audit import failed", str(e))
            raise StoreUnavailableError("audit import", detail=str(e)) from e

        logger.info("Imported %d audit rows", len(entries))
        return len(entries)
