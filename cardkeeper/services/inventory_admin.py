"""
Inventory administration: adding and removing physical cards.

Adding cards changes only the inventory, so only the Inventory Cache is
invalidated. Removing cards also invalidates the Usage Cache, so views
derived from both never mix a fresh inventory with a stale used set.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.db.operations import (
    append_audit_entries,
    delete_inventory_cards,
    find_inventory_numbers,
    insert_inventory_cards,
)
from cardkeeper.models.card import CardKey, CardType
from cardkeeper.models.failure import KnownError, StoreUnavailableError, ValidationError
from cardkeeper.models.ledger import AuditRow
from cardkeeper.services.inventory_cache import InventoryCache
from cardkeeper.services.notifier import Notifier
from cardkeeper.services.usage_cache import UsageCache

logger = logging.getLogger(__name__)

MAX_CARDS_PER_CHANGE = 5_000


@dataclass
class CardChangeReport:
    """Outcome of an add or remove request."""

    card_type: CardType
    changed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


def validate_card_numbers(card_type: CardType | str, numbers: Sequence[object]) -> list[CardKey]:
    """
    Normalize and validate a list of raw card numbers.

    Duplicates (after normalization) collapse, first occurrence wins.

    Raises:
        ValidationError: On an unknown type, an empty or oversized list, or
            any blank/invalid number
    """
    resolved = CardType.parse(card_type)
    if not numbers:
        raise ValidationError("At least one card number is required")
    if len(numbers) > MAX_CARDS_PER_CHANGE:
        raise ValidationError(
            f"Too many card numbers ({len(numbers)})",
            detail=f"limit is {MAX_CARDS_PER_CHANGE}",
        )

    keys: dict[str, CardKey] = {}
    for raw in numbers:
        key = CardKey.of(resolved, raw)
        keys.setdefault(key.number, key)
    return list(keys.values())


class InventoryAdmin:
    """Admin-controlled inventory edits."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inventory_cache: InventoryCache,
        usage_cache: UsageCache,
        notifier: Notifier,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.session_factory = session_factory
        self.inventory_cache = inventory_cache
        self.usage_cache = usage_cache
        self.notifier = notifier
        self.now = now

    async def add_cards(
        self, card_type: CardType | str, numbers: Sequence[object], actor: str
    ) -> CardChangeReport:
        """
        Add cards to the inventory.

        Numbers already present are reported as skipped, not re-added.

        Raises:
            ValidationError: If the input is malformed (no store access made)
            StoreUnavailableError: If the ledger store fails
        """
        actor = (actor or "").strip()
        try:
            keys = self._validate(card_type, numbers, actor)
            resolved = keys[0].card_type
            report = CardChangeReport(card_type=resolved)

            async with self.session_factory() as session:
                wanted = [key.number for key in keys]
                present = await find_inventory_numbers(session, resolved, wanted)
                new_keys = [key for key in keys if key.number not in present]
                report.skipped = [n for n in wanted if n in present]
                report.changed = [key.number for key in new_keys]

                if new_keys:
                    await insert_inventory_cards(session, resolved, report.changed, actor)
                    await append_audit_entries(session, self._audit(new_keys, actor, "add"))
                await session.commit()

            self.inventory_cache.invalidate()
        except KnownError as e:
            await self._alert_failure("add_cards", e.message, e.detail)
            raise
        except (SQLAlchemyError, OSError) as e:
            await self._alert_failure("add_cards", "ledger store error", str(e))
            raise StoreUnavailableError("add_cards", detail=str(e)) from e

        logger.info(
            "INVENTORY_CARDS_ADDED",
            extra={
                "card_type": resolved.value,
                "added": len(report.changed),
                "skipped": len(report.skipped),
            },
        )
        return report

    async def remove_cards(
        self, card_type: CardType | str, numbers: Sequence[object], actor: str
    ) -> CardChangeReport:
        """
        Remove cards from the inventory.

        Numbers not in the inventory are reported as not_found.

        Raises:
            ValidationError: If the input is malformed (no store access made)
            StoreUnavailableError: If the ledger store fails
        """
        actor = (actor or "").strip()
        try:
            keys = self._validate(card_type, numbers, actor)
            resolved = keys[0].card_type
            report = CardChangeReport(card_type=resolved)

            async with self.session_factory() as session:
                wanted = [key.number for key in keys]
                present = await find_inventory_numbers(session, resolved, wanted)
                gone = [key for key in keys if key.number in present]
                report.not_found = [n for n in wanted if n not in present]
                report.changed = [key.number for key in gone]

                if gone:
                    await delete_inventory_cards(session, resolved, report.changed)
                    await append_audit_entries(session, self._audit(gone, actor, "remove"))
                await session.commit()

            self.inventory_cache.invalidate()
            self.usage_cache.invalidate()
        except KnownError as e:
            await self._alert_failure("remove_cards", e.message, e.detail)
            raise
        except (SQLAlchemyError, OSError) as e:
            await self._alert_failure("remove_cards", "ledger store error", str(e))
            raise StoreUnavailableError("remove_cards", detail=str(e)) from e

        logger.info(
            "INVENTORY_CARDS_REMOVED",
            extra={
                "card_type": resolved.value,
                "removed": len(report.changed),
                "not_found": len(report.not_found),
            },
        )
        return report

    def _validate(
        self, card_type: CardType | str, numbers: Sequence[object], actor: str
    ) -> list[CardKey]:
        if not actor:
            raise ValidationError("Actor is required for inventory changes")
        return validate_card_numbers(card_type, numbers)

    def _audit(self, keys: list[CardKey], actor: str, action: str) -> list[AuditRow]:
        now = self.now()
        return [
            AuditRow(recorded_at=now, actor=actor, action=action, card_key=key)
            for key in keys
        ]

    async def _alert_failure(self, operation: str, message: str, detail: str | None) -> None:
        logger.warning(
            "WRITE_PATH_FAILED",
            extra={"operation": operation, "reason": message},
        )
        await self.notifier.alert(
            f"Inventory change failure: {operation}",
            f"{message}\n{detail or ''}",
        )
