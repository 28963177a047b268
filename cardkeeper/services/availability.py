"""
Availability Engine — Inventory minus Usage.

Read path only. Never raises to the caller: if the ledger store fails,
the failure is alerted and the engine answers with safe defaults (no
cards available, zero counts). Under-allocating a scarce card is
recoverable; double-issuing one is not.

A stale "available" view is possible within cache TTLs. The issuance
commit path re-checks against the store, so the view is advisory.
"""

import logging
from dataclasses import dataclass

from cardkeeper.models.card import CardKey, CardType
from cardkeeper.models.failure import KnownError, StoreUnavailableError
from cardkeeper.services.inventory_cache import InventoryCache
from cardkeeper.services.normalizer import normalize_card_number
from cardkeeper.services.notifier import Notifier
from cardkeeper.services.usage_cache import UsageCache, UsageSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeSummary:
    """Availability figures for one card type."""

    card_type: CardType
    available: int
    issued: int
    total: int


@dataclass(frozen=True)
class AvailabilitySummary:
    """Availability figures for every card type."""

    types: list[TypeSummary]
    usage_complete: bool
    degraded: bool = False


class AvailabilityEngine:
    """Answers which cards can still be handed out."""

    def __init__(
        self,
        inventory_cache: InventoryCache,
        usage_cache: UsageCache,
        notifier: Notifier,
    ) -> None:
        self.inventory_cache = inventory_cache
        self.usage_cache = usage_cache
        self.notifier = notifier

    async def get_inventory(self) -> dict[CardType, set[str]]:
        """Return the cached inventory, or empty sets if the store is unavailable."""
        try:
            return await self.inventory_cache.get_inventory()
        except StoreUnavailableError as e:
            await self._report_degraded("get_inventory", e)
            return {card_type: set() for card_type in CardType}

    async def get_available(self, card_type: CardType) -> list[str]:
        """
        Return unused card numbers of one type, sorted ascending.

        Exactly Inventory[card_type] minus the used numbers of that type.
        """
        try:
            inventory, snapshot = await self._load()
        except StoreUnavailableError as e:
            await self._report_degraded("get_available", e)
            return []
        return sorted(inventory[card_type] - snapshot.used_numbers(card_type))

    async def get_counts(self) -> dict[CardType, int]:
        """Return the number of unused cards per type. Every type is present."""
        try:
            inventory, snapshot = await self._load()
        except StoreUnavailableError as e:
            await self._report_degraded("get_counts", e)
            return {card_type: 0 for card_type in CardType}
        return {
            card_type: len(inventory[card_type] - snapshot.used_numbers(card_type))
            for card_type in CardType
        }

    async def is_available(self, card_type: CardType | str, number: object) -> bool:
        """
        Check whether one card has not been issued.

        A direct negative membership test against the used set; inventory
        membership is enforced by the issuance path. Returns False on any
        internal error or a blank number.
        """
        try:
            key = CardKey(card_type=CardType.parse(card_type), number=normalize_card_number(number))
            if not key.number:
                return False
            snapshot = await self.usage_cache.load()
            return key not in snapshot.keys
        except StoreUnavailableError as e:
            await self._report_degraded("is_available", e)
            return False
        except KnownError as e:
            logger.info("Availability check rejected: %s", e.message)
            return False
        except Exception:
            logger.exception("Availability check failed for %s %r", card_type, number)
            return False

    async def get_summary(self) -> AvailabilitySummary:
        """Per-type available/issued/total figures for dashboards and health checks."""
        try:
            inventory, snapshot = await self._load()
        except StoreUnavailableError as e:
            await self._report_degraded("get_summary", e)
            return AvailabilitySummary(
                types=[TypeSummary(t, 0, 0, 0) for t in CardType],
                usage_complete=False,
                degraded=True,
            )

        types = []
        for card_type in CardType:
            numbers = inventory[card_type]
            used = snapshot.used_numbers(card_type)
            types.append(
                TypeSummary(
                    card_type=card_type,
                    available=len(numbers - used),
                    issued=len(numbers & used),
                    total=len(numbers),
                )
            )
        return AvailabilitySummary(types=types, usage_complete=snapshot.completed)

    async def _load(self) -> tuple[dict[CardType, set[str]], UsageSnapshot]:
        inventory = await self.inventory_cache.get_inventory()
        snapshot = await self.usage_cache.load()
        return inventory, snapshot

    async def _report_degraded(self, operation: str, error: StoreUnavailableError) -> None:
        logger.error(
            "AVAILABILITY_DEGRADED",
            extra={"operation": operation, "detail": error.detail},
        )
        await self.notifier.alert(
            "Card availability degraded",
            f"{operation} answered with safe defaults: {error.message}\n{error.detail or ''}",
        )
