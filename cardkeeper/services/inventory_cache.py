"""
Inventory Cache — which card numbers exist, per card type.

Built from the inventory ledger on miss and cached with a TTL. Serving a
stale inventory within the TTL is acceptable; add_cards/remove_cards
invalidate explicitly so admins see their own edits immediately. A build
that overlaps an invalidation is served but not cached.

Payload contract (owned here): a JSON object mapping CardType value to a
sorted list of normalized numbers. Any payload that does not decode to
that shape is corrupt and treated as a miss.
"""

import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.config import INVENTORY_CACHE_KEY, settings
from cardkeeper.db.operations import load_inventory_rows
from cardkeeper.models.card import CardType, empty_inventory
from cardkeeper.models.failure import CacheCorruptionError, StoreUnavailableError, ValidationError
from cardkeeper.services.cache_store import CacheStore
from cardkeeper.services.normalizer import is_valid_card_number, normalize_card_number

logger = logging.getLogger(__name__)


def serialize_inventory(inventory: dict[CardType, set[str]]) -> str:
    """Encode an inventory as the cache payload (sets become sorted arrays)."""
    return json.dumps(
        {card_type.value: sorted(numbers) for card_type, numbers in inventory.items()},
        separators=(",", ":"),
    )


def deserialize_inventory(payload: str, key: str = INVENTORY_CACHE_KEY) -> dict[CardType, set[str]]:
    """
    Decode a cache payload into an inventory.

    Raises:
        CacheCorruptionError: If the payload is not valid JSON of the expected shape
    """
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise CacheCorruptionError(key, detail=f"invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise CacheCorruptionError(key, detail="payload is not an object")

    inventory = empty_inventory()
    for type_value, numbers in raw.items():
        try:
            card_type = CardType(type_value)
        except ValueError as e:
            raise CacheCorruptionError(key, detail=f"unknown card type {type_value!r}") from e
        if not isinstance(numbers, list) or not all(isinstance(n, str) for n in numbers):
            raise CacheCorruptionError(key, detail=f"numbers for {type_value!r} are not strings")
        inventory[card_type] = set(numbers)
    return inventory


class InventoryCache:
    """Cached view of the inventory ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheStore,
        ttl_seconds: float | None = None,
        key: str = INVENTORY_CACHE_KEY,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.inventory_cache_ttl_seconds
        )
        self.key = key
        self._generation = 0

    async def get_inventory(self) -> dict[CardType, set[str]]:
        """
        Return every known card number, grouped by card type.

        Every CardType is present in the result, possibly with an empty set.

        Raises:
            StoreUnavailableError: If the inventory ledger cannot be read on a miss
        """
        cached = self._read_cached()
        if cached is not None:
            return cached

        logger.info("INVENTORY_CACHE_MISS", extra={"key": self.key})
        generation = self._generation
        inventory = await self._build()
        if generation == self._generation:
            self._write_cached(inventory)
        else:
            logger.info("INVENTORY_CACHE_WRITE_SKIPPED", extra={"key": self.key})
        return inventory

    def invalidate(self) -> None:
        """Drop the cached inventory so the next read rebuilds it."""
        self._generation += 1
        self.cache.remove(self.key)
        logger.info("INVENTORY_CACHE_INVALIDATED", extra={"key": self.key})

    async def _build(self) -> dict[CardType, set[str]]:
        try:
            async with self.session_factory() as session:
                rows = await load_inventory_rows(session)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError("inventory load", detail=str(e)) from e

        inventory = empty_inventory()
        skipped = 0
        for type_value, raw_number in rows:
            try:
                card_type = CardType.parse(type_value)
            except ValidationError:
                skipped += 1
                continue
            if not is_valid_card_number(raw_number):
                skipped += 1
                continue
            inventory[card_type].add(normalize_card_number(raw_number))

        if skipped:
            logger.warning("Skipped %d blank or invalid inventory rows", skipped)
        return inventory

    def _read_cached(self) -> dict[CardType, set[str]] | None:
        payload = self.cache.get(self.key)
        if payload is None:
            return None
        try:
            return deserialize_inventory(payload, self.key)
        except CacheCorruptionError as e:
            logger.warning(
                "INVENTORY_CACHE_CORRUPT",
                extra={"key": self.key, "detail": e.detail},
            )
            self.cache.remove(self.key)
            return None

    def _write_cached(self, inventory: dict[CardType, set[str]]) -> None:
        try:
            stored = self.cache.put(self.key, serialize_inventory(inventory), self.ttl_seconds)
        except Exception as e:
            logger.warning("Inventory cache write failed, serving uncached: %s", e)
            return
        if not stored:
            logger.warning("Inventory payload not cached (refused by cache store)")
