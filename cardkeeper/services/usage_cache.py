"""
Usage Cache — which cards have already been issued.

The used set is a fold over every distribution record, active and
archived. Rebuilding it means scanning both ledgers, which can be slow,
so the scan runs in fixed-size batches under a wall-clock budget.

INVARIANTS:
- The cached set always equals the fold of a complete scan
- A partial scan (budget exceeded) is returned but NEVER cached
- Duplicate records collapse: membership, not record count
- A scan that overlaps an invalidate() is returned but not cached

Payload contract (owned here): a JSON array of [card_type, number]
pairs, sorted. Anything else is corrupt and treated as a miss.
"""

import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.config import USED_CARD_KEYS_CACHE_KEY, settings
from cardkeeper.db.operations import read_usage_batch
from cardkeeper.models.card import CardKey, CardType
from cardkeeper.models.db import DistributionArchiveDB, DistributionRecordDB
from cardkeeper.models.failure import (
    CacheCorruptionError,
    StoreUnavailableError,
    TimeBudgetExceededError,
)
from cardkeeper.services.cache_store import CacheStore
from cardkeeper.services.normalizer import normalize_card_number
from cardkeeper.services.notifier import Notifier

logger = logging.getLogger(__name__)

# Scan order: active first, then archive
USAGE_LEDGERS: tuple[type[DistributionRecordDB] | type[DistributionArchiveDB], ...] = (
    DistributionRecordDB,
    DistributionArchiveDB,
)


def serialize_used_keys(keys: set[CardKey] | frozenset[CardKey]) -> str:
    """Encode a used set as the cache payload."""
    pairs = sorted((key.card_type.value, key.number) for key in keys)
    return json.dumps(pairs, separators=(",", ":"))


def deserialize_used_keys(payload: str, key: str = USED_CARD_KEYS_CACHE_KEY) -> set[CardKey]:
    """
    Decode a cache payload into a used set.

    Raises:
        CacheCorruptionError: If the payload is not valid JSON of the expected shape
    """
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise CacheCorruptionError(key, detail=f"invalid JSON: {e}") from e

    if not isinstance(raw, list):
        raise CacheCorruptionError(key, detail="payload is not an array")

    keys: set[CardKey] = set()
    for item in raw:
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not all(isinstance(part, str) for part in item)
        ):
            raise CacheCorruptionError(key, detail=f"malformed entry {item!r}")
        try:
            card_type = CardType(item[0])
        except ValueError as e:
            raise CacheCorruptionError(key, detail=f"unknown card type {item[0]!r}") from e
        keys.add(CardKey(card_type=card_type, number=item[1]))
    return keys


@dataclass(frozen=True)
class UsageSnapshot:
    """
    Result of loading the used set.

    Attributes:
        keys: Issued card keys
        completed: False when the scan stopped early and keys is partial
        rows_scanned: Ledger rows read (0 on a cache hit)
        ledgers_scanned: Ledgers read to the end, in scan order
        from_cache: True when served from the cache
    """

    keys: frozenset[CardKey]
    completed: bool = True
    rows_scanned: int = 0
    ledgers_scanned: tuple[str, ...] = ()
    from_cache: bool = False

    def used_numbers(self, card_type: CardType) -> set[str]:
        """Used card numbers of one type."""
        return {key.number for key in self.keys if key.card_type == card_type}


@dataclass
class LedgerScanner:
    """
    Batched, time-budgeted scan over the distribution ledgers.

    Iterate with `async for ledger_name, rows in scanner`. Rows are
    (id, card_type, card_number) tuples. The budget is checked before each
    batch; when it runs out iteration stops, `completed` stays False and
    `exceeded` carries the details.
    """

    session_factory: async_sessionmaker[AsyncSession]
    batch_size: int
    time_budget_seconds: float
    clock: Callable[[], float] = time.monotonic
    ledgers: tuple[type[DistributionRecordDB] | type[DistributionArchiveDB], ...] = USAGE_LEDGERS

    completed: bool = field(default=False, init=False)
    rows_scanned: int = field(default=0, init=False)
    ledgers_scanned: list[str] = field(default_factory=list, init=False)
    exceeded: TimeBudgetExceededError | None = field(default=None, init=False)

    def __aiter__(self) -> AsyncIterator[tuple[str, list[tuple[int, str, str]]]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[tuple[str, list[tuple[int, str, str]]]]:
        started = self.clock()
        async with self.session_factory() as session:
            for model in self.ledgers:
                name = model.__tablename__
                after_id = 0
                while True:
                    elapsed = self.clock() - started
                    if elapsed > self.time_budget_seconds:
                        self.exceeded = TimeBudgetExceededError(
                            elapsed, self.time_budget_seconds, self.rows_scanned
                        )
                        return

                    batch = await read_usage_batch(session, model, after_id, self.batch_size)
                    if not batch:
                        break
                    self.rows_scanned += len(batch)
                    after_id = batch[-1][0]
                    yield name, batch
                    if len(batch) < self.batch_size:
                        break
                self.ledgers_scanned.append(name)
        self.completed = True


class UsageCache:
    """Cached fold of all distribution records into the set of used CardKeys."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheStore,
        notifier: Notifier,
        ttl_seconds: float | None = None,
        batch_size: int | None = None,
        time_budget_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        key: str = USED_CARD_KEYS_CACHE_KEY,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.notifier = notifier
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.usage_cache_ttl_seconds
        )
        self.batch_size = batch_size if batch_size is not None else settings.usage_scan_batch_size
        self.time_budget_seconds = (
            time_budget_seconds
            if time_budget_seconds is not None
            else settings.usage_scan_time_budget_seconds
        )
        self.clock = clock
        self.key = key
        # Bumped by invalidate(); a scan may only cache if it is unchanged
        self._generation = 0

    async def get_used_card_keys(self) -> set[CardKey]:
        """Return the used set (possibly partial, see load())."""
        snapshot = await self.load()
        return set(snapshot.keys)

    async def load(self) -> UsageSnapshot:
        """
        Return the used set with its completeness flag.

        Raises:
            StoreUnavailableError: If a ledger cannot be read on a miss
        """
        cached = self._read_cached()
        if cached is not None:
            return UsageSnapshot(keys=frozenset(cached), from_cache=True)

        logger.info("USAGE_CACHE_MISS", extra={"key": self.key})
        generation = self._generation
        scanner = LedgerScanner(
            session_factory=self.session_factory,
            batch_size=self.batch_size,
            time_budget_seconds=self.time_budget_seconds,
            clock=self.clock,
        )

        keys: set[CardKey] = set()
        skipped = 0
        try:
            async for _ledger, rows in scanner:
                for _row_id, type_value, raw_number in rows:
                    number = normalize_card_number(raw_number)
                    try:
                        card_type = CardType(type_value)
                    except ValueError:
                        skipped += 1
                        continue
                    if not number:
                        skipped += 1
                        continue
                    keys.add(CardKey(card_type=card_type, number=number))
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError("usage scan", detail=str(e)) from e

        if skipped:
            logger.warning("Skipped %d unreadable distribution rows", skipped)

        if not scanner.completed:
            exceeded = scanner.exceeded
            logger.warning(
                "USAGE_SCAN_BUDGET_EXCEEDED",
                extra={
                    "rows_scanned": scanner.rows_scanned,
                    "ledgers_scanned": scanner.ledgers_scanned,
                    "budget_seconds": self.time_budget_seconds,
                },
            )
            await self.notifier.alert(
                "Usage scan exceeded time budget",
                (exceeded.detail if exceeded else "")
                + f"\nLedgers fully scanned: {', '.join(scanner.ledgers_scanned) or 'none'}"
                + "\nThe partial result was not cached. Consider running the archiver.",
            )
            return UsageSnapshot(
                keys=frozenset(keys),
                completed=False,
                rows_scanned=scanner.rows_scanned,
                ledgers_scanned=tuple(scanner.ledgers_scanned),
            )

        if generation == self._generation:
            self._write_cached(keys)
        else:
            logger.info("USAGE_CACHE_WRITE_SKIPPED", extra={"key": self.key})
        return UsageSnapshot(
            keys=frozenset(keys),
            rows_scanned=scanner.rows_scanned,
            ledgers_scanned=tuple(scanner.ledgers_scanned),
        )

    def invalidate(self) -> None:
        """Drop the cached used set so the next read rescans."""
        self._generation += 1
        self.cache.remove(self.key)
        logger.info("USAGE_CACHE_INVALIDATED", extra={"key": self.key})

    def _read_cached(self) -> set[CardKey] | None:
        payload = self.cache.get(self.key)
        if payload is None:
            return None
        try:
            return deserialize_used_keys(payload, self.key)
        except CacheCorruptionError as e:
            logger.warning(
                "USAGE_CACHE_CORRUPT",
                extra={"key": self.key, "detail": e.detail},
            )
            self.cache.remove(self.key)
            return None

    def _write_cached(self, keys: set[CardKey]) -> None:
        try:
            stored = self.cache.put(self.key, serialize_used_keys(keys), self.ttl_seconds)
        except Exception as e:
            logger.warning("Usage cache write failed, serving uncached: %s", e)
            return
        if not stored:
            logger.warning("Used card keys not cached (refused by cache store)")
