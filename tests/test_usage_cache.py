"""Tests for the usage cache and the time-budgeted ledger scan."""

from datetime import UTC, datetime

import pytest
from conftest import FakeClock, RecordingNotifier
from sqlalchemy.exc import OperationalError

from cardkeeper.config import USED_CARD_KEYS_CACHE_KEY
from cardkeeper.db import operations
from cardkeeper.models.card import CardKey, CardType
from cardkeeper.models.db import DistributionArchiveDB, DistributionRecordDB
from cardkeeper.models.failure import CacheCorruptionError, StoreUnavailableError
from cardkeeper.services.usage_cache import (
    LedgerScanner,
    UsageCache,
    deserialize_used_keys,
    serialize_used_keys,
)


@pytest.fixture
def usage_cache(session_factory, cache, notifier, clock) -> UsageCache:
    return UsageCache(
        session_factory,
        cache,
        notifier,
        ttl_seconds=600,
        batch_size=2,
        time_budget_seconds=240,
        clock=clock,
    )


class TestPayload:
    def test_serialized_pairs_are_sorted(self) -> None:
        payload = serialize_used_keys(
            {CardKey(CardType.WALMART, "B"), CardKey(CardType.TARGET, "A")}
        )
        assert payload == '[["Target","A"],["Walmart","B"]]'

    def test_round_trip(self) -> None:
        keys = {CardKey(CardType.BUS_PASS, "77"), CardKey(CardType.WALMART, "A")}
        assert deserialize_used_keys(serialize_used_keys(keys)) == keys

    @pytest.mark.parametrize(
        "payload",
        ["{", "{}", '[["Walmart"]]', '[["Costco","1"]]', '[["Walmart",1]]'],
    )
    def test_malformed_payload_is_corrupt(self, payload: str) -> None:
        with pytest.raises(CacheCorruptionError):
            deserialize_used_keys(payload)


class TestLedgerScanner:
    async def test_scans_active_then_archive_in_batches(
        self, session_factory, seed_distribution, clock
    ) -> None:
        await seed_distribution([(CardType.WALMART, n) for n in ("A", "B", "C")])
        await seed_distribution(
            [(CardType.TARGET, "T1")], model=DistributionArchiveDB, source_row_id=1
        )
        scanner = LedgerScanner(session_factory, batch_size=2, time_budget_seconds=10, clock=clock)

        batches = [(name, [row[2] for row in rows]) async for name, rows in scanner]

        assert batches == [
            ("distribution_records", ["A", "B"]),
            ("distribution_records", ["C"]),
            ("distribution_archive", ["T1"]),
        ]
        assert scanner.completed
        assert scanner.rows_scanned == 4
        assert scanner.ledgers_scanned == ["distribution_records", "distribution_archive"]

    async def test_empty_ledgers_complete(self, session_factory, clock) -> None:
        scanner = LedgerScanner(session_factory, batch_size=5, time_budget_seconds=10, clock=clock)

        batches = [batch async for batch in scanner]

        assert batches == []
        assert scanner.completed
        assert scanner.exceeded is None


class TestUsageCache:
    async def test_fold_over_active_and_archive(self, usage_cache, seed_distribution) -> None:
        """Archived issuances still count as used."""
        await seed_distribution([(CardType.WALMART, "A"), (CardType.WALMART, "b-1")])
        await seed_distribution(
            [(CardType.BUS_PASS, "77")], model=DistributionArchiveDB, source_row_id=9
        )

        snapshot = await usage_cache.load()

        assert snapshot.completed
        assert not snapshot.from_cache
        assert snapshot.keys == {
            CardKey(CardType.WALMART, "A"),
            CardKey(CardType.WALMART, "B1"),
            CardKey(CardType.BUS_PASS, "77"),
        }

    async def test_duplicate_records_collapse(self, usage_cache, seed_distribution) -> None:
        """Membership, not record count."""
        await seed_distribution([(CardType.WALMART, "A")] * 3)
        await seed_distribution(
            [(CardType.WALMART, "A")], model=DistributionArchiveDB, source_row_id=1
        )

        keys = await usage_cache.get_used_card_keys()

        assert keys == {CardKey(CardType.WALMART, "A")}

    async def test_unreadable_rows_skipped(self, usage_cache, session_factory) -> None:
        async with session_factory() as session:
            for card_type, number in (("Walmart", "A"), ("Costco", "Z"), ("Target", "--")):
                session.add(
                    DistributionRecordDB(
                        recorded_at=datetime.now(UTC),
                        client_name="c",
                        card_type=card_type,
                        card_number=number,
                        issued_by="s",
                    )
                )
            await session.commit()

        keys = await usage_cache.get_used_card_keys()

        assert keys == {CardKey(CardType.WALMART, "A")}

    async def test_complete_scan_is_cached(self, usage_cache, seed_distribution, cache) -> None:
        await seed_distribution([(CardType.TARGET, "T1")])

        await usage_cache.load()
        await seed_distribution([(CardType.TARGET, "T2")])
        snapshot = await usage_cache.load()

        assert snapshot.from_cache
        assert snapshot.keys == {CardKey(CardType.TARGET, "T1")}
        assert cache.get(USED_CARD_KEYS_CACHE_KEY) is not None

    async def test_snapshot_lists_ledgers_scanned(self, usage_cache, seed_distribution) -> None:
        await seed_distribution([(CardType.TARGET, "T1")])

        snapshot = await usage_cache.load()

        assert snapshot.ledgers_scanned == ("distribution_records", "distribution_archive")
        assert snapshot.rows_scanned == 1

    async def test_invalidate_during_scan_is_not_cached(
        self, usage_cache, seed_distribution, cache, monkeypatch
    ) -> None:
        """A scan that started before an invalidation never lands in the cache."""
        await seed_distribution([(CardType.TARGET, "T1")])

        async def read_then_invalidate(session, model, after_id, limit):
            rows = await operations.read_usage_batch(session, model, after_id, limit)
            if model is DistributionRecordDB and after_id == 0:
                usage_cache.invalidate()
            return rows

        monkeypatch.setattr(
            "cardkeeper.services.usage_cache.read_usage_batch", read_then_invalidate
        )

        snapshot = await usage_cache.load()

        assert snapshot.completed
        assert snapshot.keys == {CardKey(CardType.TARGET, "T1")}
        assert cache.get(USED_CARD_KEYS_CACHE_KEY) is None

        monkeypatch.undo()
        await usage_cache.load()
        assert cache.get(USED_CARD_KEYS_CACHE_KEY) is not None

    async def test_invalidate_forces_rescan(self, usage_cache, seed_distribution) -> None:
        await seed_distribution([(CardType.TARGET, "T1")])
        await usage_cache.load()
        await seed_distribution([(CardType.TARGET, "T2")])

        usage_cache.invalidate()
        snapshot = await usage_cache.load()

        assert not snapshot.from_cache
        assert CardKey(CardType.TARGET, "T2") in snapshot.keys

    async def test_corrupt_entry_treated_as_miss(
        self, usage_cache, seed_distribution, cache
    ) -> None:
        await seed_distribution([(CardType.TARGET, "T1")])
        cache.put(USED_CARD_KEYS_CACHE_KEY, '[["Walmart"', 600)

        snapshot = await usage_cache.load()

        assert not snapshot.from_cache
        assert snapshot.keys == {CardKey(CardType.TARGET, "T1")}

    async def test_budget_exceeded_returns_partial_uncached(
        self,
        usage_cache,
        seed_distribution,
        cache,
        clock: FakeClock,
        notifier: RecordingNotifier,
        monkeypatch,
    ) -> None:
        """A scan that runs out of time is alerted, served, and never cached."""
        await seed_distribution([(CardType.WALMART, "A")])
        await seed_distribution(
            [(CardType.WALMART, "OLD")], model=DistributionArchiveDB, source_row_id=1
        )

        async def slow_read(session, model, after_id, limit):
            rows = await operations.read_usage_batch(session, model, after_id, limit)
            if model is DistributionRecordDB:
                clock.advance(300)
            return rows

        monkeypatch.setattr("cardkeeper.services.usage_cache.read_usage_batch", slow_read)

        snapshot = await usage_cache.load()

        assert not snapshot.completed
        assert snapshot.keys == {CardKey(CardType.WALMART, "A")}
        assert cache.get(USED_CARD_KEYS_CACHE_KEY) is None
        assert notifier.subjects == ["Usage scan exceeded time budget"]
        assert snapshot.ledgers_scanned == ("distribution_records",)
        assert "distribution_records" in notifier.alerts[0][1]

    async def test_partial_scan_retried_on_next_read(
        self, usage_cache, seed_distribution, clock: FakeClock, monkeypatch
    ) -> None:
        await seed_distribution([(CardType.WALMART, "A")])
        await seed_distribution(
            [(CardType.WALMART, "OLD")], model=DistributionArchiveDB, source_row_id=1
        )
        slow = True

        async def sometimes_slow_read(session, model, after_id, limit):
            rows = await operations.read_usage_batch(session, model, after_id, limit)
            if slow:
                clock.advance(300)
            return rows

        monkeypatch.setattr(
            "cardkeeper.services.usage_cache.read_usage_batch", sometimes_slow_read
        )
        first = await usage_cache.load()
        slow = False
        second = await usage_cache.load()

        assert not first.completed
        assert second.completed
        assert CardKey(CardType.WALMART, "OLD") in second.keys

    async def test_store_failure_raises_unavailable(self, cache, notifier, clock) -> None:
        def broken_factory():
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        usage_cache = UsageCache(broken_factory, cache, notifier, ttl_seconds=600, clock=clock)

        with pytest.raises(StoreUnavailableError):
            await usage_cache.load()

    async def test_used_numbers_by_type(self, usage_cache, seed_distribution) -> None:
        await seed_distribution([(CardType.WALMART, "A"), (CardType.TARGET, "A")])

        snapshot = await usage_cache.load()

        assert snapshot.used_numbers(CardType.WALMART) == {"A"}
        assert snapshot.used_numbers(CardType.BUS_PASS) == set()
