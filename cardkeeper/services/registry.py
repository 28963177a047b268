"""
Service wiring.

Builds every component from three explicit dependencies: a session
factory for the ledger store, a cache store, and a notifier. Components
never reach for a global cache; the process-wide instance lives here and
is only used by the HTTP app and the scheduled jobs.
"""

import asyncio
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.db.database import async_session_factory
from cardkeeper.services.archiver import Archiver
from cardkeeper.services.availability import AvailabilityEngine
from cardkeeper.services.cache_store import CacheStore, MemoryCacheStore
from cardkeeper.services.health_check import HealthChecker
from cardkeeper.services.inventory_admin import InventoryAdmin
from cardkeeper.services.inventory_cache import InventoryCache
from cardkeeper.services.issuance import IssuanceService
from cardkeeper.services.ledger_import import LedgerImporter
from cardkeeper.services.notifier import Notifier, build_notifier
from cardkeeper.services.usage_cache import UsageCache


@dataclass
class CardServices:
    """All card-availability components sharing one cache and notifier."""

    cache: CacheStore
    notifier: Notifier
    inventory_cache: InventoryCache
    usage_cache: UsageCache
    availability: AvailabilityEngine
    issuance: IssuanceService
    inventory_admin: InventoryAdmin
    archiver: Archiver
    health: HealthChecker
    importer: LedgerImporter


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    cache: CacheStore | None = None,
    notifier: Notifier | None = None,
) -> CardServices:
    """Wire the components together."""
    cache = cache if cache is not None else MemoryCacheStore()
    notifier = notifier if notifier is not None else build_notifier()

    inventory_cache = InventoryCache(session_factory, cache)
    usage_cache = UsageCache(session_factory, cache, notifier)
    availability = AvailabilityEngine(inventory_cache, usage_cache, notifier)
    # Issuance and distribution imports share one commit unit
    commit_lock = asyncio.Lock()

    return CardServices(
        cache=cache,
        notifier=notifier,
        inventory_cache=inventory_cache,
        usage_cache=usage_cache,
        availability=availability,
        issuance=IssuanceService(
            session_factory, usage_cache, notifier, commit_lock=commit_lock
        ),
        inventory_admin=InventoryAdmin(session_factory, inventory_cache, usage_cache, notifier),
        archiver=Archiver(session_factory, usage_cache, notifier),
        health=HealthChecker(session_factory, availability, notifier),
        importer=LedgerImporter(
            session_factory, usage_cache, notifier, commit_lock=commit_lock
        ),
    )


# =============================================================================
# PROCESS-WIDE INSTANCE
# =============================================================================

_services: CardServices | None = None


def get_services() -> CardServices:
    """Get the process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_services(async_session_factory)
    return _services


def reset_services() -> None:
    """Drop the process-wide services (for testing)."""
    global _services
    _services = None
