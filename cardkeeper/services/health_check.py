"""
Periodic diagnostics.

Looks for conditions staff should act on before they become outages:
card types running low, active ledgers over the archive cap, and usage
scans that no longer finish inside their time budget.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardkeeper.config import settings
from cardkeeper.db.ledgers import MANAGED_LEDGERS, ManagedLedger
from cardkeeper.db.operations import count_rows
from cardkeeper.services.availability import AvailabilityEngine
from cardkeeper.services.notifier import Notifier

logger = logging.getLogger(__name__)


@dataclass
class HealthReport:
    """Findings of one health check."""

    available: dict[str, int] = field(default_factory=dict)
    active_rows: dict[str, int] = field(default_factory=dict)
    usage_complete: bool = True
    findings: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.findings


class HealthChecker:
    """Runs the periodic health check and alerts on findings."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        availability: AvailabilityEngine,
        notifier: Notifier,
        ledgers: tuple[ManagedLedger, ...] = MANAGED_LEDGERS,
        low_stock_threshold: int | None = None,
        max_active_rows: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.availability = availability
        self.notifier = notifier
        self.ledgers = ledgers
        self.low_stock_threshold = (
            low_stock_threshold if low_stock_threshold is not None else settings.low_stock_threshold
        )
        self.max_active_rows = (
            max_active_rows if max_active_rows is not None else settings.archive_max_active_rows
        )

    async def run(self) -> HealthReport:
        """Collect diagnostics. Sends one alert if anything needs attention."""
        report = HealthReport()

        summary = await self.availability.get_summary()
        report.usage_complete = summary.usage_complete
        if summary.degraded:
            report.findings.append("Ledger store unavailable; availability unknown")
        else:
            for type_summary in summary.types:
                name = type_summary.card_type.value
                report.available[name] = type_summary.available
                if type_summary.available < self.low_stock_threshold:
                    report.findings.append(
                        f"Low stock: {name} has {type_summary.available} cards left "
                        f"(threshold {self.low_stock_threshold})"
                    )
            if not summary.usage_complete:
                report.findings.append("Usage scan did not finish within its time budget")

        try:
            async with self.session_factory() as session:
                for ledger in self.ledgers:
                    rows = await count_rows(session, ledger.active)
                    report.active_rows[ledger.name] = rows
                    if rows > self.max_active_rows:
                        report.findings.append(
                            f"Ledger {ledger.name} has {rows} active rows "
                            f"(cap {self.max_active_rows}); archival is falling behind"
                        )
        except (SQLAlchemyError, OSError) as e:
            report.findings.append(f"Could not count ledger rows: {e}")

        if report.findings:
            logger.warning("HEALTH_CHECK_FINDINGS", extra={"findings": report.findings})
            await self.notifier.alert(
                "Card service health check",
                "\n".join(f"- {finding}" for finding in report.findings),
            )
        else:
            logger.info("Health check passed")
        return report
