"""
Scheduled job to run the service health check.

Runs on the health_check_schedule (weekly by default). Findings are
alerted by the checker itself; the exit status stays zero so a low-stock
warning is not reported as a failed job.
"""

import asyncio
import logging

from cardkeeper.services.health_check import HealthReport
from cardkeeper.services.registry import get_services

logger = logging.getLogger(__name__)


async def run_health_check() -> HealthReport:
    """Run the health check with the process-wide services."""
    report = await get_services().health.run()
    logger.info(
        "Health check complete: %s (%d findings)",
        "healthy" if report.healthy else "attention needed",
        len(report.findings),
    )
    return report


def main() -> None:
    """CLI entry point for running the health check."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_health_check())


if __name__ == "__main__":
    main()
