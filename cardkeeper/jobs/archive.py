"""
Scheduled job to archive old ledger rows.

Runs on the archive_schedule (daily by default). Can be run as a
standalone script or called from a scheduler. A failed run raises, so
the scheduler records it as failed.
"""

import asyncio
import logging

from cardkeeper.services.archiver import ArchiveReport
from cardkeeper.services.registry import get_services

logger = logging.getLogger(__name__)


async def run_archive(
    threshold_days: int | None = None,
    max_active_rows: int | None = None,
    trim_batch: int | None = None,
) -> ArchiveReport:
    """
    Run one archive pass with the process-wide services.

    Args:
        threshold_days: Age threshold override
        max_active_rows: Active row cap override
        trim_batch: Trim batch override

    Returns:
        The archive report
    """
    services = get_services()
    report = await services.archiver.archive(
        threshold_days=threshold_days,
        max_active_rows=max_active_rows,
        trim_batch=trim_batch,
    )

    for result in report.ledgers:
        logger.info(
            "%s: %d archived, %d remain, %d failed blocks",
            result.ledger,
            result.copied,
            result.remaining,
            len(result.failed_blocks),
        )
    return report


def main() -> None:
    """CLI entry point for running the archiver."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_archive())


if __name__ == "__main__":
    main()
