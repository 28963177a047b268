"""
Maintenance API endpoints.

Manual triggers for the scheduled jobs, and bulk import of spreadsheet
exports.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cardkeeper.api.errors import to_http_exception
from cardkeeper.models.failure import KnownError
from cardkeeper.services.registry import CardServices, get_services

router = APIRouter(prefix="/maintenance", tags=["maintenance"])

Services = Annotated[CardServices, Depends(get_services)]


class LedgerArchiveResponse(BaseModel):
    ledger: str
    aged: int
    trimmed: int
    copied: int
    deleted: int
    remaining: int
    failed_blocks: list[tuple[int, int]] = Field(default_factory=list)


class ArchiveResponse(BaseModel):
    """Outcome of an archive run."""

    cutoff: str
    total_archived: int
    ledgers: list[LedgerArchiveResponse]


class HealthCheckResponse(BaseModel):
    healthy: bool
    available: dict[str, int] = Field(default_factory=dict)
    active_rows: dict[str, int] = Field(default_factory=dict)
    usage_complete: bool = True
    findings: list[str] = Field(default_factory=list)


class ImportRequest(BaseModel):
    """Request model for importing a spreadsheet export."""

    text: str = Field(
        ...,
        description="CSV export including the header row",
        examples=["Timestamp,Client Name,Card Type,Card Number,Issued By\n..."],
    )


class ImportResponse(BaseModel):
    ledger: str
    rows_imported: int


@router.post("/archive", response_model=ArchiveResponse)
async def run_archive(
    services: Services,
    threshold_days: Annotated[int | None, Query(ge=1)] = None,
    max_active_rows: Annotated[int | None, Query(ge=1)] = None,
    trim_batch: Annotated[int | None, Query(ge=0)] = None,
) -> ArchiveResponse:
    """Run the archiver now."""
    try:
        report = await services.archiver.archive(
            threshold_days=threshold_days,
            max_active_rows=max_active_rows,
            trim_batch=trim_batch,
        )
    except KnownError as e:
        raise to_http_exception(e) from e

    return ArchiveResponse(
        cutoff=report.cutoff.isoformat(),
        total_archived=report.total_archived,
        ledgers=[
            LedgerArchiveResponse(
                ledger=r.ledger,
                aged=r.aged,
                trimmed=r.trimmed,
                copied=r.copied,
                deleted=r.deleted,
                remaining=r.remaining,
                failed_blocks=r.failed_blocks,
            )
            for r in report.ledgers
        ],
    )


@router.post("/health-check", response_model=HealthCheckResponse)
async def run_health_check(services: Services) -> HealthCheckResponse:
    """Run the periodic health check now."""
    report = await services.health.run()
    return HealthCheckResponse(
        healthy=report.healthy,
        available=report.available,
        active_rows=report.active_rows,
        usage_complete=report.usage_complete,
        findings=report.findings,
    )


@router.post("/import/{ledger}", response_model=ImportResponse)
async def import_ledger(
    ledger: Literal["distribution", "audit"],
    request: ImportRequest,
    services: Services,
) -> ImportResponse:
    """Import a spreadsheet export into the distribution ledger or audit log."""
    try:
        if ledger == "distribution":
            count = await services.importer.import_distribution(request.text)
        else:
            count = await services.importer.import_audit(request.text)
    except KnownError as e:
        raise to_http_exception(e) from e
    return ImportResponse(ledger=ledger, rows_imported=count)
