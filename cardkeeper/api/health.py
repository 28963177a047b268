"""
Health check endpoints.

Provides liveness and readiness probes. Readiness checks the ledger
store and reports the state of the availability caches.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cardkeeper.config import INVENTORY_CACHE_KEY, USED_CARD_KEYS_CACHE_KEY
from cardkeeper.db.database import get_session
from cardkeeper.services.registry import CardServices, get_services

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None
    inventory_cached: bool | None = None
    usage_cached: bool | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness probe.

    Returns healthy if the service is running.
    Does not check dependencies.
    """
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
    services: Annotated[CardServices, Depends(get_services)],
) -> HealthResponse:
    """
    Readiness probe.

    Checks ledger store connectivity. Returns 503 if the store is
    unavailable. Cache flags report whether the next read will be a hit.
    """
    inventory_cached = services.cache.get(INVENTORY_CACHE_KEY) is not None
    usage_cached = services.cache.get(USED_CARD_KEYS_CACHE_KEY) is not None
    try:
        await session.execute(text("SELECT 1"))
        return HealthResponse(
            status="ready",
            database="connected",
            inventory_cached=inventory_cached,
            usage_cached=usage_cached,
        )
    except Exception:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")
