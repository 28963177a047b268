"""
Inventory API endpoints.

Read path (availability views) and admin write path (adding and
removing cards). Read endpoints never fail because the store is down;
they answer with empty lists and zero counts instead.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cardkeeper.api.errors import to_http_exception
from cardkeeper.models.card import CardType
from cardkeeper.models.failure import KnownError
from cardkeeper.services.inventory_admin import CardChangeReport
from cardkeeper.services.normalizer import normalize_card_number
from cardkeeper.services.registry import CardServices, get_services

router = APIRouter(prefix="/inventory", tags=["inventory"])

Services = Annotated[CardServices, Depends(get_services)]


class InventoryResponse(BaseModel):
    """All known card numbers, by card type."""

    cards: dict[str, list[str]] = Field(default_factory=dict)
    total_cards: int = 0


class CountsResponse(BaseModel):
    """Unused card counts, by card type."""

    counts: dict[str, int] = Field(default_factory=dict)


class AvailableResponse(BaseModel):
    """Unused card numbers of one type, sorted ascending."""

    card_type: str
    numbers: list[str] = Field(default_factory=list)
    count: int = 0


class CardAvailabilityResponse(BaseModel):
    """Availability of a single card."""

    card_type: str
    number: str
    available: bool


class TypeSummaryResponse(BaseModel):
    card_type: str
    available: int
    issued: int
    total: int


class SummaryResponse(BaseModel):
    """Per-type availability figures."""

    types: list[TypeSummaryResponse]
    usage_complete: bool = Field(
        ...,
        description="False when the used set came from a scan that ran out of time",
    )
    degraded: bool = False


class CardChangeRequest(BaseModel):
    """Request model for adding or removing cards."""

    numbers: list[str] = Field(
        ...,
        description="Card numbers; spaces, dashes and case are ignored",
        examples=[["6035-1234-0001", "6035-1234-0002"]],
    )
    actor: str = Field(..., description="Staff member making the change")


class CardChangeResponse(BaseModel):
    """Outcome of an add or remove request."""

    card_type: str
    changed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)


def _parse_type(card_type: str) -> CardType:
    try:
        return CardType.parse(card_type)
    except KnownError as e:
        raise to_http_exception(e) from e


def _change_response(report: CardChangeReport) -> CardChangeResponse:
    return CardChangeResponse(
        card_type=report.card_type.value,
        changed=report.changed,
        skipped=report.skipped,
        not_found=report.not_found,
    )


@router.get("", response_model=InventoryResponse)
async def get_inventory(services: Services) -> InventoryResponse:
    """Get every known card number, grouped by type."""
    inventory = await services.availability.get_inventory()
    cards = {card_type.value: sorted(numbers) for card_type, numbers in inventory.items()}
    return InventoryResponse(cards=cards, total_cards=sum(len(n) for n in cards.values()))


@router.get("/counts", response_model=CountsResponse)
async def get_counts(services: Services) -> CountsResponse:
    """Get the number of unused cards per type."""
    counts = await services.availability.get_counts()
    return CountsResponse(counts={card_type.value: n for card_type, n in counts.items()})


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(services: Services) -> SummaryResponse:
    """Get available, issued and total figures per type."""
    summary = await services.availability.get_summary()
    return SummaryResponse(
        types=[
            TypeSummaryResponse(
                card_type=t.card_type.value,
                available=t.available,
                issued=t.issued,
                total=t.total,
            )
            for t in summary.types
        ],
        usage_complete=summary.usage_complete,
        degraded=summary.degraded,
    )


@router.get("/{card_type}/available", response_model=AvailableResponse)
async def get_available(card_type: str, services: Services) -> AvailableResponse:
    """Get unused card numbers of one type."""
    resolved = _parse_type(card_type)
    numbers = await services.availability.get_available(resolved)
    return AvailableResponse(card_type=resolved.value, numbers=numbers, count=len(numbers))


@router.get("/{card_type}/{number}/available", response_model=CardAvailabilityResponse)
async def check_card(card_type: str, number: str, services: Services) -> CardAvailabilityResponse:
    """Check whether a single card has not been issued."""
    resolved = _parse_type(card_type)
    available = await services.availability.is_available(resolved, number)
    return CardAvailabilityResponse(
        card_type=resolved.value,
        number=normalize_card_number(number),
        available=available,
    )


@router.post("/{card_type}/cards", response_model=CardChangeResponse)
async def add_cards(
    card_type: str, request: CardChangeRequest, services: Services
) -> CardChangeResponse:
    """Add cards to the inventory."""
    try:
        report = await services.inventory_admin.add_cards(card_type, request.numbers, request.actor)
    except KnownError as e:
        raise to_http_exception(e) from e
    return _change_response(report)


@router.post("/{card_type}/cards/remove", response_model=CardChangeResponse)
async def remove_cards(
    card_type: str, request: CardChangeRequest, services: Services
) -> CardChangeResponse:
    """Remove cards from the inventory."""
    try:
        report = await services.inventory_admin.remove_cards(
            card_type, request.numbers, request.actor
        )
    except KnownError as e:
        raise to_http_exception(e) from e
    return _change_response(report)
