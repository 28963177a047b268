"""
Issuance API endpoints.

Recording a batch is all-or-nothing. A card that someone else issued
first is answered with 409 and the batch is not written.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from cardkeeper.api.errors import to_http_exception
from cardkeeper.models.card import IssueMode
from cardkeeper.models.failure import KnownError
from cardkeeper.models.ledger import IssuanceRequest, IssuedCard
from cardkeeper.services.registry import CardServices, get_services

router = APIRouter(prefix="/issuance", tags=["issuance"])

Services = Annotated[CardServices, Depends(get_services)]


class IssuanceItem(BaseModel):
    """One card handed to one client."""

    client_name: str
    card_type: str = Field(..., examples=["Walmart"])
    card_number: str
    mode: IssueMode = IssueMode.NORMAL
    signature_ref: str | None = Field(
        default=None,
        description="Reference to the stored signature image",
    )
    notes: str | None = None


class IssuanceBatchRequest(BaseModel):
    """Request model for recording issued cards."""

    issued_by: str = Field(..., description="Staff member handing out the cards")
    items: list[IssuanceItem]


class IssuedCardResponse(BaseModel):
    """A committed issuance."""

    record_id: int
    card_type: str
    card_number: str
    client_name: str
    issued_by: str
    recorded_at: datetime
    mode: IssueMode


class IssuanceBatchResponse(BaseModel):
    issued: list[IssuedCardResponse]
    count: int


class UndoRequest(BaseModel):
    actor: str = Field(..., description="Staff member reverting the issuance")


def _to_response(issued: IssuedCard) -> IssuedCardResponse:
    return IssuedCardResponse(
        record_id=issued.record_id,
        card_type=issued.card_key.card_type.value,
        card_number=issued.card_key.number,
        client_name=issued.client_name,
        issued_by=issued.issued_by,
        recorded_at=issued.recorded_at,
        mode=issued.mode,
    )


@router.post("", response_model=IssuanceBatchResponse, status_code=status.HTTP_201_CREATED)
async def record_issuance(
    request: IssuanceBatchRequest, services: Services
) -> IssuanceBatchResponse:
    """Record a batch of issued cards."""
    batch = [
        IssuanceRequest(
            client_name=item.client_name,
            card_type=item.card_type,
            card_number=item.card_number,
            issued_by=request.issued_by,
            mode=item.mode,
            signature_ref=item.signature_ref,
            notes=item.notes,
        )
        for item in request.items
    ]
    try:
        issued = await services.issuance.record_issuance(batch)
    except KnownError as e:
        raise to_http_exception(e) from e
    return IssuanceBatchResponse(issued=[_to_response(i) for i in issued], count=len(issued))


@router.get("/{record_id}", response_model=IssuedCardResponse)
async def get_issuance(record_id: int, services: Services) -> IssuedCardResponse:
    """Get one active issuance record."""
    try:
        issued = await services.issuance.get_issuance(record_id)
    except KnownError as e:
        raise to_http_exception(e) from e
    return _to_response(issued)


@router.post("/{record_id}/undo", response_model=IssuedCardResponse)
async def undo_issuance(
    record_id: int, request: UndoRequest, services: Services
) -> IssuedCardResponse:
    """Revert an active issuance; the card becomes available again."""
    try:
        undone = await services.issuance.undo_issuance(record_id, request.actor)
    except KnownError as e:
        raise to_http_exception(e) from e
    return _to_response(undone)
