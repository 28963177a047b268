"""Translation of known failures into HTTP errors."""

from fastapi import HTTPException

from cardkeeper.models.failure import KnownError


def to_http_exception(error: KnownError) -> HTTPException:
    """Map a KnownError to an HTTPException carrying its FailureDetail."""
    return HTTPException(
        status_code=error.status_code,
        detail=error.to_detail().model_dump(mode="json"),
    )
