"""Translate service-layer failures into HTTP errors."""

from typing import Any

from fastapi import HTTPException

from services.errors import DomainError, OperationResult


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DomainError):
        return HTTPException(status_code=exc.http_status, detail=exc.to_detail())
    return HTTPException(
        status_code=500,
        detail={"code": "INTERNAL_ERROR", "message": str(exc) or "Unexpected server error", "details": {}},
    )


def unwrap(result: OperationResult) -> Any:
    """Return result data or raise the matching HTTPException."""
    if result.success:
        return result.data
    raise http_error(result.error or RuntimeError("Operation failed"))
