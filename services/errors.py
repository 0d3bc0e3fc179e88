"""Typed domain errors and the success/failure result shape."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar


T = TypeVar("T")


class DomainError(Exception):
    """Base for expected, caller-recoverable failures."""

    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InsufficientCreditsError(DomainError):
    code = "INSUFFICIENT_CREDITS"
    http_status = 402

    def __init__(self, user_id: str, required: int = 1, available: int = 0):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. Top up credits to continue.",
            {"user_id": user_id, "required": required, "available": available},
        )
        self.user_id = user_id
        self.required = required
        self.available = available


class EntityNotFoundError(DomainError):
    code = "ENTITY_NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}", {"entity": entity, "id": entity_id})


class IdeaNotFoundError(EntityNotFoundError):
    code = "IDEA_NOT_FOUND"

    def __init__(self, idea_id: str):
        super().__init__("Idea", idea_id)


class DocumentNotFoundError(EntityNotFoundError):
    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_ref: str):
        super().__init__("Document", document_ref)


class UnauthorizedAccessError(DomainError):
    code = "UNAUTHORIZED_ACCESS"
    http_status = 403

    def __init__(self, user_id: str, resource_id: str):
        super().__init__(
            f"User {user_id} is not allowed to access {resource_id}",
            {"user_id": user_id, "resource_id": resource_id},
        )


class DocumentAlreadyExistsError(DomainError):
    code = "DOCUMENT_ALREADY_EXISTS"
    http_status = 409

    def __init__(self, idea_id: str, document_type: str):
        super().__init__(
            f"A {document_type} document already exists for idea {idea_id}. Regenerate it instead.",
            {"idea_id": idea_id, "document_type": document_type},
        )


class PersistenceError(DomainError):
    code = "PERSISTENCE_ERROR"
    http_status = 500


class GenerationError(DomainError):
    code = "GENERATION_FAILED"
    http_status = 502


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    http_status = 422


@dataclass
class OperationResult(Generic[T]):
    """Success carries data, failure carries the error that stopped the operation."""

    success: bool
    data: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: Exception) -> "OperationResult[T]":
        return cls(success=False, error=error)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or self.error.__class__.__name__
