# Overview: Domain error taxonomy shared by services and routes.

"""
Typed domain errors.

WHY: Every workflow, QC, warehouse and inventory rule violation surfaces
synchronously as one of these. Routes translate them 1:1 into HTTP
responses via `status_code` and `to_dict()`; services never swallow them.

TAXONOMY:
- Forbidden            403  actor lacks permission for the action/stage
- InvalidTransition    409  no transition defined for current stage + action
- MissingRequiredField 400  transition payload lacks a required field
- NotReady             409  business precondition unmet
- InsufficientStock    409  reservation/removal exceeds available quantity
- NotFound             404  referenced entity does not exist
- Conflict             409  unique-key violation or lost concurrent update
- PartialSuccess       207  primary change committed, side effect failed
- ValidationError      400  malformed request input
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    FORBIDDEN = "forbidden"
    INVALID_TRANSITION = "invalid_transition"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    NOT_READY = "not_ready"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PARTIAL_SUCCESS = "partial_success"
    VALIDATION = "validation"


class DomainError(Exception):
    """Base class for all business-rule errors raised by the core."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind.value}
        body.update(self.details)
        return body


class ValidationError(DomainError):
    """400-level input problem."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class Forbidden(DomainError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class InvalidTransition(DomainError):
    kind = ErrorKind.INVALID_TRANSITION
    status_code = 409


class MissingRequiredField(DomainError):
    kind = ErrorKind.MISSING_REQUIRED_FIELD
    status_code = 400

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Missing required field: {field}", field=field)
        self.field = field


class NotReady(DomainError):
    kind = ErrorKind.NOT_READY
    status_code = 409


class InsufficientStock(DomainError):
    kind = ErrorKind.INSUFFICIENT_STOCK
    status_code = 409

    def __init__(self, requested: int, available: int, message: str | None = None):
        super().__init__(
            message or f"Insufficient stock: requested {requested}, available {available}",
            requested=requested,
            available=available,
        )
        self.requested = requested
        self.available = available


class NotFound(DomainError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class Conflict(DomainError):
    kind = ErrorKind.CONFLICT
    status_code = 409


class PartialSuccess(DomainError):
    """
    The primary state change is committed but a downstream side effect failed.

    Carries the committed resource so callers can render it and reconcile.
    """

    kind = ErrorKind.PARTIAL_SUCCESS
    status_code = 207

    def __init__(self, message: str, *, resource: dict | None = None, cause: str | None = None):
        super().__init__(message, resource=resource, cause=cause)
        self.resource = resource
        self.cause = cause


class WorkflowConfigurationError(ValueError):
    """
    Raised at load time when the workflow definition is inconsistent.

    Not a DomainError: it is an operator/deployment problem, never a
    request outcome.
    """

    def __init__(self, problems: list[str]):
        super().__init__("Invalid workflow definition: " + "; ".join(problems))
        self.problems = problems
