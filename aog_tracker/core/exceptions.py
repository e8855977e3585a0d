"""
AOG domain exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map them to HTTP status codes. Every exception carries a machine-readable
``code`` that ends up in the API error body.

Usage:
    from aog_tracker.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="AOGEvent", resource_id=42)
    raise ValidationError("reason_code is required", details={"reason_code": "required"})
"""


class AOGError(Exception):
    """Base class for all domain errors."""

    code = "ERR_INTERNAL"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AOGError):
    """Raised when a requested event, part request or aircraft does not exist.

    Args:
        resource: Human-readable entity name (e.g. "AOGEvent", "PartRequest").
        resource_id: The PK that was looked up.
    """

    code = "ERR_NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(AOGError):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"
    http_status = 422


class InvalidTransitionError(ValidationError):
    """The requested status is not an allowed successor of the current one."""

    code = "ERR_INVALID_TRANSITION"
    http_status = 409

    def __init__(self, from_status: str, to_status: str, allowed: list[str] | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        allowed = allowed or []
        super().__init__(
            f"Invalid transition: {from_status} → {to_status}",
            details={"from_status": from_status, "to_status": to_status, "allowed": allowed},
        )


class MissingBlockingReasonError(ValidationError):
    """A blocking status was requested without a blocking reason."""

    code = "ERR_BLOCKING_REASON_REQUIRED"

    def __init__(self, to_status: str) -> None:
        super().__init__(
            f"blocking_reason is required when moving to {to_status}",
            details={"to_status": to_status},
        )


class InvalidTimestampOrderError(ValidationError):
    """A milestone timestamp precedes its causal predecessor."""

    code = "ERR_INVALID_TIMESTAMP_ORDER"

    def __init__(self, field: str, previous_field: str, value, previous_value) -> None:
        super().__init__(
            f"{field} must be on or after {previous_field}",
            details={
                "field": field,
                "previous_field": previous_field,
                "value": value.isoformat() if hasattr(value, "isoformat") else value,
                "previous_value": (
                    previous_value.isoformat() if hasattr(previous_value, "isoformat") else previous_value
                ),
            },
        )


class NoCostRecordedError(ValidationError):
    """Actual spend was requested for an event whose recorded cost total is zero."""

    code = "ERR_NO_COSTS"


class ConflictError(AOGError):
    """Raised when the operation conflicts with the current persisted state.

    Maps to HTTP 409.
    """

    code = "ERR_CONFLICT_STATE"
    http_status = 409


class AlreadyLinkedError(ConflictError):
    """An actual spend has already been generated for this event."""

    code = "ERR_DUPLICATE_SPEND"

    def __init__(self, event_id: int, spend_id: str) -> None:
        self.event_id = event_id
        self.spend_id = spend_id
        super().__init__(
            f"Actual spend already generated for AOG event {event_id}",
            details={"linked_actual_spend_id": spend_id},
        )


class SpendInProgressError(ConflictError):
    """Another request is booking the actual spend for this event right now."""

    code = "ERR_SPEND_IN_PROGRESS"


class ConcurrentModificationError(ConflictError):
    """The event was modified by another writer; re-read and retry."""

    code = "ERR_CONCURRENT_MODIFICATION"


class StoreUnavailableError(AOGError):
    """The persistence backend could not be reached. Maps to HTTP 503."""

    code = "ERR_STORE_UNAVAILABLE"
    http_status = 503


class BudgetServiceError(StoreUnavailableError):
    """The budget collaborator rejected or failed the spend request."""

    code = "ERR_BUDGET_SERVICE"
