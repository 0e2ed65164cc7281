"""Typed domain errors.

Every error carries a stable ``code`` and the HTTP status the API layer maps
it to. Precondition failures are raised before any write.
"""

from prism.domain.enums import ResponseState


class PrismError(Exception):
    """Base class for all domain errors raised by PRISM services."""

    code = "error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(PrismError):
    code = "not_found"
    status_code = 404


class StatusNotFoundError(NotFoundError):
    pass


class OpportunityNotFoundError(NotFoundError):
    pass


class RestoreRequestNotFoundError(NotFoundError):
    pass


class ThreadNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


# ---------------------------------------------------------------------------
# Response state machine
# ---------------------------------------------------------------------------


class InvalidTransitionError(PrismError):
    """Raised when a response-state transition is not in the allowed edge set."""

    code = "invalid_transition"
    status_code = 409

    def __init__(
        self,
        current_state: ResponseState,
        target_state: ResponseState,
        reason: str | None = None,
    ):
        self.current_state = current_state
        self.target_state = target_state
        self.reason = reason or (
            f"cannot move from {current_state.value} to {target_state.value}"
        )
        super().__init__(
            f"Invalid transition from {current_state.value} to {target_state.value}: {self.reason}"
        )

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["current_state"] = self.current_state.value
        detail["target_state"] = self.target_state.value
        return detail


class ConcurrentModificationError(PrismError):
    """Raised when a row changed between validation and write.

    The caller should re-fetch current state and may retry once.
    """

    code = "concurrent_modification"
    status_code = 409

    def __init__(self, entity: str, entity_id: str, expected: str):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected {expected}); re-fetch and retry"
        )


# ---------------------------------------------------------------------------
# Restore requests
# ---------------------------------------------------------------------------


class NotDeclinedError(PrismError):
    code = "not_declined"

    def __init__(self, current_state: ResponseState):
        self.current_state = current_state
        super().__init__(
            f"Can only request restore for declined opportunities (current state: {current_state.value})"
        )


class DeadlinePassedError(PrismError):
    code = "deadline_passed"

    def __init__(self, deadline_at):
        self.deadline_at = deadline_at
        super().__init__(
            f"Cannot request restore: deadline has passed ({deadline_at.isoformat()})"
        )


class DuplicateRequestError(PrismError):
    code = "duplicate_request"
    status_code = 409

    def __init__(self, existing_request_id: str | None = None):
        self.existing_request_id = existing_request_id
        super().__init__("A pending restore request already exists for this opportunity")


class RequestAlreadyReviewedError(PrismError):
    code = "already_reviewed"
    status_code = 409

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Restore request {request_id} has already been reviewed ({status})")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class EmptyMessageError(PrismError):
    code = "empty_message"

    def __init__(self):
        super().__init__("Message cannot be empty")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationDeliveryError(PrismError):
    """Fan-out failure. Logged only; never surfaced to the acting user."""

    code = "delivery_failure"
    status_code = 502
