"""
Engine error taxonomy.

Every failure an operator or a customer can trigger is one of these. The HTTP
layer maps them to responses in src/error_handler.py; nothing here knows about
HTTP.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all engine failures."""

    code = "engine_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "retryable": self.retryable, **self.details}


class NotFound(EngineError):
    code = "not_found"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} '{identifier}' not found", kind=kind, id=identifier)


class InvalidState(EngineError):
    """The requested action does not fit the proposal's current lifecycle stage."""

    code = "invalid_state"

    def __init__(self, proposal_id: str, current: Any, attempted: Any, message: Optional[str] = None) -> None:
        current_value = getattr(current, "value", current)
        attempted_value = getattr(attempted, "value", attempted)
        super().__init__(
            message or f"Proposal {proposal_id} is {current_value}; cannot move to {attempted_value}",
            proposal_id=proposal_id,
            current_status=current_value,
            attempted_status=attempted_value,
        )
        self.current = current
        self.attempted = attempted


class IllegalTransition(InvalidState):
    code = "illegal_transition"


class StaleWrite(InvalidState):
    """The caller's last-known status or version no longer matches the record."""

    code = "stale_write"


class FieldValidationError(EngineError):
    """Missing or contradictory input. ``field_errors`` lists every offending field."""

    code = "validation_error"

    def __init__(self, field_errors: Dict[str, str], message: str = "Validation failed") -> None:
        super().__init__(message, field_errors=dict(field_errors))
        self.field_errors = dict(field_errors)


class ConfirmationRequired(EngineError):
    code = "confirmation_required"

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message, requires_confirmation=True, field=field)


class ArtifactError(EngineError):
    """Attempt to reuse a consumed, invalidated or expired payment artifact."""

    code = "artifact_error"

    def __init__(self, outcome: Any, message: str) -> None:
        super().__init__(message, outcome=getattr(outcome, "value", outcome))
        self.outcome = outcome


class DuplicateAuthCode(EngineError):
    code = "duplicate_auth_code"
    retryable = True


class UpstreamError(EngineError):
    """The external payment-link collaborator failed. The operator may retry or paste a link."""

    code = "upstream_error"
    retryable = True


class StoreUnavailable(EngineError):
    """Persistence did not answer within its timeout."""

    code = "store_unavailable"
    retryable = True


class DuplicatePolicyNumber(EngineError):
    code = "duplicate_policy_number"
    retryable = True
