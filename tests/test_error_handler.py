from src.engine.errors import (
    ArtifactError,
    ConfirmationRequired,
    DuplicateAuthCode,
    FieldValidationError,
    IllegalTransition,
    NotFound,
    StaleWrite,
    StoreUnavailable,
    UpstreamError,
)
from src.error_handler import ErrorHandler
from src.integrations.contracts.interfaces import ConsumeOutcome, ProposalStatus


def test_handle_exception_returns_payload():
    eh = ErrorHandler()
    out = eh.handle_exception(Exception("boom"), context={"k": "v"})
    assert out["success"] is False
    assert "internal error" in out["message"].lower()
    assert "boom" in out["metadata"]["error"]


def test_status_codes():
    eh = ErrorHandler()
    assert eh.status_code_for(NotFound("proposal", "P1")) == 404
    assert eh.status_code_for(FieldValidationError({"a": "b"})) == 422
    assert eh.status_code_for(ConfirmationRequired("sure?", field="confirm_zero_premium")) == 409
    assert eh.status_code_for(IllegalTransition("P1", ProposalStatus.SUBMITTED, ProposalStatus.PAID)) == 409
    assert eh.status_code_for(StaleWrite("P1", ProposalStatus.SUBMITTED, ProposalStatus.REJECTED)) == 409
    assert eh.status_code_for(ArtifactError(ConsumeOutcome.ALREADY_CONSUMED, "used")) == 409
    assert eh.status_code_for(ArtifactError(ConsumeOutcome.EXPIRED, "expired")) == 410
    assert eh.status_code_for(ArtifactError(ConsumeOutcome.INVALIDATED, "void")) == 410
    assert eh.status_code_for(UpstreamError("worker down")) == 502
    assert eh.status_code_for(StoreUnavailable("busy")) == 503
    assert eh.status_code_for(DuplicateAuthCode("again")) == 503


def test_engine_error_body_carries_details():
    status, body = ErrorHandler().handle_engine_error(
        IllegalTransition("P1", ProposalStatus.SUBMITTED, ProposalStatus.PAID)
    )
    assert status == 409
    assert body == {
        "success": False,
        "error": "illegal_transition",
        "message": "Proposal P1 is SUBMITTED; cannot move to PAID",
        "retryable": False,
        "proposal_id": "P1",
        "current_status": "SUBMITTED",
        "attempted_status": "PAID",
    }
