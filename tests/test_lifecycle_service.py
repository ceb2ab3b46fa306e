"""Tests for mark paid, policy issuance, archive and customer payment confirmation."""

import re

import pytest

from src.engine import UnderwritingEngine
from src.engine.errors import (
    ArtifactError,
    DuplicatePolicyNumber,
    FieldValidationError,
    IllegalTransition,
    InvalidState,
    NotFound,
    StoreUnavailable,
)
from src.integrations.contracts.interfaces import ConsumeOutcome, ProposalStatus
from src.integrations.contracts.underwriting import DecisionInput
from src.utils.config_loader import EngineConfig, LifecycleConfig


@pytest.fixture
def accepted(engine, proposal, accept_input):
    return engine.submit_decision(proposal.proposal_id, accept_input)


def test_customer_payment_moves_proposal_to_paid(engine, accepted, clock):
    result = engine.authenticate_payment(accepted.auth_code)

    assert result.changed is True
    assert result.proposal.status == ProposalStatus.PAID
    assert result.proposal.paid_at == clock.now
    assert result.proposal.events[-1].actor == "customer"
    artifact = result.proposal.artifacts[-1]
    assert artifact.consumed_at == clock.now


def test_reused_auth_code_is_refused(engine, accepted):
    engine.authenticate_payment(accepted.auth_code)
    with pytest.raises(ArtifactError) as exc:
        engine.authenticate_payment(accepted.auth_code)
    assert exc.value.outcome == ConsumeOutcome.ALREADY_CONSUMED


def test_unknown_and_expired_codes(engine, accepted, clock):
    with pytest.raises(NotFound):
        engine.authenticate_payment("ZZZZZZZZ")

    clock.advance(hours=80)
    with pytest.raises(ArtifactError) as exc:
        engine.authenticate_payment(accepted.auth_code)
    assert exc.value.outcome == ConsumeOutcome.EXPIRED
    assert engine.editor.get_proposal(accepted.proposal_id).status == ProposalStatus.UNDERWRITING_CONFIRMED


def test_payment_after_operator_marked_paid_is_a_no_op(engine, accepted):
    engine.update_lifecycle(accepted.proposal_id, "PAID")
    result = engine.authenticate_payment(accepted.auth_code)
    assert result.changed is False
    assert result.proposal.status == ProposalStatus.PAID


def test_mark_paid_is_idempotent(engine, accepted):
    first = engine.update_lifecycle(accepted.proposal_id, "paid")
    second = engine.update_lifecycle(accepted.proposal_id, ProposalStatus.PAID)
    assert (first.changed, second.changed) == (True, False)
    assert len([e for e in second.proposal.events if e.to_status == ProposalStatus.PAID]) == 1


def test_update_lifecycle_only_accepts_paid_or_completed(engine, accepted):
    for target in ("POLICY_ISSUED", "REJECTED", "nonsense", None):
        with pytest.raises(FieldValidationError):
            engine.update_lifecycle(accepted.proposal_id, target)


def test_mark_paid_from_submitted_is_illegal(engine, proposal):
    with pytest.raises(IllegalTransition):
        engine.update_lifecycle(proposal.proposal_id, "PAID")


def test_issue_policy_after_payment(engine, accepted, clock):
    engine.authenticate_payment(accepted.auth_code)
    issued = engine.issue_policy(accepted.proposal_id, "chen.jie")

    assert issued.status == ProposalStatus.POLICY_ISSUED
    assert re.fullmatch(r"PDAA20240301\d{6}", issued.policy_no)
    stored = engine.editor.get_proposal(accepted.proposal_id)
    assert stored.policy_no == issued.policy_no
    assert stored.issued_at == clock.now

    again = engine.issue_policy(accepted.proposal_id)
    assert again.policy_no == issued.policy_no
    assert again.status == ProposalStatus.POLICY_ISSUED


def test_issue_policy_before_payment_is_refused(engine, accepted):
    with pytest.raises(InvalidState):
        engine.issue_policy(accepted.proposal_id)
    assert engine.editor.get_proposal(accepted.proposal_id).policy_no is None


def test_policy_number_reserved_before_payment_when_configured(db, clock, application, accept_input):
    config = EngineConfig(
        lifecycle=LifecycleConfig(
            policy_issue_allowed_from=[ProposalStatus.UNDERWRITING_CONFIRMED, ProposalStatus.PAID],
            policy_no_prefix="TEST",
        )
    )
    engine = UnderwritingEngine(db, config, clock=clock)
    accepted = engine.submit_decision(engine.create_proposal(application).proposal_id, accept_input)

    reserved = engine.issue_policy(accepted.proposal_id)
    assert reserved.status == ProposalStatus.UNDERWRITING_CONFIRMED
    assert reserved.policy_no.startswith("TEST")

    engine.authenticate_payment(accepted.auth_code)
    issued = engine.issue_policy(accepted.proposal_id)
    assert issued.policy_no == reserved.policy_no
    assert issued.status == ProposalStatus.POLICY_ISSUED


def test_policy_number_collision_is_retried(engine, application, accept_input):
    numbers = iter(["PDAA20240301000001", "PDAA20240301000001", "PDAA20240301000002"])
    engine.lifecycle.generate_policy_no = lambda: next(numbers)

    ids = []
    for _ in range(2):
        accepted = engine.submit_decision(engine.create_proposal(application).proposal_id, accept_input)
        engine.update_lifecycle(accepted.proposal_id, "PAID")
        ids.append(accepted.proposal_id)

    first = engine.issue_policy(ids[0])
    second = engine.issue_policy(ids[1])
    assert (first.policy_no, second.policy_no) == ("PDAA20240301000001", "PDAA20240301000002")


def test_policy_number_collision_gives_up(engine, application, accept_input):
    engine.lifecycle.generate_policy_no = lambda: "PDAA20240301999999"
    ids = []
    for _ in range(2):
        accepted = engine.submit_decision(engine.create_proposal(application).proposal_id, accept_input)
        engine.update_lifecycle(accepted.proposal_id, "PAID")
        ids.append(accepted.proposal_id)

    engine.issue_policy(ids[0])
    with pytest.raises(DuplicatePolicyNumber):
        engine.issue_policy(ids[1])
    assert engine.editor.get_proposal(ids[1]).status == ProposalStatus.PAID


def test_full_lifecycle_to_completed(engine, accepted):
    engine.authenticate_payment(accepted.auth_code)
    engine.issue_policy(accepted.proposal_id)
    done = engine.update_lifecycle(accepted.proposal_id, "COMPLETED")

    assert done.proposal.status == ProposalStatus.COMPLETED
    statuses = [e.to_status for e in done.proposal.events]
    assert statuses == [
        ProposalStatus.SUBMITTED,
        ProposalStatus.UNDERWRITING_CONFIRMED,
        ProposalStatus.PAID,
        ProposalStatus.POLICY_ISSUED,
        ProposalStatus.COMPLETED,
    ]


def test_rejected_proposal_cannot_be_issued(engine, proposal):
    engine.submit_decision(proposal.proposal_id, DecisionInput(acceptance="REJECT"))
    with pytest.raises(InvalidState):
        engine.issue_policy(proposal.proposal_id)
    with pytest.raises(IllegalTransition):
        engine.update_lifecycle(proposal.proposal_id, "COMPLETED")


def test_payment_interrupted_before_paid_completes_on_retry(engine, accepted, monkeypatch):
    advance = engine.lifecycle.state_machine.advance
    calls = []

    def flaky_advance(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise StoreUnavailable("Proposal store busy")
        return advance(*args, **kwargs)

    monkeypatch.setattr(engine.lifecycle.state_machine, "advance", flaky_advance)
    with pytest.raises(StoreUnavailable):
        engine.authenticate_payment(accepted.auth_code)
    assert engine.editor.get_proposal(accepted.proposal_id).status == ProposalStatus.UNDERWRITING_CONFIRMED

    result = engine.authenticate_payment(accepted.auth_code)
    assert result.changed is True
    assert result.proposal.status == ProposalStatus.PAID

    with pytest.raises(ArtifactError) as exc:
        engine.authenticate_payment(accepted.auth_code)
    assert exc.value.outcome == ConsumeOutcome.ALREADY_CONSUMED
