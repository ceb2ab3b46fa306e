"""Tests for payment artifacts: minting, one-time consumption and the customer status view."""

import threading
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from src.engine.errors import FieldValidationError, InvalidState, NotFound
from src.engine.payment_bridge import PaymentBridge, normalize_auth_code
from src.integrations.contracts.interfaces import ConsumeOutcome, ProposalStatus
from src.integrations.contracts.underwriting import DecisionInput
from src.utils.config_loader import ArtifactConfig


@pytest.fixture
def accepted(engine, proposal, accept_input):
    return engine.submit_decision(proposal.proposal_id, accept_input)


def test_auth_code_uses_configured_alphabet(db):
    bridge = PaymentBridge(db, ArtifactConfig(auth_code_length=12))
    codes = {bridge.generate_auth_code() for _ in range(50)}
    alphabet = set(ArtifactConfig().auth_code_alphabet)
    assert all(len(code) == 12 and set(code) <= alphabet for code in codes)
    assert len(codes) > 1


def test_qr_payload_carries_proposal_and_token(db, clock):
    bridge = PaymentBridge(db, ArtifactConfig(customer_base_url="https://pay.example.com/auth?src=qr"), clock=clock)
    artifact = bridge.mint("P1", Decimal("12.345"))

    query = parse_qs(urlparse(artifact.qr_payload).query)
    assert query == {"src": ["qr"], "pid": ["P1"], "token": [artifact.capability_token]}
    assert artifact.amount == Decimal("12.35")
    assert artifact.expires_at - artifact.issued_at == timedelta(hours=72)
    assert len(artifact.capability_token) >= 32


def test_normalize_auth_code():
    assert normalize_auth_code(" ab cd 23 ") == "ABCD23"
    assert normalize_auth_code(None) == ""


def test_consume_exactly_once(engine, accepted):
    assert engine.bridge.consume(accepted.auth_code.lower()) == ConsumeOutcome.OK
    assert engine.bridge.consume(accepted.auth_code) == ConsumeOutcome.ALREADY_CONSUMED
    assert engine.bridge.consume("NOSUCHCD") == ConsumeOutcome.NOT_FOUND
    assert engine.bridge.consume("   ") == ConsumeOutcome.NOT_FOUND


def test_concurrent_consume_has_one_winner(engine, accepted):
    barrier = threading.Barrier(8)
    outcomes = []

    def consume():
        barrier.wait()
        outcomes.append(engine.bridge.consume(accepted.auth_code))

    threads = [threading.Thread(target=consume) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(ConsumeOutcome.OK) == 1
    assert outcomes.count(ConsumeOutcome.ALREADY_CONSUMED) == 7


def test_expired_artifact_is_refused(engine, accepted, clock):
    clock.advance(hours=72)
    assert engine.bridge.consume(accepted.auth_code) == ConsumeOutcome.EXPIRED


def test_resolve_status_view(engine, accepted, clock):
    view = engine.payment_status(accepted.artifact.capability_token)

    assert view.proposal_id == accepted.proposal_id
    assert view.status == ProposalStatus.UNDERWRITING_CONFIRMED
    assert view.amount == Decimal("1020.00")
    assert (view.consumed, view.invalidated, view.expired) == (False, False, False)
    assert view.policy_effective_date.isoformat() == "2024-03-10"

    clock.advance(hours=73)
    assert engine.payment_status(accepted.artifact.capability_token).expired is True


def test_resolve_unknown_token(engine):
    with pytest.raises(NotFound) as exc:
        engine.payment_status("not-a-real-token")
    assert "not-a-real-token" not in exc.value.message


def test_attach_payment_link_reaches_live_artifact(engine, accepted):
    link = "https://cashier.example.com/pay?order=778812&sign=abc"
    engine.attach_payment_link(accepted.proposal_id, f"  {link} ")

    view = engine.payment_status(accepted.artifact.capability_token)
    assert view.payment_link == link
    assert engine.editor.get_proposal(accepted.proposal_id).payment_link == link


def test_attach_payment_link_validation(engine, proposal):
    with pytest.raises(FieldValidationError):
        engine.attach_payment_link(proposal.proposal_id, "   ")
    with pytest.raises(NotFound):
        engine.attach_payment_link("P-missing", "https://cashier.example.com/x")


def test_attach_payment_link_after_rejection_is_refused(engine, proposal):
    engine.submit_decision(proposal.proposal_id, DecisionInput(acceptance="REJECT"))
    with pytest.raises(InvalidState):
        engine.attach_payment_link(proposal.proposal_id, "https://cashier.example.com/x")


def test_payment_link_given_with_decision_is_stored(engine, proposal, accept_input):
    result = engine.submit_decision(
        proposal.proposal_id, replace(accept_input, payment_link="https://cashier.example.com/pay/1")
    )
    assert result.artifact.payment_link == "https://cashier.example.com/pay/1"
    assert engine.editor.get_proposal(proposal.proposal_id).payment_link == "https://cashier.example.com/pay/1"


def test_rejected_proposal_has_no_code_to_consume(engine, proposal):
    engine.submit_decision(proposal.proposal_id, DecisionInput(acceptance="REJECT"))
    assert engine.bridge.consume("ABCDEFGH") == ConsumeOutcome.NOT_FOUND
