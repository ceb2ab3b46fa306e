"""SQLAlchemy proposal store, exercised on in-memory SQLite."""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from src.database.postgres_real import ProposalDB, _normalize_connection_string
from src.engine import UnderwritingEngine
from src.engine.errors import ArtifactError, DuplicateAuthCode, InvalidState, NotFound, StaleWrite
from src.integrations.contracts.interfaces import ConsumeOutcome, PersonRole, ProposalStatus
from src.integrations.contracts.underwriting import DecisionInput


@pytest.fixture
def sql_db():
    store = ProposalDB(
        "sqlite://",
        engine_kwargs={"connect_args": {"check_same_thread": False}, "poolclass": StaticPool},
    )
    store.create_tables()
    return store


@pytest.fixture
def sql_engine(sql_db, config, clock):
    return UnderwritingEngine(sql_db, config, clock=clock)


def test_normalize_connection_string():
    assert _normalize_connection_string("  psql 'postgresql://u:p@h/db'  ") == "postgresql://u:p@h/db"
    assert _normalize_connection_string('"postgresql://u:p@h/db"') == "postgresql://u:p@h/db"


def test_round_trip_of_the_aggregate(sql_engine, application):
    created = sql_engine.create_proposal(application)
    loaded = sql_engine.editor.get_proposal(created.proposal_id)

    assert loaded.status == ProposalStatus.SUBMITTED
    assert loaded.version == 1
    assert loaded.vehicle.plate_number == "京A12345"
    assert loaded.persons[PersonRole.OWNER].id_number == "110101199003074219"
    assert [line.code for line in loaded.coverages] == ["DAMAGE", "THIRD_PARTY"]
    assert loaded.total_premium == Decimal("1020.00")
    assert loaded.events[0].to_status == ProposalStatus.SUBMITTED


def test_edits_are_versioned(sql_engine, application):
    created = sql_engine.create_proposal(application)
    updated = sql_engine.editor.update_vehicle(created.proposal_id, {"brand_model": "比亚迪 秦PLUS DM-i", "energy_type": "插电混合"})

    assert updated.version == 2
    assert updated.vehicle.brand_model == "比亚迪 秦PLUS DM-i"
    assert updated.vehicle.plate_number == "京A12345"
    with pytest.raises(StaleWrite):
        sql_engine.editor.update_vehicle(created.proposal_id, {"plate_number": "X"}, expected_version=1)


def test_full_lifecycle(sql_engine, application, accept_input, clock):
    created = sql_engine.create_proposal(application)
    accepted = sql_engine.submit_decision(created.proposal_id, accept_input)

    stored = sql_engine.editor.get_proposal(created.proposal_id)
    assert stored.status == ProposalStatus.UNDERWRITING_CONFIRMED
    assert stored.decision.final_premium == Decimal("1020.00")
    assert stored.artifacts[0].auth_code == accepted.auth_code
    with pytest.raises(InvalidState):
        sql_engine.editor.update_vehicle(created.proposal_id, {"plate_number": "X"})

    paid = sql_engine.authenticate_payment(accepted.auth_code)
    assert paid.proposal.status == ProposalStatus.PAID
    with pytest.raises(ArtifactError):
        sql_engine.authenticate_payment(accepted.auth_code)

    issued = sql_engine.issue_policy(created.proposal_id)
    assert issued.status == ProposalStatus.POLICY_ISSUED

    done = sql_engine.update_lifecycle(created.proposal_id, "COMPLETED")
    assert done.proposal.status == ProposalStatus.COMPLETED
    assert [e.to_status for e in done.proposal.events][-1] == ProposalStatus.COMPLETED
    assert done.proposal.policy_no == issued.policy_no


def test_consume_outcomes(sql_engine, sql_db, application, accept_input, clock):
    accepted = sql_engine.submit_decision(sql_engine.create_proposal(application).proposal_id, accept_input)

    assert sql_db.consume_artifact("NOPE1234", clock.now) == ConsumeOutcome.NOT_FOUND
    assert sql_db.consume_artifact(accepted.auth_code, clock.now + timedelta(hours=72)) == ConsumeOutcome.EXPIRED
    assert sql_db.consume_artifact(accepted.auth_code, clock.now) == ConsumeOutcome.OK
    assert sql_db.consume_artifact(accepted.auth_code, clock.now) == ConsumeOutcome.ALREADY_CONSUMED


def test_duplicate_auth_code_rolls_back_the_transition(sql_engine, application, accept_input):
    first = sql_engine.submit_decision(sql_engine.create_proposal(application).proposal_id, accept_input)
    second = sql_engine.create_proposal(application)
    sql_engine.bridge.generate_auth_code = lambda: first.auth_code

    with pytest.raises(DuplicateAuthCode):
        sql_engine.submit_decision(second.proposal_id, accept_input)

    stored = sql_engine.editor.get_proposal(second.proposal_id)
    assert stored.status == ProposalStatus.SUBMITTED
    assert stored.decisions == []
    assert stored.events[-1].to_status == ProposalStatus.SUBMITTED


def test_reject_then_listing(sql_engine, application, clock):
    first = sql_engine.create_proposal(application)
    clock.advance(minutes=1)
    second = sql_engine.create_proposal(application)
    sql_engine.submit_decision(second.proposal_id, DecisionInput(acceptance="REJECT", risk_reason="Fraud flag"))

    assert [p.proposal_id for p in sql_engine.get_pending_proposals()] == [first.proposal_id]
    assert [p.proposal_id for p in sql_engine.list_proposals()] == [first.proposal_id, second.proposal_id]
    assert sql_engine.get_pending_proposals()[0].plate_number == "京A12345"


def test_payment_link_is_stored(sql_engine, application, accept_input):
    created = sql_engine.create_proposal(application)
    accepted = sql_engine.submit_decision(
        created.proposal_id, replace(accept_input, payment_link="https://cashier.example.com/p/9")
    )
    view = sql_engine.payment_status(accepted.artifact.capability_token)
    assert view.payment_link == "https://cashier.example.com/p/9"


def test_missing_proposal(sql_engine):
    with pytest.raises(NotFound):
        sql_engine.issue_policy("P-missing")
    with pytest.raises(NotFound):
        sql_engine.attach_payment_link("P-missing", "https://cashier.example.com/x")


def test_duplicate_proposal_id_is_refused(sql_engine, application):
    sql_engine.create_proposal({"proposal_id": "P-DUP", **application})
    with pytest.raises(InvalidState):
        sql_engine.create_proposal({"proposal_id": "P-DUP", **application})
    assert [p.proposal_id for p in sql_engine.list_proposals()] == ["P-DUP"]


def test_failed_decision_rolls_back_its_edits(sql_engine, application, accept_input):
    first = sql_engine.submit_decision(sql_engine.create_proposal(application).proposal_id, accept_input)
    second = sql_engine.create_proposal(application)
    sql_engine.bridge.generate_auth_code = lambda: first.auth_code
    lines = [{"code": "DAMAGE", "name": "机动车损失保险", "base_premium": "500", "rate": "1.0"}]

    with pytest.raises(DuplicateAuthCode):
        sql_engine.submit_decision(
            second.proposal_id, replace(accept_input, expected_version=1), vehicle={"plate_number": "沪B7"}, coverages=lines
        )

    stored = sql_engine.editor.get_proposal(second.proposal_id)
    assert stored.version == 1
    assert stored.vehicle.plate_number == "京A12345"
    assert [line.code for line in stored.coverages] == ["DAMAGE", "THIRD_PARTY"]


def test_decision_edits_commit_with_the_status_change(sql_engine, application, accept_input):
    created = sql_engine.create_proposal(application)
    lines = [{"code": "DAMAGE", "name": "机动车损失保险", "base_premium": "500", "rate": "1.0"}]
    result = sql_engine.submit_decision(
        created.proposal_id,
        replace(accept_input, payment_link="https://cashier.example.com/p/3"),
        coverages=lines,
    )

    stored = sql_engine.editor.get_proposal(created.proposal_id)
    assert result.final_premium == Decimal("500.00")
    assert stored.version == 2
    assert stored.total_premium == Decimal("500.00")
    assert stored.payment_link == "https://cashier.example.com/p/3"
