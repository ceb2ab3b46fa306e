"""
Lifecycle state machine for underwriting proposals.

This is the only component that writes ``status``. Every change goes through
``LifecycleStateMachine.advance`` which hands the store one TransitionWrite:
status compare-and-swap, timestamp stamp, version bump, audit event and any
attached decision, artifact or record edits, all in a single atomic unit.

    SUBMITTED -> UNDERWRITING_CONFIRMED -> PAID -> POLICY_ISSUED -> COMPLETED
    SUBMITTED -> REJECTED
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional

from src.engine.errors import IllegalTransition, InvalidState, NotFound, StaleWrite
from src.integrations.contracts.interfaces import (
    Decision,
    LifecycleEvent,
    PaymentArtifact,
    ProposalStatus,
    ProposalStore,
    RecordUpdate,
    TransitionWrite,
)
from src.integrations.contracts.underwriting import TransitionResult

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.SUBMITTED: frozenset({ProposalStatus.UNDERWRITING_CONFIRMED, ProposalStatus.REJECTED}),
    ProposalStatus.UNDERWRITING_CONFIRMED: frozenset({ProposalStatus.PAID}),
    ProposalStatus.PAID: frozenset({ProposalStatus.POLICY_ISSUED}),
    ProposalStatus.POLICY_ISSUED: frozenset({ProposalStatus.COMPLETED}),
    ProposalStatus.COMPLETED: frozenset(),
    ProposalStatus.REJECTED: frozenset(),
}

# Timestamp column stamped when a proposal enters each status.
STAMP_FIELDS: Dict[ProposalStatus, str] = {
    ProposalStatus.UNDERWRITING_CONFIRMED: "confirmed_at",
    ProposalStatus.REJECTED: "rejected_at",
    ProposalStatus.PAID: "paid_at",
    ProposalStatus.POLICY_ISSUED: "issued_at",
    ProposalStatus.COMPLETED: "completed_at",
}

TERMINAL_STATUSES: FrozenSet[ProposalStatus] = frozenset(
    status for status, successors in TRANSITIONS.items() if not successors
)


def next_statuses(status: ProposalStatus) -> FrozenSet[ProposalStatus]:
    return TRANSITIONS.get(ProposalStatus(status), frozenset())


def is_terminal(status: ProposalStatus) -> bool:
    return ProposalStatus(status) in TERMINAL_STATUSES


def can_advance(current: ProposalStatus, target: ProposalStatus) -> bool:
    return ProposalStatus(target) in next_statuses(current)


class LifecycleStateMachine:
    def __init__(self, store: ProposalStore, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self.store = store
        self.clock = clock

    def advance(
        self,
        proposal_id: str,
        target_status: ProposalStatus,
        actor: str = "system",
        *,
        expected_status: Optional[ProposalStatus] = None,
        decision: Optional[Decision] = None,
        artifact: Optional[PaymentArtifact] = None,
        expected_version: Optional[int] = None,
        records: Optional[RecordUpdate] = None,
    ) -> TransitionResult:
        """
        Move a proposal to ``target_status``.

        Returns TransitionResult(changed=False) when the proposal already sits in
        the target status and nothing is attached. ``records`` (operator edits) are
        written in the same unit as the status change. Raises NotFound,
        StaleWrite (expected_status no longer holds), IllegalTransition, or
        InvalidState (lost a concurrent race).
        """
        target = ProposalStatus(target_status)
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFound("proposal", proposal_id)

        has_payload = decision is not None or artifact is not None or records is not None
        current = proposal.status

        if current == target and not has_payload:
            logger.debug("Proposal %s already %s; advance is a no-op", proposal_id, target.value)
            return TransitionResult(proposal=proposal, changed=False)

        if expected_status is not None and ProposalStatus(expected_status) != current:
            raise StaleWrite(
                proposal_id,
                current,
                target,
                message=(
                    f"Proposal {proposal_id} is {current.value}, not {ProposalStatus(expected_status).value}; "
                    f"cannot move to {target.value}"
                ),
            )
        if expected_version is not None and expected_version != proposal.version:
            raise StaleWrite(
                proposal_id,
                current,
                target,
                message=f"Version {expected_version} is stale; proposal {proposal_id} is at version {proposal.version}",
            )

        if not can_advance(current, target):
            raise IllegalTransition(proposal_id, current, target)

        now = self.clock()
        write = TransitionWrite(
            proposal_id=proposal_id,
            expected_status=current,
            target_status=target,
            stamp_field=STAMP_FIELDS[target],
            at=now,
            event=LifecycleEvent(
                proposal_id=proposal_id,
                from_status=current,
                to_status=target,
                actor=actor or "system",
                at=now,
            ),
            decision=decision,
            artifact=artifact,
            invalidate_artifacts=is_terminal(target),
            expected_version=expected_version,
            records=records if records is not None and not records.is_empty() else None,
        )

        if self.store.apply_transition(write):
            logger.info("Proposal %s: %s -> %s (actor=%s)", proposal_id, current.value, target.value, write.event.actor)
            updated = self.store.get_proposal(proposal_id)
            return TransitionResult(proposal=updated, changed=True)

        # Another writer changed the status between our read and our write.
        latest = self.store.get_proposal(proposal_id)
        if latest is None:
            raise NotFound("proposal", proposal_id)
        if latest.status == current:
            raise StaleWrite(
                proposal_id,
                current,
                target,
                message=f"Proposal {proposal_id} changed (version {latest.version}) before it could move to {target.value}",
            )
        if latest.status == target and not has_payload:
            logger.info("Proposal %s reached %s concurrently; treating as no-op", proposal_id, target.value)
            return TransitionResult(proposal=latest, changed=False)
        raise InvalidState(
            proposal_id,
            latest.status,
            target,
            message=f"Proposal {proposal_id} moved to {latest.status.value} concurrently; cannot move to {target.value}",
        )
