"""
Lightweight in-memory proposal store for local development and tests.

Implements the same ProposalStore interface as src.database.postgres_real.
A single lock guards every check-and-set, which gives the same per-proposal
atomicity the SQL store gets from conditional UPDATEs. Records are copied on the
way in and out so callers never share state with the store.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional

from src.engine.errors import (
    DuplicateAuthCode,
    DuplicatePolicyNumber,
    InvalidState,
    NotFound,
    StaleWrite,
    StoreUnavailable,
)
from src.integrations.contracts.interfaces import (
    ConsumeOutcome,
    PaymentArtifact,
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalSummary,
    RecordUpdate,
    TransitionWrite,
)

TERMINAL_STATUSES = {ProposalStatus.REJECTED, ProposalStatus.COMPLETED}


class ProposalDB(ProposalStore):
    """
    In-memory stand-in for the SQLAlchemy-backed proposal store.
    """

    def __init__(self, lock_timeout_seconds: float = 5.0) -> None:
        self.lock_timeout_seconds = lock_timeout_seconds
        self._proposals: Dict[str, Proposal] = {}
        self._codes: Dict[str, str] = {}     # auth_code -> proposal_id
        self._tokens: Dict[str, str] = {}    # capability_token -> proposal_id
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Schema / lifecycle
    # ------------------------------------------------------------------ #
    def create_tables(self) -> None:
        """
        No-op for the in-memory implementation. Kept for compatibility
        with the startup hook in `src/api/main.py`.
        """
        return None

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout_seconds):
            raise StoreUnavailable(f"Proposal store busy for more than {self.lock_timeout_seconds}s")
        try:
            yield
        finally:
            self._lock.release()

    def _require(self, proposal_id: str) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise NotFound("proposal", proposal_id)
        return proposal

    # ------------------------------------------------------------------ #
    # Proposals
    # ------------------------------------------------------------------ #
    def create_proposal(self, proposal: Proposal) -> Proposal:
        with self._locked():
            if proposal.proposal_id in self._proposals:
                raise InvalidState(proposal.proposal_id, self._proposals[proposal.proposal_id].status,
                                   ProposalStatus.SUBMITTED, message=f"Proposal {proposal.proposal_id} already exists")
            self._proposals[proposal.proposal_id] = copy.deepcopy(proposal)
            return copy.deepcopy(proposal)

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        with self._locked():
            proposal = self._proposals.get(proposal_id)
            return copy.deepcopy(proposal) if proposal else None

    def list_proposals(self, statuses: Optional[Iterable[ProposalStatus]] = None) -> List[ProposalSummary]:
        wanted = set(statuses) if statuses is not None else None
        with self._locked():
            rows = [p for p in self._proposals.values() if wanted is None or p.status in wanted]
            rows.sort(key=lambda p: p.submitted_at)
            return [
                ProposalSummary(
                    proposal_id=p.proposal_id,
                    status=p.status,
                    created_at=p.created_at,
                    submitted_at=p.submitted_at,
                    plate_number=p.vehicle.plate_number,
                    brand_model=p.vehicle.brand_model,
                    vehicle_type=p.vehicle.vehicle_type,
                )
                for p in rows
            ]

    def update_records(self, proposal_id: str, update: RecordUpdate, *, expected_version: Optional[int] = None) -> Proposal:
        with self._locked():
            proposal = self._require(proposal_id)
            if proposal.status != ProposalStatus.SUBMITTED:
                raise InvalidState(proposal_id, proposal.status, "EDIT_RECORDS",
                                   message=f"Proposal {proposal_id} is {proposal.status.value}; records are frozen")
            if expected_version is not None and expected_version != proposal.version:
                raise StaleWrite(proposal_id, proposal.status, "EDIT_RECORDS",
                                 message=f"Version {expected_version} is stale; proposal {proposal_id} is at version {proposal.version}")
            self._apply_records(proposal, update)
            proposal.version += 1
            return copy.deepcopy(proposal)

    @staticmethod
    def _apply_records(proposal: Proposal, update: RecordUpdate) -> None:
        if update.vehicle is not None:
            proposal.vehicle = copy.deepcopy(update.vehicle)
        if update.persons is not None:
            proposal.persons = copy.deepcopy(update.persons)
        if update.coverages is not None:
            proposal.coverages = copy.deepcopy(update.coverages)

    def apply_transition(self, write: TransitionWrite) -> bool:
        with self._locked():
            proposal = self._require(write.proposal_id)
            if proposal.status != write.expected_status:
                return False
            if write.expected_version is not None and proposal.version != write.expected_version:
                return False
            if write.artifact is not None and (
                write.artifact.auth_code in self._codes or write.artifact.capability_token in self._tokens
            ):
                raise DuplicateAuthCode(f"Auth code {write.artifact.auth_code} already issued")

            if write.records is not None:
                self._apply_records(proposal, write.records)
            proposal.status = write.target_status
            setattr(proposal, write.stamp_field, write.at)
            proposal.version += 1
            proposal.events.append(copy.deepcopy(write.event))
            if write.decision is not None:
                proposal.decisions.append(copy.deepcopy(write.decision))
            if write.invalidate_artifacts:
                for artifact in proposal.artifacts:
                    if artifact.consumed_at is None and artifact.invalidated_at is None:
                        artifact.invalidated_at = write.at
            if write.artifact is not None:
                proposal.artifacts.append(copy.deepcopy(write.artifact))
                self._codes[write.artifact.auth_code] = proposal.proposal_id
                self._tokens[write.artifact.capability_token] = proposal.proposal_id
                if write.artifact.payment_link:
                    proposal.payment_link = write.artifact.payment_link
            return True

    def assign_policy_no(self, proposal_id: str, policy_no: str, allowed: Iterable[ProposalStatus]) -> Optional[str]:
        with self._locked():
            proposal = self._require(proposal_id)
            if proposal.policy_no:
                return proposal.policy_no
            if proposal.status not in set(allowed):
                return None
            if any(other.policy_no == policy_no for other in self._proposals.values()):
                raise DuplicatePolicyNumber(f"Policy number {policy_no} already assigned")
            proposal.policy_no = policy_no
            proposal.version += 1
            return policy_no

    def set_payment_link(self, proposal_id: str, payment_link: str) -> Proposal:
        with self._locked():
            proposal = self._require(proposal_id)
            if proposal.status in TERMINAL_STATUSES:
                raise InvalidState(proposal_id, proposal.status, "ATTACH_PAYMENT_LINK",
                                   message=f"Proposal {proposal_id} is {proposal.status.value}; payment link is closed")
            proposal.payment_link = payment_link
            for artifact in proposal.artifacts:
                if artifact.consumed_at is None and artifact.invalidated_at is None:
                    artifact.payment_link = payment_link
            proposal.version += 1
            return copy.deepcopy(proposal)

    # ------------------------------------------------------------------ #
    # Payment artifacts
    # ------------------------------------------------------------------ #
    def _artifact(self, index: Dict[str, str], key: str, attr: str) -> Optional[PaymentArtifact]:
        proposal_id = index.get(key)
        if proposal_id is None:
            return None
        for artifact in self._proposals[proposal_id].artifacts:
            if getattr(artifact, attr) == key:
                return artifact
        return None

    def find_artifact_by_code(self, auth_code: str) -> Optional[PaymentArtifact]:
        with self._locked():
            artifact = self._artifact(self._codes, auth_code, "auth_code")
            return copy.deepcopy(artifact) if artifact else None

    def find_artifact_by_token(self, capability_token: str) -> Optional[PaymentArtifact]:
        with self._locked():
            artifact = self._artifact(self._tokens, capability_token, "capability_token")
            return copy.deepcopy(artifact) if artifact else None

    def consume_artifact(self, auth_code: str, at: datetime) -> ConsumeOutcome:
        with self._locked():
            artifact = self._artifact(self._codes, auth_code, "auth_code")
            if artifact is None:
                return ConsumeOutcome.NOT_FOUND
            if artifact.consumed_at is not None:
                return ConsumeOutcome.ALREADY_CONSUMED
            if artifact.invalidated_at is not None:
                return ConsumeOutcome.INVALIDATED
            if at >= artifact.expires_at:
                return ConsumeOutcome.EXPIRED
            artifact.consumed_at = at
            return ConsumeOutcome.OK
