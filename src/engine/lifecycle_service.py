"""
Lifecycle transition API.

Named, idempotent catch-up operations on top of the state machine, used by the
operator back office and by the customer payment flow:
- mark_paid / archive / update_lifecycle
- issue_policy (assigns the policy number once)
- confirm_payment (customer authenticates with the one-time auth code)
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from src.engine.errors import (
    ArtifactError,
    DuplicatePolicyNumber,
    FieldValidationError,
    InvalidState,
    NotFound,
)
from src.engine.lifecycle import LifecycleStateMachine
from src.engine.payment_bridge import PaymentBridge, normalize_auth_code
from src.integrations.contracts.interfaces import ConsumeOutcome, Proposal, ProposalStatus, ProposalStore
from src.integrations.contracts.underwriting import PolicyIssueResult, TransitionResult
from src.utils.config_loader import LifecycleConfig

logger = logging.getLogger(__name__)

UPDATABLE_TARGETS = (ProposalStatus.PAID, ProposalStatus.COMPLETED)
PAID_OR_LATER = {ProposalStatus.PAID, ProposalStatus.POLICY_ISSUED, ProposalStatus.COMPLETED}
POLICY_NO_ATTEMPTS = 3


class LifecycleService:
    def __init__(
        self,
        store: ProposalStore,
        state_machine: LifecycleStateMachine,
        bridge: PaymentBridge,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.state_machine = state_machine
        self.bridge = bridge
        self.config = config or LifecycleConfig()
        self.clock = clock

    def _get(self, proposal_id: str) -> Proposal:
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFound("proposal", proposal_id)
        return proposal

    # ------------------------------------------------------------------
    # Operator transitions
    # ------------------------------------------------------------------

    def mark_paid(self, proposal_id: str, actor: str = "operator") -> TransitionResult:
        return self.state_machine.advance(proposal_id, ProposalStatus.PAID, actor)

    def archive(self, proposal_id: str, actor: str = "operator") -> TransitionResult:
        return self.state_machine.advance(proposal_id, ProposalStatus.COMPLETED, actor)

    def update_lifecycle(self, proposal_id: str, target_status, actor: str = "operator") -> TransitionResult:
        try:
            target = ProposalStatus(str(getattr(target_status, "value", target_status) or "").upper())
        except ValueError:
            target = None
        if target not in UPDATABLE_TARGETS:
            raise FieldValidationError(
                {"target_status": f"target_status must be one of {', '.join(s.value for s in UPDATABLE_TARGETS)}"}
            )
        if target == ProposalStatus.PAID:
            return self.mark_paid(proposal_id, actor)
        return self.archive(proposal_id, actor)

    # ------------------------------------------------------------------
    # Policy issuance
    # ------------------------------------------------------------------

    def generate_policy_no(self) -> str:
        return f"{self.config.policy_no_prefix}{self.clock():%Y%m%d}{secrets.randbelow(10 ** 6):06d}"

    def issue_policy(self, proposal_id: str, actor: str = "operator") -> PolicyIssueResult:
        """
        Assign the policy number (once) and move a PAID proposal to POLICY_ISSUED.

        When UNDERWRITING_CONFIRMED is in ``policy_issue_allowed_from`` the number
        is reserved before payment and the status catches up on a later call
        once the proposal is PAID. Repeat calls return the same number.
        """
        proposal = self._get(proposal_id)
        allowed = list(self.config.policy_issue_allowed_from)
        policy_no = proposal.policy_no

        if not policy_no:
            if proposal.status not in allowed:
                raise InvalidState(
                    proposal_id,
                    proposal.status,
                    ProposalStatus.POLICY_ISSUED,
                    message=(
                        f"Proposal {proposal_id} is {proposal.status.value}; policy can only be issued from "
                        f"{', '.join(s.value for s in allowed)}"
                    ),
                )
            for attempt in range(1, POLICY_NO_ATTEMPTS + 1):
                try:
                    policy_no = self.store.assign_policy_no(proposal_id, self.generate_policy_no(), allowed)
                    break
                except DuplicatePolicyNumber:
                    logger.warning("Policy number collision for %s (attempt %d/%d)", proposal_id, attempt, POLICY_NO_ATTEMPTS)
                    if attempt == POLICY_NO_ATTEMPTS:
                        raise
            if not policy_no:
                latest = self._get(proposal_id)
                raise InvalidState(proposal_id, latest.status, ProposalStatus.POLICY_ISSUED)
            logger.info("Policy number %s assigned to proposal %s", policy_no, proposal_id)

        latest = self._get(proposal_id)
        if latest.status == ProposalStatus.PAID:
            latest = self.state_machine.advance(
                proposal_id, ProposalStatus.POLICY_ISSUED, actor, expected_status=ProposalStatus.PAID
            ).proposal
        return PolicyIssueResult(proposal_id=proposal_id, policy_no=policy_no, status=latest.status)

    mark_issued = issue_policy

    # ------------------------------------------------------------------
    # Customer payment
    # ------------------------------------------------------------------

    def confirm_payment(self, auth_code: str, actor: str = "customer") -> TransitionResult:
        """
        Consume the one-time auth code, then move the proposal to PAID.

        The two steps are separate writes. A code that was consumed while its
        proposal is still UNDERWRITING_CONFIRMED finishes the move to PAID when
        presented again; once the proposal is PAID or later, reuse is refused.
        """
        code = normalize_auth_code(auth_code)
        artifact = self.store.find_artifact_by_code(code) if code else None
        outcome = self.bridge.consume(code)

        if outcome == ConsumeOutcome.NOT_FOUND or artifact is None:
            raise NotFound("auth_code", code or "<empty>")
        if outcome == ConsumeOutcome.ALREADY_CONSUMED:
            proposal = self._get(artifact.proposal_id)
            if proposal.status != ProposalStatus.UNDERWRITING_CONFIRMED:
                raise ArtifactError(outcome, "This payment code has already been used")
            logger.warning("Proposal %s: code already consumed but not PAID; completing the transition",
                           proposal.proposal_id)
            return self.state_machine.advance(proposal.proposal_id, ProposalStatus.PAID, actor)
        if outcome == ConsumeOutcome.INVALIDATED:
            raise ArtifactError(outcome, "This payment code is no longer valid")
        if outcome == ConsumeOutcome.EXPIRED:
            raise ArtifactError(outcome, "This payment code has expired")

        proposal = self._get(artifact.proposal_id)
        if proposal.status in PAID_OR_LATER:
            logger.info("Proposal %s already %s; payment confirmation is a no-op", proposal.proposal_id, proposal.status.value)
            return TransitionResult(proposal=proposal, changed=False)
        return self.state_machine.advance(proposal.proposal_id, ProposalStatus.PAID, actor)
