"""
Decision processor.

Validates an operator's accept / reject ruling against the proposal's current
state and commits it through the lifecycle state machine:
- REJECT: decision + SUBMITTED -> REJECTED, no payment artifact
- ACCEPT: total snapshot + freshly minted artifact + SUBMITTED -> UNDERWRITING_CONFIRMED,
  written as one unit; an auth-code collision rolls the unit back and the whole
  unit is retried with a new artifact
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from src.engine import premium as premium_calc
from src.engine.errors import ConfirmationRequired, DuplicateAuthCode, FieldValidationError, InvalidState, NotFound
from src.engine.lifecycle import LifecycleStateMachine
from src.engine.payment_bridge import PaymentBridge
from src.engine.proposal_editor import ProposalEditor
from src.integrations.contracts.interfaces import Acceptance, Decision, ProposalStatus, ProposalStore, RiskLevel
from src.integrations.contracts.underwriting import DecisionInput, DecisionResult
from src.utils.config_loader import ArtifactConfig, PremiumConfig
from src.utils.money import MAX_TOTAL, ZERO, format_money, quantize_money

logger = logging.getLogger(__name__)

TARGET_BY_ACCEPTANCE = {
    Acceptance.ACCEPT: ProposalStatus.UNDERWRITING_CONFIRMED,
    Acceptance.REJECT: ProposalStatus.REJECTED,
}


def _enum_field(value: Any, enum_type, field: str, errors: Dict[str, str], default=None):
    if value in (None, "") and default is not None:
        return default
    try:
        return enum_type(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        errors[field] = f"{field} must be one of {allowed}"
        return None


def _optional_date(value: Any, field: str, errors: Dict[str, str]) -> Optional[date]:
    return premium_calc.date_field({field: value}, (field,), errors, field)


class DecisionProcessor:
    def __init__(
        self,
        store: ProposalStore,
        state_machine: LifecycleStateMachine,
        bridge: PaymentBridge,
        editor: ProposalEditor,
        premium_config: Optional[PremiumConfig] = None,
        artifact_config: Optional[ArtifactConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.state_machine = state_machine
        self.bridge = bridge
        self.editor = editor
        self.premium_config = premium_config or PremiumConfig()
        self.artifact_config = artifact_config or ArtifactConfig()
        self.clock = clock

    def decide(
        self,
        proposal_id: str,
        decision_input: DecisionInput,
        *,
        vehicle: Optional[Dict[str, Any]] = None,
        persons: Optional[Dict[str, Any]] = None,
        coverages: Optional[List[Dict[str, Any]]] = None,
    ) -> DecisionResult:
        """
        Render a decision on a SUBMITTED proposal.

        Optional vehicle / persons / coverages edits are validated together with
        the decision and committed in the same unit as the status change, so the
        premium snapshot reflects them and a failed decision leaves no edits behind.

        Raises:
            NotFound, InvalidState, FieldValidationError, ConfirmationRequired,
            DuplicateAuthCode (after every mint attempt collided)
        """
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFound("proposal", proposal_id)

        errors: Dict[str, str] = {}
        acceptance = _enum_field(decision_input.acceptance, Acceptance, "acceptance", errors)
        target = TARGET_BY_ACCEPTANCE.get(acceptance, "DECISION")
        if proposal.status != ProposalStatus.SUBMITTED:
            raise InvalidState(
                proposal_id,
                proposal.status,
                target,
                message=f"Proposal {proposal_id} is {proposal.status.value}; a decision was already rendered",
            )

        risk_level = _enum_field(decision_input.risk_level, RiskLevel, "risk_level", errors, default=RiskLevel.LOW)
        effective = expiry = None
        if acceptance == Acceptance.ACCEPT:
            effective = _optional_date(decision_input.policy_effective_date, "policy_effective_date", errors)
            expiry = _optional_date(decision_input.policy_expiry_date, "policy_expiry_date", errors)
            if effective is None and "policy_effective_date" not in errors:
                errors["policy_effective_date"] = "policy_effective_date is required to accept"
            if expiry is None and "policy_expiry_date" not in errors:
                errors["policy_expiry_date"] = "policy_expiry_date is required to accept"
            if effective and expiry and effective > expiry:
                errors["policy_expiry_date"] = "policy_expiry_date must not be before policy_effective_date"

        claimed_premium: Optional[Decimal] = None
        if decision_input.final_premium not in (None, ""):
            try:
                claimed_premium = quantize_money(decision_input.final_premium, MAX_TOTAL)
            except ValueError:
                errors["final_premium"] = f"final_premium must be a number below {MAX_TOTAL:,f}"

        # Edits are parsed now so every offending field is reported in one go.
        update = None
        try:
            update = self.editor.build_update(proposal, vehicle=vehicle, persons=persons, coverages=coverages)
        except FieldValidationError as exc:
            errors.update(exc.field_errors)
        if errors:
            raise FieldValidationError(errors, "Decision is not valid")

        lines = update.coverages if update is not None and update.coverages is not None else proposal.coverages
        total = premium_calc.total_premium(lines)
        if total >= MAX_TOTAL:
            raise FieldValidationError(
                {"coverages": f"Total premium {format_money(total)} exceeds {MAX_TOTAL:,f}"},
                "Decision is not valid",
            )
        if claimed_premium is not None and claimed_premium != total:
            raise FieldValidationError(
                {"final_premium": f"final_premium {format_money(claimed_premium)} does not match the computed total {format_money(total)}"},
                "Decision is not valid",
            )
        if acceptance == Acceptance.ACCEPT:
            self._check_zero_total(total, decision_input.confirm_zero_premium)

        version = decision_input.expected_version
        if version is None:
            version = proposal.version

        actor = (decision_input.underwriter or "").strip() or "underwriter"
        decision = Decision(
            acceptance=acceptance,
            risk_level=risk_level,
            risk_reason=(decision_input.risk_reason or "").strip(),
            final_premium=total,
            underwriter=actor,
            decided_at=self.clock(),
            policy_effective_date=effective,
            policy_expiry_date=expiry,
        )

        if acceptance == Acceptance.REJECT:
            result = self.state_machine.advance(
                proposal_id,
                ProposalStatus.REJECTED,
                actor,
                expected_status=ProposalStatus.SUBMITTED,
                expected_version=version,
                decision=decision,
                records=update,
            )
            logger.info("Proposal %s rejected by %s (risk=%s)", proposal_id, actor, risk_level.value)
            return DecisionResult(proposal_id, acceptance, result.proposal.status, total, decision)

        payment_link = (decision_input.payment_link or "").strip() or None
        last_error: Optional[DuplicateAuthCode] = None
        for attempt in range(1, self.artifact_config.mint_attempts + 1):
            artifact = self.bridge.mint(proposal_id, total, payment_link=payment_link)
            try:
                result = self.state_machine.advance(
                    proposal_id,
                    ProposalStatus.UNDERWRITING_CONFIRMED,
                    actor,
                    expected_status=ProposalStatus.SUBMITTED,
                    expected_version=version,
                    decision=decision,
                    artifact=artifact,
                    records=update,
                )
            except DuplicateAuthCode as exc:
                logger.warning("Auth code collision for proposal %s (attempt %d/%d)",
                               proposal_id, attempt, self.artifact_config.mint_attempts)
                last_error = exc
                continue
            logger.info("Proposal %s accepted by %s: premium=%s risk=%s",
                        proposal_id, actor, format_money(total), risk_level.value)
            return DecisionResult(proposal_id, acceptance, result.proposal.status, total, decision, artifact)

        raise last_error

    def _check_zero_total(self, total: Decimal, confirmed: bool) -> None:
        if total != ZERO:
            return
        policy = self.premium_config.zero_total_policy
        if policy == "allow":
            return
        if policy == "block":
            raise FieldValidationError(
                {"final_premium": "A proposal with a zero total premium cannot be accepted"},
                "Decision is not valid",
            )
        if not confirmed:
            raise ConfirmationRequired(
                "Total premium is 0.00; resubmit with confirm_zero_premium to accept anyway",
                field="confirm_zero_premium",
            )
