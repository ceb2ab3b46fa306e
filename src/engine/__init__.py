"""
Underwriting proposal lifecycle engine.

UnderwritingEngine wires the components around one ProposalStore:
- LifecycleStateMachine: the single writer of proposal status
- ProposalEditor: intake and record edits while SUBMITTED
- DecisionProcessor: accept / reject
- PaymentBridge: payment artifacts and externally obtained payment links
- LifecycleService: mark paid, policy issuance, archive, customer payment confirmation

The HTTP layer (src/api) only talks to this class.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from src.engine.decision import DecisionProcessor
from src.engine.errors import FieldValidationError, UpstreamError
from src.engine.lifecycle import LifecycleStateMachine
from src.engine.lifecycle_service import LifecycleService
from src.engine.payment_bridge import PaymentBridge
from src.engine.proposal_editor import ProposalEditor
from src.integrations.contracts.interfaces import (
    PaymentLinkProvider,
    PaymentLinkRequest,
    PaymentLinkResponse,
    ProposalStore,
    ProposalSummary,
)
from src.integrations.contracts.payments import compose_product_name, validate_payment_link_request
from src.integrations.contracts.underwriting import (
    DecisionInput,
    DecisionResult,
    PaymentStatusView,
    PolicyIssueResult,
    TransitionResult,
)
from src.utils.config_loader import EngineConfig
from src.utils.money import MAX_TOTAL, format_money, quantize_money

logger = logging.getLogger(__name__)


class UnderwritingEngine:
    def __init__(
        self,
        store: ProposalStore,
        config: Optional[EngineConfig] = None,
        link_provider: Optional[PaymentLinkProvider] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.link_provider = link_provider
        self.state_machine = LifecycleStateMachine(store, clock=clock)
        self.bridge = PaymentBridge(store, self.config.artifacts, clock=clock)
        self.editor = ProposalEditor(store, self.config.lifecycle, clock=clock)
        self.decisions = DecisionProcessor(
            store,
            self.state_machine,
            self.bridge,
            self.editor,
            premium_config=self.config.premium,
            artifact_config=self.config.artifacts,
            clock=clock,
        )
        self.lifecycle = LifecycleService(store, self.state_machine, self.bridge, self.config.lifecycle, clock=clock)

    # -- operator reads ------------------------------------------------------

    def get_pending_proposals(self) -> List[ProposalSummary]:
        return self.editor.list_pending()

    def list_proposals(self, status: Optional[str] = None) -> List[ProposalSummary]:
        return self.editor.list_proposals(status)

    def get_proposal_detail(self, proposal_id: str) -> Dict[str, Any]:
        return self.editor.get_detail(proposal_id)

    # -- operator writes -----------------------------------------------------

    def create_proposal(self, raw: Dict[str, Any]):
        return self.editor.create_proposal(raw)

    def submit_decision(
        self,
        proposal_id: str,
        decision_input: DecisionInput,
        *,
        vehicle: Optional[Dict[str, Any]] = None,
        persons: Optional[Dict[str, Any]] = None,
        coverages: Optional[List[Dict[str, Any]]] = None,
    ) -> DecisionResult:
        return self.decisions.decide(proposal_id, decision_input, vehicle=vehicle, persons=persons, coverages=coverages)

    def issue_policy(self, proposal_id: str, actor: str = "operator") -> PolicyIssueResult:
        return self.lifecycle.issue_policy(proposal_id, actor)

    def update_lifecycle(self, proposal_id: str, target_status: str, actor: str = "operator") -> TransitionResult:
        return self.lifecycle.update_lifecycle(proposal_id, target_status, actor)

    # -- payment links -------------------------------------------------------

    async def generate_payment_link(
        self,
        product_name: Optional[str] = None,
        amount: Any = None,
        proposal_id: Optional[str] = None,
    ) -> PaymentLinkResponse:
        """
        Ask the external collaborator for a payment link.

        With ``proposal_id`` the product name and amount default to the
        proposal's vehicle category and computed total, an explicit amount must
        equal that total, and the returned link is stored verbatim on the
        proposal.
        """
        if self.link_provider is None:
            raise UpstreamError("No payment link provider is configured")

        proposal = self.editor.get_proposal(proposal_id) if proposal_id else None
        errors: Dict[str, str] = {}
        if not (product_name or "").strip() and proposal is not None:
            product_name = compose_product_name(
                proposal.vehicle,
                self.config.payment_link.product_name_template,
                self.config.payment_link.new_energy_keywords,
            )
        value: Optional[Decimal] = None
        if amount in (None, "") and proposal is not None:
            value = proposal.total_premium
        elif amount not in (None, ""):
            try:
                value = quantize_money(amount, MAX_TOTAL)
            except ValueError:
                errors["amount"] = "amount must be a number"
            else:
                if proposal is not None and value != proposal.total_premium:
                    errors["amount"] = (
                        f"amount {format_money(value)} does not match the proposal total "
                        f"{format_money(proposal.total_premium)}"
                    )

        request = PaymentLinkRequest(product_name=(product_name or "").strip(), amount=value, reference=proposal_id)
        if not errors:
            for problem in validate_payment_link_request(request):
                errors[problem.split(" ", 1)[0]] = problem
        if errors:
            raise FieldValidationError(errors, "Payment link request is not valid")

        response = await self.link_provider.generate_link(request)
        logger.info("Payment link generated for %s (amount=%s)", proposal_id or request.product_name, request.amount)
        if proposal_id:
            self.bridge.attach_payment_link(proposal_id, response.payment_link)
        return response

    def attach_payment_link(self, proposal_id: str, payment_link: str):
        return self.bridge.attach_payment_link(proposal_id, payment_link)

    # -- customer side -------------------------------------------------------

    def authenticate_payment(self, auth_code: str) -> TransitionResult:
        return self.lifecycle.confirm_payment(auth_code)

    def payment_status(self, capability_token: str) -> PaymentStatusView:
        return self.bridge.resolve(capability_token)


__all__ = ["UnderwritingEngine"]
