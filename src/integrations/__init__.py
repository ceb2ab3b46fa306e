"""
Integrations layer.
This package contains the contracts and the clients used to talk to systems
outside the underwriting engine:
- Payment-link generation (the browser-automation cashier worker)
- Shared contracts for the proposal aggregate and its stores

Key rule:
- Engine code MUST NOT call external services directly.
- The engine calls PaymentLinkProvider implementations (under src/integrations/clients).
- We use MOCK clients during development and swap to REAL_HTTP clients when the worker URL is configured.

Switching implementations:
- The selection of mock vs real clients happens in ONE place (src/api/main.py).
"""

from .contracts.interfaces import (
    Acceptance,
    ConsumeOutcome,
    CoverageLine,
    Decision,
    LifecycleEvent,
    PaymentArtifact,
    PaymentLinkProvider,
    PaymentLinkRequest,
    PaymentLinkResponse,
    PersonRecord,
    PersonRole,
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalSummary,
    RecordUpdate,
    RiskLevel,
    TransitionWrite,
    VehicleRecord,
)
from .contracts.payments import (
    compose_product_name,
    is_new_energy,
    validate_payment_link_request,
)
from .contracts.underwriting import (
    DecisionInput,
    DecisionResult,
    PaymentStatusView,
    PolicyIssueResult,
    TransitionResult,
)

__all__ = [
    # interfaces
    "Acceptance", "ConsumeOutcome", "CoverageLine", "Decision", "LifecycleEvent",
    "PaymentArtifact", "PaymentLinkProvider", "PaymentLinkRequest", "PaymentLinkResponse",
    "PersonRecord", "PersonRole", "Proposal", "ProposalStatus", "ProposalStore",
    "ProposalSummary", "RecordUpdate", "RiskLevel", "TransitionWrite", "VehicleRecord",
    # payments
    "compose_product_name", "is_new_energy", "validate_payment_link_request",
    # underwriting
    "DecisionInput", "DecisionResult", "PaymentStatusView", "PolicyIssueResult", "TransitionResult",
]
