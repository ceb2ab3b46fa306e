"""
Underwriting contracts.

Defines the shapes exchanged with the decision processor:
- DecisionInput: the operator's ruling as submitted (raw, validated by the engine)
- DecisionResult: what the operator-facing layer shows after a ruling

These contracts are used by:
- src/engine/decision.py (validation and commit)
- src/api/endpoints/underwriting.py (HTTP request/response mapping)

Why:
- Validation enumerates every offending field, so inputs stay loosely typed here
  and are checked in one place rather than rejected field-by-field by the transport
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from .interfaces import (
    Acceptance,
    ConsumeOutcome,
    CoverageLine,
    Decision,
    LifecycleEvent,
    PaymentArtifact,
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


@dataclass
class DecisionInput:
    acceptance: Any
    risk_level: Any = RiskLevel.LOW.value
    risk_reason: str = ""
    final_premium: Any = None               # optional client-side figure, checked against the computed total
    policy_effective_date: Any = None
    policy_expiry_date: Any = None
    underwriter: str = ""
    confirm_zero_premium: bool = False
    payment_link: Optional[str] = None
    expected_version: Optional[int] = None


@dataclass
class DecisionResult:
    proposal_id: str
    acceptance: Acceptance
    status: ProposalStatus
    final_premium: Decimal
    decision: Decision
    artifact: Optional[PaymentArtifact] = None

    @property
    def auth_code(self) -> Optional[str]:
        return self.artifact.auth_code if self.artifact else None

    @property
    def qr_payload(self) -> Optional[str]:
        return self.artifact.qr_payload if self.artifact else None


@dataclass
class TransitionResult:
    proposal: Proposal
    changed: bool


@dataclass
class PolicyIssueResult:
    proposal_id: str
    policy_no: str
    status: ProposalStatus


@dataclass
class PaymentStatusView:
    """Customer-safe view resolved from a capability token."""
    proposal_id: str
    status: ProposalStatus
    amount: Decimal
    payment_link: Optional[str]
    consumed: bool
    invalidated: bool
    expired: bool
    policy_no: Optional[str] = None
    policy_effective_date: Optional[date] = None
    policy_expiry_date: Optional[date] = None


__all__ = [
    "Acceptance",
    "ConsumeOutcome",
    "CoverageLine",
    "Decision",
    "DecisionInput",
    "DecisionResult",
    "LifecycleEvent",
    "PaymentArtifact",
    "PaymentStatusView",
    "PersonRecord",
    "PersonRole",
    "PolicyIssueResult",
    "Proposal",
    "ProposalStatus",
    "ProposalStore",
    "ProposalSummary",
    "RecordUpdate",
    "RiskLevel",
    "TransitionResult",
    "TransitionWrite",
    "VehicleRecord",
]
