"""
Contracts (data models).

This folder defines the shapes shared by the engine, the proposal stores and the
external payment-link collaborators.
Examples:
- Proposal aggregate (vehicle, persons, coverage lines, decisions, artifacts)
- Lifecycle statuses and the audit events written with every transition
- The ProposalStore gateway and PaymentLinkProvider interfaces

Why this exists:
- The in-memory store and the SQLAlchemy store return exactly the same objects
- Engine code never sees ORM rows or ad-hoc dicts
- Swapping mock and real collaborators does not touch engine code

Both store implementations and both payment-link clients must use these contracts.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from src.utils.money import ZERO, line_premium, quantize_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProposalStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    UNDERWRITING_CONFIRMED = "UNDERWRITING_CONFIRMED"
    PAID = "PAID"
    POLICY_ISSUED = "POLICY_ISSUED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class Acceptance(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PersonRole(str, Enum):
    OWNER = "owner"
    PROPOSER = "proposer"
    INSURED = "insured"


class ConsumeOutcome(str, Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_CONSUMED = "ALREADY_CONSUMED"
    INVALIDATED = "INVALIDATED"
    EXPIRED = "EXPIRED"


# ---------------------------------------------------------------------------
# Proposal aggregate
# ---------------------------------------------------------------------------

@dataclass
class PersonRecord:
    name: str = ""
    id_type: str = "身份证"
    id_number: str = ""
    mobile: str = ""
    address: str = ""
    gender: str = ""
    identity_type: str = "个人"


@dataclass
class VehicleRecord:
    plate_number: str = ""
    vin_chassis_number: str = ""
    engine_number: str = ""
    brand_model: str = ""
    vehicle_type: str = ""
    usage_nature: str = ""
    energy_type: str = "FUEL"
    registration_date: Optional[date] = None
    license_issue_date: Optional[date] = None
    curb_weight: Optional[Decimal] = None            # kg
    approved_load_weight: Optional[Decimal] = None   # kg
    approved_passenger_count: Optional[int] = None


@dataclass
class CoverageLine:
    code: str
    name: str
    sum_insured: Decimal = ZERO                      # declared exposure, informational only
    base_premium: Decimal = ZERO
    rate: Decimal = Decimal("1.0")
    policy_effective_date: Optional[date] = None

    @property
    def premium(self) -> Decimal:
        # Derived on every read; there is no stored premium to go stale.
        return line_premium(self.base_premium, self.rate)


@dataclass
class Decision:
    acceptance: Acceptance
    risk_level: RiskLevel
    risk_reason: str
    final_premium: Decimal
    underwriter: str
    decided_at: datetime
    policy_effective_date: Optional[date] = None
    policy_expiry_date: Optional[date] = None
    decision_id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class PaymentArtifact:
    proposal_id: str
    auth_code: str
    capability_token: str
    qr_payload: str
    amount: Decimal
    issued_at: datetime
    expires_at: datetime
    payment_link: Optional[str] = None
    consumed_at: Optional[datetime] = None
    invalidated_at: Optional[datetime] = None
    artifact_id: str = field(default_factory=lambda: str(uuid4()))

    def is_live(self, now: datetime) -> bool:
        return self.consumed_at is None and self.invalidated_at is None and now < self.expires_at


@dataclass
class LifecycleEvent:
    proposal_id: str
    from_status: Optional[ProposalStatus]
    to_status: ProposalStatus
    actor: str
    at: datetime


@dataclass
class Proposal:
    proposal_id: str
    status: ProposalStatus
    created_at: datetime
    submitted_at: datetime
    vehicle: VehicleRecord = field(default_factory=VehicleRecord)
    persons: Dict[PersonRole, PersonRecord] = field(default_factory=dict)
    coverages: List[CoverageLine] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)      # append-only
    artifacts: List[PaymentArtifact] = field(default_factory=list)
    events: List[LifecycleEvent] = field(default_factory=list)   # append-only
    confirmed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    issued_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    policy_no: Optional[str] = None
    payment_link: Optional[str] = None
    version: int = 1

    @property
    def total_premium(self) -> Decimal:
        return quantize_money(sum((line.premium for line in self.coverages), ZERO))

    @property
    def decision(self) -> Optional[Decision]:
        return self.decisions[-1] if self.decisions else None

    def live_artifact(self, now: datetime) -> Optional[PaymentArtifact]:
        for artifact in reversed(self.artifacts):
            if artifact.is_live(now):
                return artifact
        return None

    def person(self, role: PersonRole) -> Optional[PersonRecord]:
        """Proposer and insured fall back to the owner when absent."""
        if role in self.persons:
            return self.persons[role]
        return self.persons.get(PersonRole.OWNER)


@dataclass
class ProposalSummary:
    proposal_id: str
    status: ProposalStatus
    created_at: datetime
    submitted_at: datetime
    plate_number: str = ""
    brand_model: str = ""
    vehicle_type: str = ""


@dataclass
class TransitionWrite:
    """Everything one lifecycle advance persists, as a single atomic unit."""
    proposal_id: str
    expected_status: ProposalStatus
    target_status: ProposalStatus
    stamp_field: str
    at: datetime
    event: LifecycleEvent
    decision: Optional[Decision] = None
    artifact: Optional[PaymentArtifact] = None
    invalidate_artifacts: bool = False
    expected_version: Optional[int] = None
    records: Optional[RecordUpdate] = None

    @property
    def has_payload(self) -> bool:
        return self.decision is not None or self.artifact is not None or self.records is not None


@dataclass
class RecordUpdate:
    """Operator edits applied while a proposal is still SUBMITTED."""
    vehicle: Optional[VehicleRecord] = None
    persons: Optional[Dict[PersonRole, PersonRecord]] = None
    coverages: Optional[List[CoverageLine]] = None

    def is_empty(self) -> bool:
        return self.vehicle is None and self.persons is None and self.coverages is None


# ---------------------------------------------------------------------------
# Gateway interfaces
# ---------------------------------------------------------------------------

class ProposalStore(ABC):
    """Narrow persistence gateway for the proposal aggregate.

    Implementations must make ``apply_transition``, ``update_records``,
    ``assign_policy_no`` and ``consume_artifact`` atomic per proposal / artifact.
    Only the lifecycle state machine calls ``apply_transition``.
    """

    def create_tables(self) -> None:
        """Create backing tables if the implementation has any."""
        return None

    @abstractmethod
    def create_proposal(self, proposal: Proposal) -> Proposal:
        """Persist a new SUBMITTED proposal."""

    @abstractmethod
    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        """Return the full aggregate or None."""

    @abstractmethod
    def list_proposals(self, statuses: Optional[Iterable[ProposalStatus]] = None) -> List[ProposalSummary]:
        """Summaries ordered by submission time, oldest first."""

    @abstractmethod
    def update_records(self, proposal_id: str, update: RecordUpdate, *, expected_version: Optional[int] = None) -> Proposal:
        """Replace vehicle / persons / coverages while SUBMITTED.

        Raises NotFound, InvalidState (not SUBMITTED) or StaleWrite (version mismatch).
        """

    @abstractmethod
    def apply_transition(self, write: TransitionWrite) -> bool:
        """Compare-and-swap on status (and version, when given). Returns False when either no longer holds.

        Raises DuplicateAuthCode if the attached artifact's code is taken; nothing is written then.
        """

    @abstractmethod
    def assign_policy_no(self, proposal_id: str, policy_no: str, allowed: Iterable[ProposalStatus]) -> Optional[str]:
        """Set policy_no once, only while status is in ``allowed``.

        Returns the stored number (new or pre-existing), or None when the status does not allow it.
        """

    @abstractmethod
    def set_payment_link(self, proposal_id: str, payment_link: str) -> Proposal:
        """Store an external payment link verbatim on the proposal and its live artifact."""

    @abstractmethod
    def find_artifact_by_code(self, auth_code: str) -> Optional[PaymentArtifact]:
        """Lookup by customer-facing code."""

    @abstractmethod
    def find_artifact_by_token(self, capability_token: str) -> Optional[PaymentArtifact]:
        """Lookup by the capability token embedded in the QR payload."""

    @abstractmethod
    def consume_artifact(self, auth_code: str, at: datetime) -> ConsumeOutcome:
        """Exactly-once consumption: compare-and-swap on consumed_at."""


@dataclass
class PaymentLinkRequest:
    product_name: str
    amount: Decimal
    reference: Optional[str] = None


@dataclass
class PaymentLinkResponse:
    payment_link: str
    note: str = ""
    raw: Dict[str, object] = field(default_factory=dict)


class PaymentLinkProvider(ABC):
    """Obtains a payment-collection link from a third-party portal.

    The engine treats the returned link as an opaque string.
    """

    @abstractmethod
    async def generate_link(self, request: PaymentLinkRequest) -> PaymentLinkResponse:
        """Return a link or raise UpstreamError."""
