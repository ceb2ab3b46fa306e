"""
SQLAlchemy models for proposals and everything a proposal owns.
Used by postgres_real when USE_POSTGRES_PROPOSALS and DATABASE_URL are set.

Coverage lines deliberately have no premium column: premiums are derived from
base_premium and rate on every read.
"""
from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4
from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class ProposalRow(Base):
    __tablename__ = "proposals"

    proposal_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True, default="SUBMITTED")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    policy_no: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    payment_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    vehicle: Mapped[Optional["VehicleRow"]] = relationship(
        "VehicleRow", uselist=False, lazy="selectin", cascade="all, delete-orphan"
    )
    persons: Mapped[list["PersonRow"]] = relationship("PersonRow", lazy="selectin", cascade="all, delete-orphan")
    coverages: Mapped[list["CoverageLineRow"]] = relationship(
        "CoverageLineRow", lazy="selectin", order_by="CoverageLineRow.position", cascade="all, delete-orphan"
    )
    decisions: Mapped[list["DecisionRow"]] = relationship(
        "DecisionRow", lazy="selectin", order_by="DecisionRow.seq", cascade="all, delete-orphan"
    )
    artifacts: Mapped[list["PaymentArtifactRow"]] = relationship(
        "PaymentArtifactRow", lazy="selectin", order_by="PaymentArtifactRow.issued_at", cascade="all, delete-orphan"
    )
    events: Mapped[list["LifecycleEventRow"]] = relationship(
        "LifecycleEventRow", lazy="selectin", order_by="LifecycleEventRow.id", cascade="all, delete-orphan"
    )


class VehicleRow(Base):
    __tablename__ = "vehicle_records"

    proposal_id: Mapped[str] = mapped_column(String(64), ForeignKey("proposals.proposal_id"), primary_key=True)
    plate_number: Mapped[str] = mapped_column(String(32), default="", nullable=False, index=True)
    vin_chassis_number: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    engine_number: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    brand_model: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    usage_nature: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    energy_type: Mapped[str] = mapped_column(String(32), default="FUEL", nullable=False)
    registration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    license_issue_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    curb_weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    approved_load_weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    approved_passenger_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class PersonRow(Base):
    __tablename__ = "person_records"
    __table_args__ = (UniqueConstraint("proposal_id", "role", name="uq_person_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[str] = mapped_column(String(64), ForeignKey("proposals.proposal_id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)  # owner / proposer / insured
    name: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    id_type: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    id_number: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    mobile: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    address: Mapped[str] = mapped_column(Text, default="", nullable=False)
    gender: Mapped[str] = mapped_column(String(8), default="", nullable=False)
    identity_type: Mapped[str] = mapped_column(String(32), default="", nullable=False)


class CoverageLineRow(Base):
    __tablename__ = "coverage_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[str] = mapped_column(String(64), ForeignKey("proposals.proposal_id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    sum_insured: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=Decimal("0"))
    base_premium: Mapped[Decimal] = mapped_column(Numeric(16, 4), nullable=False, default=Decimal("0"))
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, default=Decimal("1.0"))
    policy_effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class DecisionRow(Base):
    """Append-only decision log."""

    __tablename__ = "decisions"

    decision_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    proposal_id: Mapped[str] = mapped_column(String(64), ForeignKey("proposals.proposal_id"), nullable=False, index=True)
    acceptance: Mapped[str] = mapped_column(String(16), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False)
    risk_reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    final_premium: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    policy_effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    policy_expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    underwriter: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PaymentArtifactRow(Base):
    __tablename__ = "payment_artifacts"

    artifact_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    proposal_id: Mapped[str] = mapped_column(String(64), ForeignKey("proposals.proposal_id"), nullable=False, index=True)
    auth_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    capability_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    qr_payload: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    payment_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    invalidated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class LifecycleEventRow(Base):
    """Append-only status history, written in the same transaction as the status change."""

    __tablename__ = "lifecycle_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[str] = mapped_column(String(64), ForeignKey("proposals.proposal_id"), nullable=False, index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
