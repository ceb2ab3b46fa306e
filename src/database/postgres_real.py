"""
Real Postgres-backed proposal store for production when USE_POSTGRES_PROPOSALS and DATABASE_URL are set.
Implements the same ProposalStore interface as src.database.postgres (in-memory stub).

Every state-dependent write is a conditional UPDATE keyed by the expected
current state; ``rowcount`` tells whether this caller won.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from src.database.models import (
    Base,
    CoverageLineRow,
    DecisionRow,
    LifecycleEventRow,
    PaymentArtifactRow,
    PersonRow,
    ProposalRow,
    VehicleRow,
)
from src.engine.errors import (
    DuplicateAuthCode,
    DuplicatePolicyNumber,
    InvalidState,
    NotFound,
    StaleWrite,
    StoreUnavailable,
)
from src.integrations.contracts.interfaces import (
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

TERMINAL_STATUSES = (ProposalStatus.REJECTED.value, ProposalStatus.COMPLETED.value)


def _normalize_connection_string(s: str) -> str:
    """Strip common mistakes: 'psql \'...\'', extra quotes, whitespace."""
    s = s.strip()
    if re.match(r"^psql\s+", s, re.IGNORECASE):
        s = re.sub(r"^psql\s+", "", s, flags=re.IGNORECASE).strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    return s


class ProposalDB(ProposalStore):
    """
    Proposal data access using SQLAlchemy. Use when DATABASE_URL is set and
    USE_POSTGRES_PROPOSALS=true.
    """

    def __init__(
        self,
        connection_string: str,
        pool_timeout_seconds: float = 10.0,
        engine_kwargs: Optional[Dict[str, Any]] = None,
    ) -> None:
        connection_string = _normalize_connection_string(connection_string)
        if engine_kwargs is None:
            engine_kwargs = {
                "pool_pre_ping": True,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": pool_timeout_seconds,
            }
            if connection_string.startswith("postgres"):
                # Naive datetimes written by the engine are UTC.
                engine_kwargs["connect_args"] = {"options": "-c timezone=utc"}
        self.engine = create_engine(connection_string, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except (PoolTimeoutError, OperationalError) as exc:
            s.rollback()
            raise StoreUnavailable(f"Proposal database unavailable: {exc}") from exc
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    # ------------------------------------------------------------------ #
    # Proposals
    # ------------------------------------------------------------------ #
    def create_proposal(self, proposal: Proposal) -> Proposal:
        with self._session() as s:
            row = ProposalRow(
                proposal_id=proposal.proposal_id,
                status=proposal.status.value,
                version=proposal.version,
                created_at=proposal.created_at,
                submitted_at=proposal.submitted_at,
                policy_no=proposal.policy_no,
                payment_link=proposal.payment_link,
            )
            s.add(row)
            try:
                s.flush()
            except IntegrityError as exc:
                raise InvalidState(proposal.proposal_id, ProposalStatus.SUBMITTED, ProposalStatus.SUBMITTED,
                                   message=f"Proposal {proposal.proposal_id} already exists") from exc
            self._write_vehicle(s, proposal.proposal_id, proposal.vehicle)
            self._write_persons(s, proposal.proposal_id, proposal.persons)
            self._write_coverages(s, proposal.proposal_id, proposal.coverages)
            for event in proposal.events:
                s.add(_event_row(event))
        return self.get_proposal(proposal.proposal_id)

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        with self._session() as s:
            row = s.execute(select(ProposalRow).where(ProposalRow.proposal_id == proposal_id)).scalar_one_or_none()
            return _to_domain(row) if row else None

    def list_proposals(self, statuses: Optional[Iterable[ProposalStatus]] = None) -> List[ProposalSummary]:
        with self._session() as s:
            stmt = (
                select(ProposalRow, VehicleRow)
                .outerjoin(VehicleRow, VehicleRow.proposal_id == ProposalRow.proposal_id)
                .order_by(ProposalRow.submitted_at.asc())
            )
            if statuses is not None:
                stmt = stmt.where(ProposalRow.status.in_([ProposalStatus(st).value for st in statuses]))
            out: List[ProposalSummary] = []
            for prow, vrow in s.execute(stmt).all():
                out.append(
                    ProposalSummary(
                        proposal_id=prow.proposal_id,
                        status=ProposalStatus(prow.status),
                        created_at=_utc(prow.created_at),
                        submitted_at=_utc(prow.submitted_at),
                        plate_number=vrow.plate_number if vrow else "",
                        brand_model=vrow.brand_model if vrow else "",
                        vehicle_type=vrow.vehicle_type if vrow else "",
                    )
                )
            return out

    def update_records(self, proposal_id: str, update_: RecordUpdate, *, expected_version: Optional[int] = None) -> Proposal:
        with self._session() as s:
            conditions = [ProposalRow.proposal_id == proposal_id, ProposalRow.status == ProposalStatus.SUBMITTED.value]
            if expected_version is not None:
                conditions.append(ProposalRow.version == expected_version)
            result = s.execute(update(ProposalRow).where(*conditions).values(version=ProposalRow.version + 1))
            if result.rowcount != 1:
                current = s.execute(
                    select(ProposalRow.status, ProposalRow.version).where(ProposalRow.proposal_id == proposal_id)
                ).one_or_none()
                if current is None:
                    raise NotFound("proposal", proposal_id)
                status, version = ProposalStatus(current[0]), current[1]
                if status != ProposalStatus.SUBMITTED:
                    raise InvalidState(proposal_id, status, "EDIT_RECORDS",
                                       message=f"Proposal {proposal_id} is {status.value}; records are frozen")
                raise StaleWrite(proposal_id, status, "EDIT_RECORDS",
                                 message=f"Version {expected_version} is stale; proposal {proposal_id} is at version {version}")

            self._replace_records(s, proposal_id, update_)
        return self.get_proposal(proposal_id)

    def apply_transition(self, write: TransitionWrite) -> bool:
        conditions = [
            ProposalRow.proposal_id == write.proposal_id,
            ProposalRow.status == write.expected_status.value,
        ]
        if write.expected_version is not None:
            conditions.append(ProposalRow.version == write.expected_version)
        values = {
            "status": write.target_status.value,
            write.stamp_field: write.at,
            "version": ProposalRow.version + 1,
        }
        if write.artifact is not None and write.artifact.payment_link:
            values["payment_link"] = write.artifact.payment_link
        with self._session() as s:
            result = s.execute(update(ProposalRow).where(*conditions).values(values))
            if result.rowcount != 1:
                exists = s.execute(
                    select(ProposalRow.proposal_id).where(ProposalRow.proposal_id == write.proposal_id)
                ).scalar_one_or_none()
                if exists is None:
                    raise NotFound("proposal", write.proposal_id)
                return False

            if write.records is not None:
                self._replace_records(s, write.proposal_id, write.records)
            s.add(_event_row(write.event))
            if write.decision is not None:
                seq = len(s.execute(
                    select(DecisionRow.decision_id).where(DecisionRow.proposal_id == write.proposal_id)
                ).all()) + 1
                s.add(_decision_row(write.proposal_id, write.decision, seq))
            if write.invalidate_artifacts:
                s.execute(
                    update(PaymentArtifactRow)
                    .where(
                        PaymentArtifactRow.proposal_id == write.proposal_id,
                        PaymentArtifactRow.consumed_at.is_(None),
                        PaymentArtifactRow.invalidated_at.is_(None),
                    )
                    .values(invalidated_at=write.at)
                )
            if write.artifact is not None:
                s.add(_artifact_row(write.artifact))
            try:
                s.flush()
            except IntegrityError as exc:
                raise DuplicateAuthCode(f"Auth code {write.artifact.auth_code if write.artifact else ''} already issued") from exc
            return True

    def assign_policy_no(self, proposal_id: str, policy_no: str, allowed: Iterable[ProposalStatus]) -> Optional[str]:
        allowed_values = [ProposalStatus(st).value for st in allowed]
        with self._session() as s:
            try:
                result = s.execute(
                    update(ProposalRow)
                    .where(
                        ProposalRow.proposal_id == proposal_id,
                        ProposalRow.policy_no.is_(None),
                        ProposalRow.status.in_(allowed_values),
                    )
                    .values(policy_no=policy_no, version=ProposalRow.version + 1)
                )
            except IntegrityError as exc:
                raise DuplicatePolicyNumber(f"Policy number {policy_no} already assigned") from exc
            if result.rowcount == 1:
                return policy_no
            current = s.execute(
                select(ProposalRow.policy_no).where(ProposalRow.proposal_id == proposal_id)
            ).one_or_none()
            if current is None:
                raise NotFound("proposal", proposal_id)
            return current[0]

    def set_payment_link(self, proposal_id: str, payment_link: str) -> Proposal:
        with self._session() as s:
            result = s.execute(
                update(ProposalRow)
                .where(ProposalRow.proposal_id == proposal_id, ProposalRow.status.not_in(TERMINAL_STATUSES))
                .values(payment_link=payment_link, version=ProposalRow.version + 1)
            )
            if result.rowcount != 1:
                status = s.execute(
                    select(ProposalRow.status).where(ProposalRow.proposal_id == proposal_id)
                ).scalar_one_or_none()
                if status is None:
                    raise NotFound("proposal", proposal_id)
                raise InvalidState(proposal_id, ProposalStatus(status), "ATTACH_PAYMENT_LINK",
                                   message=f"Proposal {proposal_id} is {status}; payment link is closed")
            s.execute(
                update(PaymentArtifactRow)
                .where(
                    PaymentArtifactRow.proposal_id == proposal_id,
                    PaymentArtifactRow.consumed_at.is_(None),
                    PaymentArtifactRow.invalidated_at.is_(None),
                )
                .values(payment_link=payment_link)
            )
        return self.get_proposal(proposal_id)

    # ------------------------------------------------------------------ #
    # Payment artifacts
    # ------------------------------------------------------------------ #
    def find_artifact_by_code(self, auth_code: str) -> Optional[PaymentArtifact]:
        with self._session() as s:
            row = s.execute(
                select(PaymentArtifactRow).where(PaymentArtifactRow.auth_code == auth_code)
            ).scalar_one_or_none()
            return _artifact_to_domain(row) if row else None

    def find_artifact_by_token(self, capability_token: str) -> Optional[PaymentArtifact]:
        with self._session() as s:
            row = s.execute(
                select(PaymentArtifactRow).where(PaymentArtifactRow.capability_token == capability_token)
            ).scalar_one_or_none()
            return _artifact_to_domain(row) if row else None

    def consume_artifact(self, auth_code: str, at: datetime) -> ConsumeOutcome:
        with self._session() as s:
            result = s.execute(
                update(PaymentArtifactRow)
                .where(
                    PaymentArtifactRow.auth_code == auth_code,
                    PaymentArtifactRow.consumed_at.is_(None),
                    PaymentArtifactRow.invalidated_at.is_(None),
                    PaymentArtifactRow.expires_at > at,
                )
                .values(consumed_at=at)
            )
            if result.rowcount == 1:
                return ConsumeOutcome.OK
            row = s.execute(
                select(PaymentArtifactRow).where(PaymentArtifactRow.auth_code == auth_code)
            ).scalar_one_or_none()
            if row is None:
                return ConsumeOutcome.NOT_FOUND
            if row.consumed_at is not None:
                return ConsumeOutcome.ALREADY_CONSUMED
            if row.invalidated_at is not None:
                return ConsumeOutcome.INVALIDATED
            return ConsumeOutcome.EXPIRED

    # ------------------------------------------------------------------ #
    # Child rows
    # ------------------------------------------------------------------ #
    def _replace_records(self, s: Session, proposal_id: str, update_: RecordUpdate) -> None:
        if update_.vehicle is not None:
            s.execute(delete(VehicleRow).where(VehicleRow.proposal_id == proposal_id))
            self._write_vehicle(s, proposal_id, update_.vehicle)
        if update_.persons is not None:
            s.execute(delete(PersonRow).where(PersonRow.proposal_id == proposal_id))
            self._write_persons(s, proposal_id, update_.persons)
        if update_.coverages is not None:
            s.execute(delete(CoverageLineRow).where(CoverageLineRow.proposal_id == proposal_id))
            self._write_coverages(s, proposal_id, update_.coverages)

    @staticmethod
    def _write_vehicle(s: Session, proposal_id: str, vehicle: VehicleRecord) -> None:
        s.add(VehicleRow(proposal_id=proposal_id, **vehicle.__dict__))

    @staticmethod
    def _write_persons(s: Session, proposal_id: str, persons: Dict[PersonRole, PersonRecord]) -> None:
        for role, person in persons.items():
            s.add(PersonRow(proposal_id=proposal_id, role=PersonRole(role).value, **person.__dict__))

    @staticmethod
    def _write_coverages(s: Session, proposal_id: str, coverages: List[CoverageLine]) -> None:
        for position, line in enumerate(coverages):
            s.add(
                CoverageLineRow(
                    proposal_id=proposal_id,
                    position=position,
                    code=line.code,
                    name=line.name,
                    sum_insured=line.sum_insured,
                    base_premium=line.base_premium,
                    rate=line.rate,
                    policy_effective_date=line.policy_effective_date,
                )
            )


# ---------------------------------------------------------------------- #
# Row <-> domain mapping
# ---------------------------------------------------------------------- #
def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """timestamptz columns come back aware; the engine works in naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _event_row(event: LifecycleEvent) -> LifecycleEventRow:
    return LifecycleEventRow(
        proposal_id=event.proposal_id,
        from_status=event.from_status.value if event.from_status else None,
        to_status=event.to_status.value,
        actor=event.actor,
        at=event.at,
    )


def _decision_row(proposal_id: str, decision: Decision, seq: int) -> DecisionRow:
    return DecisionRow(
        decision_id=decision.decision_id,
        seq=seq,
        proposal_id=proposal_id,
        acceptance=decision.acceptance.value,
        risk_level=decision.risk_level.value,
        risk_reason=decision.risk_reason,
        final_premium=decision.final_premium,
        policy_effective_date=decision.policy_effective_date,
        policy_expiry_date=decision.policy_expiry_date,
        underwriter=decision.underwriter,
        decided_at=decision.decided_at,
    )


def _artifact_row(artifact: PaymentArtifact) -> PaymentArtifactRow:
    return PaymentArtifactRow(
        artifact_id=artifact.artifact_id,
        proposal_id=artifact.proposal_id,
        auth_code=artifact.auth_code,
        capability_token=artifact.capability_token,
        qr_payload=artifact.qr_payload,
        amount=artifact.amount,
        payment_link=artifact.payment_link,
        issued_at=artifact.issued_at,
        expires_at=artifact.expires_at,
        consumed_at=artifact.consumed_at,
        invalidated_at=artifact.invalidated_at,
    )


def _artifact_to_domain(row: PaymentArtifactRow) -> PaymentArtifact:
    return PaymentArtifact(
        artifact_id=row.artifact_id,
        proposal_id=row.proposal_id,
        auth_code=row.auth_code,
        capability_token=row.capability_token,
        qr_payload=row.qr_payload,
        amount=row.amount,
        payment_link=row.payment_link,
        issued_at=_utc(row.issued_at),
        expires_at=_utc(row.expires_at),
        consumed_at=_utc(row.consumed_at),
        invalidated_at=_utc(row.invalidated_at),
    )


def _to_domain(row: ProposalRow) -> Proposal:
    vehicle = VehicleRecord()
    if row.vehicle is not None:
        vehicle = VehicleRecord(
            plate_number=row.vehicle.plate_number,
            vin_chassis_number=row.vehicle.vin_chassis_number,
            engine_number=row.vehicle.engine_number,
            brand_model=row.vehicle.brand_model,
            vehicle_type=row.vehicle.vehicle_type,
            usage_nature=row.vehicle.usage_nature,
            energy_type=row.vehicle.energy_type,
            registration_date=row.vehicle.registration_date,
            license_issue_date=row.vehicle.license_issue_date,
            curb_weight=row.vehicle.curb_weight,
            approved_load_weight=row.vehicle.approved_load_weight,
            approved_passenger_count=row.vehicle.approved_passenger_count,
        )
    persons = {
        PersonRole(p.role): PersonRecord(
            name=p.name,
            id_type=p.id_type,
            id_number=p.id_number,
            mobile=p.mobile,
            address=p.address,
            gender=p.gender,
            identity_type=p.identity_type,
        )
        for p in row.persons
    }
    coverages = [
        CoverageLine(
            code=c.code,
            name=c.name,
            sum_insured=c.sum_insured,
            base_premium=c.base_premium,
            rate=c.rate,
            policy_effective_date=c.policy_effective_date,
        )
        for c in row.coverages
    ]
    decisions = [
        Decision(
            decision_id=d.decision_id,
            acceptance=Acceptance(d.acceptance),
            risk_level=RiskLevel(d.risk_level),
            risk_reason=d.risk_reason,
            final_premium=d.final_premium,
            policy_effective_date=d.policy_effective_date,
            policy_expiry_date=d.policy_expiry_date,
            underwriter=d.underwriter,
            decided_at=_utc(d.decided_at),
        )
        for d in row.decisions
    ]
    events = [
        LifecycleEvent(
            proposal_id=e.proposal_id,
            from_status=ProposalStatus(e.from_status) if e.from_status else None,
            to_status=ProposalStatus(e.to_status),
            actor=e.actor,
            at=_utc(e.at),
        )
        for e in row.events
    ]
    return Proposal(
        proposal_id=row.proposal_id,
        status=ProposalStatus(row.status),
        created_at=_utc(row.created_at),
        submitted_at=_utc(row.submitted_at),
        vehicle=vehicle,
        persons=persons,
        coverages=coverages,
        decisions=decisions,
        artifacts=[_artifact_to_domain(a) for a in row.artifacts],
        events=events,
        confirmed_at=_utc(row.confirmed_at),
        rejected_at=_utc(row.rejected_at),
        paid_at=_utc(row.paid_at),
        issued_at=_utc(row.issued_at),
        completed_at=_utc(row.completed_at),
        policy_no=row.policy_no,
        payment_link=row.payment_link,
        version=row.version,
    )
