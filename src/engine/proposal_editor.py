"""
Proposal intake and record editing.

Vehicle, person and coverage records are editable only while a proposal is
SUBMITTED. Every edit is validated in full (all offending fields are reported
together) and then written through ProposalStore.update_records, which
re-checks the status and the optional version stamp atomically.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from src.engine import premium as premium_calc
from src.engine.errors import FieldValidationError, InvalidState, NotFound
from src.engine.lifecycle import next_statuses
from src.integrations.contracts.interfaces import (
    CoverageLine,
    LifecycleEvent,
    PersonRecord,
    PersonRole,
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalSummary,
    RecordUpdate,
    VehicleRecord,
)
from src.utils.config_loader import LifecycleConfig
from src.utils.money import MAX_AMOUNT, to_decimal

logger = logging.getLogger(__name__)

MOBILE_PATTERN = re.compile(r"^\+?[0-9][0-9\- ]{4,19}$")
MAX_PASSENGERS = Decimal("10000")

# Accepted input keys per person field (snake_case first, then the legacy camelCase names).
PERSON_FIELD_KEYS = {
    "name": ("name",),
    "id_type": ("id_type", "idType"),
    "id_number": ("id_number", "idNumber", "idCard", "id_card"),
    "mobile": ("mobile", "phone"),
    "address": ("address",),
    "gender": ("gender",),
    "identity_type": ("identity_type", "identityType"),
}

VEHICLE_TEXT_FIELDS = (
    "plate_number",
    "vin_chassis_number",
    "engine_number",
    "brand_model",
    "vehicle_type",
    "usage_nature",
    "energy_type",
)


def add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 Feb in a non-leap target year
        return value.replace(year=value.year + years, day=28)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _pick(raw: Dict[str, Any], keys) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def parse_vehicle(raw: Optional[Dict[str, Any]], errors: Dict[str, str], base: Optional[VehicleRecord] = None) -> VehicleRecord:
    """Build a VehicleRecord; keys missing from ``raw`` keep their value from ``base``."""
    if raw is not None and not isinstance(raw, dict):
        errors["vehicle"] = "Vehicle must be an object"
        return base or VehicleRecord()
    raw = raw or {}
    vehicle = VehicleRecord(**asdict(base)) if base else VehicleRecord()

    for name in VEHICLE_TEXT_FIELDS:
        if raw.get(name) is not None:
            setattr(vehicle, name, str(raw[name]).strip())
    if not vehicle.energy_type:
        vehicle.energy_type = "FUEL"

    for name in ("registration_date", "license_issue_date"):
        if name in raw:
            value = premium_calc.date_field(raw, (name,), errors, f"vehicle.{name}")
            setattr(vehicle, name, value)

    for name in ("curb_weight", "approved_load_weight"):
        if name not in raw:
            continue
        value = raw[name]
        if value is None or str(value).strip() == "":
            setattr(vehicle, name, None)
            continue
        try:
            amount = to_decimal(value)
        except ValueError:
            errors[f"vehicle.{name}"] = f"{name} must be a number"
            continue
        if amount < 0:
            errors[f"vehicle.{name}"] = f"{name} must not be negative"
            continue
        if amount >= MAX_AMOUNT:
            errors[f"vehicle.{name}"] = f"{name} is out of range"
            continue
        setattr(vehicle, name, amount)

    if "approved_passenger_count" in raw:
        value = raw["approved_passenger_count"]
        if value is None or str(value).strip() == "":
            vehicle.approved_passenger_count = None
        else:
            try:
                count = int(to_decimal(value, MAX_PASSENGERS))
                if count < 0 or to_decimal(value) != count:
                    raise ValueError(value)
                vehicle.approved_passenger_count = count
            except ValueError:
                errors["vehicle.approved_passenger_count"] = "approved_passenger_count must be a whole number"
    return vehicle


def parse_person(raw: Any, role: PersonRole, errors: Dict[str, str], base: Optional[PersonRecord] = None) -> PersonRecord:
    prefix = f"persons.{role.value}"
    if not isinstance(raw, dict):
        errors[prefix] = "Person must be an object"
        return base or PersonRecord()
    person = PersonRecord(**asdict(base)) if base else PersonRecord()
    for name, keys in PERSON_FIELD_KEYS.items():
        value = _pick(raw, keys)
        if value is not None:
            setattr(person, name, str(value).strip())
    if not person.id_type:
        person.id_type = "身份证"
    if not person.identity_type:
        person.identity_type = "个人"
    if person.mobile and not MOBILE_PATTERN.match(person.mobile):
        errors[f"{prefix}.mobile"] = "Mobile number is not valid"
    return person


def parse_persons(
    raw: Optional[Dict[str, Any]],
    errors: Dict[str, str],
    base: Optional[Dict[PersonRole, PersonRecord]] = None,
) -> Dict[PersonRole, PersonRecord]:
    """Merge role -> person edits over ``base``. Roles not mentioned are kept as they are."""
    persons: Dict[PersonRole, PersonRecord] = dict(base or {})
    if raw is None:
        return persons
    if not isinstance(raw, dict):
        errors["persons"] = "Persons must be an object keyed by role"
        return persons
    for key, value in raw.items():
        try:
            role = PersonRole(str(key).lower())
        except ValueError:
            errors[f"persons.{key}"] = "Unknown role; expected owner, proposer or insured"
            continue
        if value is None:
            persons.pop(role, None)
            continue
        persons[role] = parse_person(value, role, errors, base=persons.get(role))
    return persons


def intake_coverages(raw_lines: Any, errors: Dict[str, str]) -> List[CoverageLine]:
    """Coverage lines from a submitted application; lines flagged ``selected: false`` are dropped."""
    if raw_lines is None:
        return []
    if not isinstance(raw_lines, list):
        errors["coverages"] = "Coverages must be a list"
        return []
    selected = [line for line in raw_lines if not (isinstance(line, dict) and line.get("selected") is False)]
    lines = []
    for i, line in enumerate(selected):
        if not isinstance(line, dict):
            errors[f"coverages[{i}]"] = "Coverage line must be an object"
            continue
        lines.append(premium_calc.parse_line(line, i, errors))
    return premium_calc.with_unique_codes(lines)


# ---------------------------------------------------------------------------
# Editor
# ---------------------------------------------------------------------------

class ProposalEditor:
    def __init__(
        self,
        store: ProposalStore,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.config = config or LifecycleConfig()
        self.clock = clock

    # -- reads ---------------------------------------------------------------

    def get_proposal(self, proposal_id: str) -> Proposal:
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFound("proposal", proposal_id)
        return proposal

    def list_pending(self) -> List[ProposalSummary]:
        return self.store.list_proposals([ProposalStatus.SUBMITTED])

    def list_proposals(self, status: Optional[Any] = None) -> List[ProposalSummary]:
        if status in (None, ""):
            return self.store.list_proposals()
        try:
            wanted = ProposalStatus(str(status).upper())
        except ValueError:
            raise FieldValidationError({"status": f"Unknown status '{status}'"})
        return self.store.list_proposals([wanted])

    def suggested_dates(self, proposal: Proposal) -> Dict[str, date]:
        effective = next(
            (line.policy_effective_date for line in proposal.coverages if line.policy_effective_date),
            None,
        ) or self.clock().date()
        return {
            "policy_effective_date": effective,
            "policy_expiry_date": add_years(effective, self.config.policy_term_years),
        }

    def get_detail(self, proposal_id: str) -> Dict[str, Any]:
        """Full aggregate for the operator view, with premiums recomputed on read."""
        proposal = self.get_proposal(proposal_id)
        priced, total = premium_calc.recompute(proposal.coverages)
        now = self.clock()
        artifact = proposal.live_artifact(now) or (proposal.artifacts[-1] if proposal.artifacts else None)

        payment = None
        if artifact is not None:
            payment = {
                "auth_code": artifact.auth_code,
                "qr_payload": artifact.qr_payload,
                "amount": artifact.amount,
                "payment_link": artifact.payment_link or proposal.payment_link,
                "issued_at": artifact.issued_at,
                "expires_at": artifact.expires_at,
                "consumed": artifact.consumed_at is not None,
                "invalidated": artifact.invalidated_at is not None,
                "live": artifact.is_live(now),
            }

        return {
            "proposal": {
                "proposal_id": proposal.proposal_id,
                "status": proposal.status,
                "version": proposal.version,
                "created_at": proposal.created_at,
                "submitted_at": proposal.submitted_at,
                "confirmed_at": proposal.confirmed_at,
                "rejected_at": proposal.rejected_at,
                "paid_at": proposal.paid_at,
                "issued_at": proposal.issued_at,
                "completed_at": proposal.completed_at,
                "policy_no": proposal.policy_no,
                "payment_link": proposal.payment_link,
            },
            "vehicle": asdict(proposal.vehicle),
            "persons": {
                role.value: asdict(proposal.person(role))
                for role in PersonRole
                if proposal.person(role) is not None
            },
            "coverages": [asdict(line) for line in priced],
            "total_premium": total,
            "decisions": [asdict(decision) for decision in proposal.decisions],
            "payment": payment,
            "events": [asdict(event) for event in proposal.events],
            "editable": proposal.status == ProposalStatus.SUBMITTED,
            "next_statuses": sorted(status.value for status in next_statuses(proposal.status)),
            "suggested_dates": self.suggested_dates(proposal),
        }

    # -- intake --------------------------------------------------------------

    def create_proposal(self, raw: Dict[str, Any], actor: str = "intake") -> Proposal:
        if not isinstance(raw, dict):
            raise FieldValidationError({"body": "Application must be an object"})
        data = raw.get("proposalData") if isinstance(raw.get("proposalData"), dict) else raw
        errors: Dict[str, str] = {}

        vehicle = parse_vehicle(data.get("vehicle"), errors)
        persons_raw = data.get("persons")
        if persons_raw is None:
            persons_raw = {role.value: data[role.value] for role in PersonRole if data.get(role.value) is not None}
        persons = parse_persons(persons_raw, errors)
        coverages = intake_coverages(data.get("coverages"), errors)
        if errors:
            raise FieldValidationError(errors, "Application is not valid")

        now = self.clock()
        proposal_id = str(raw.get("proposal_id") or raw.get("proposalId") or "").strip()
        if not proposal_id:
            proposal_id = f"P{now:%Y%m%d}{uuid4().hex[:10].upper()}"
        proposal = Proposal(
            proposal_id=proposal_id,
            status=ProposalStatus.SUBMITTED,
            created_at=now,
            submitted_at=now,
            vehicle=vehicle,
            persons=persons,
            coverages=coverages,
            events=[LifecycleEvent(proposal_id, None, ProposalStatus.SUBMITTED, actor, now)],
        )
        created = self.store.create_proposal(proposal)
        logger.info("Proposal %s submitted with %d coverage line(s)", proposal_id, len(coverages))
        return created

    # -- edits ---------------------------------------------------------------

    def _editable(self, proposal_id: str) -> Proposal:
        proposal = self.get_proposal(proposal_id)
        if proposal.status != ProposalStatus.SUBMITTED:
            raise InvalidState(
                proposal_id,
                proposal.status,
                "EDIT_RECORDS",
                message=f"Proposal {proposal_id} is {proposal.status.value}; records can only change while SUBMITTED",
            )
        return proposal

    def _write(self, proposal_id: str, update: RecordUpdate, expected_version: Optional[int]) -> Proposal:
        updated = self.store.update_records(proposal_id, update, expected_version=expected_version)
        logger.info("Proposal %s records updated (version %d)", proposal_id, updated.version)
        return updated

    def apply_edits(
        self,
        proposal_id: str,
        *,
        vehicle: Optional[Dict[str, Any]] = None,
        persons: Optional[Dict[str, Any]] = None,
        coverages: Optional[List[Dict[str, Any]]] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """Apply any combination of vehicle / persons / coverage edits as one write."""
        proposal = self._editable(proposal_id)
        update = self.build_update(proposal, vehicle=vehicle, persons=persons, coverages=coverages)
        if update.is_empty():
            return proposal
        return self._write(proposal_id, update, expected_version)

    def build_update(
        self,
        proposal: Proposal,
        *,
        vehicle: Optional[Dict[str, Any]] = None,
        persons: Optional[Dict[str, Any]] = None,
        coverages: Optional[List[Dict[str, Any]]] = None,
    ) -> RecordUpdate:
        """Parse edits against ``proposal`` without writing anything."""
        errors: Dict[str, str] = {}
        update = RecordUpdate()
        if vehicle is not None:
            update.vehicle = parse_vehicle(vehicle, errors, base=proposal.vehicle)
        if persons is not None:
            update.persons = parse_persons(persons, errors, base=proposal.persons)
        if coverages is not None:
            update.coverages = self._parse_coverage_list(coverages, errors)
        if errors:
            raise FieldValidationError(errors)
        return update

    def update_vehicle(self, proposal_id: str, raw: Dict[str, Any], *, expected_version: Optional[int] = None) -> Proposal:
        return self.apply_edits(proposal_id, vehicle=raw or {}, expected_version=expected_version)

    def update_persons(self, proposal_id: str, raw: Dict[str, Any], *, expected_version: Optional[int] = None) -> Proposal:
        return self.apply_edits(proposal_id, persons=raw or {}, expected_version=expected_version)

    def replace_coverages(
        self, proposal_id: str, raw_lines: List[Dict[str, Any]], *, expected_version: Optional[int] = None
    ) -> Proposal:
        return self.apply_edits(proposal_id, coverages=raw_lines, expected_version=expected_version)

    def add_coverage(self, proposal_id: str, raw: Dict[str, Any], *, expected_version: Optional[int] = None) -> Proposal:
        proposal = self._editable(proposal_id)
        errors: Dict[str, str] = {}
        index = len(proposal.coverages)
        line = premium_calc.parse_line(
            raw or {}, index, errors, code_hint=premium_calc.next_custom_code(proposal.coverages)
        )
        if errors:
            raise FieldValidationError(errors)
        lines = premium_calc.with_unique_codes(list(proposal.coverages) + [line])
        return self._write(proposal_id, RecordUpdate(coverages=lines), expected_version)

    def update_coverage(
        self, proposal_id: str, index: int, raw: Dict[str, Any], *, expected_version: Optional[int] = None
    ) -> Proposal:
        proposal = self._editable(proposal_id)
        if index < 0 or index >= len(proposal.coverages):
            raise NotFound("coverage", f"{proposal_id}[{index}]")
        current = proposal.coverages[index]
        merged = {
            "code": current.code,
            "name": current.name,
            "sum_insured": current.sum_insured,
            "base_premium": current.base_premium,
            "rate": current.rate,
            "policy_effective_date": current.policy_effective_date,
        }
        merged.update({key: value for key, value in (raw or {}).items() if value is not None})
        errors: Dict[str, str] = {}
        line = premium_calc.parse_line(merged, index, errors, code_hint=current.code)
        if errors:
            raise FieldValidationError(errors)
        lines = list(proposal.coverages)
        lines[index] = line
        return self._write(proposal_id, RecordUpdate(coverages=premium_calc.with_unique_codes(lines)), expected_version)

    def remove_coverage(self, proposal_id: str, index: int, *, expected_version: Optional[int] = None) -> Proposal:
        proposal = self._editable(proposal_id)
        if index < 0 or index >= len(proposal.coverages):
            raise NotFound("coverage", f"{proposal_id}[{index}]")
        lines = [line for i, line in enumerate(proposal.coverages) if i != index]
        return self._write(proposal_id, RecordUpdate(coverages=lines), expected_version)

    @staticmethod
    def _parse_coverage_list(raw_lines: Any, errors: Dict[str, str]) -> List[CoverageLine]:
        if not isinstance(raw_lines, list):
            errors["coverages"] = "Coverages must be a list"
            return []
        lines = []
        for i, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                errors[f"coverages[{i}]"] = "Coverage line must be an object"
                continue
            lines.append(premium_calc.parse_line(raw, i, errors))
        return premium_calc.with_unique_codes(lines)
