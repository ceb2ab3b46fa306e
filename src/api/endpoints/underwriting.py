"""
Operator endpoints: pending list, proposal detail, record edits and decisions.

Record edits take raw JSON objects and are validated by the engine so that a
single response lists every offending field. Pass ``expected_version`` to make
an edit conditional on the version last read.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from src.api.dependencies import get_engine, to_json
from src.engine import UnderwritingEngine
from src.engine.errors import FieldValidationError
from src.integrations.contracts.interfaces import ProposalSummary
from src.integrations.contracts.underwriting import DecisionInput, DecisionResult

router = APIRouter(prefix="/api/v1/underwriting", tags=["Underwriting"])


class DecisionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    acceptance: Any = None
    risk_level: Any = Field(default=None, alias="riskLevel")
    risk_reason: Optional[str] = Field(default="", alias="riskReason")
    final_premium: Any = Field(default=None, alias="finalPremium")
    policy_effective_date: Any = Field(default=None, alias="policyEffectiveDate")
    policy_expiry_date: Any = Field(default=None, alias="policyExpiryDate")
    payment_link: Optional[str] = Field(default=None, alias="paymentLink")
    confirm_zero_premium: bool = Field(default=False, alias="confirmZeroPremium")


class SubmitDecisionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    proposal_id: Optional[str] = Field(default=None, alias="proposalId")
    decision: DecisionBody
    underwriter: Optional[str] = Field(default="", alias="underwriterName")
    vehicle: Optional[Dict[str, Any]] = Field(default=None, alias="vehicleConfirmed")
    persons: Optional[Dict[str, Any]] = Field(default=None, alias="updatedPersons")
    coverages: Optional[List[Dict[str, Any]]] = None
    payment_link: Optional[str] = Field(default=None, alias="paymentLink")
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")


def _summary(item: ProposalSummary) -> Dict[str, Any]:
    return to_json(
        {
            "proposal_id": item.proposal_id,
            "status": item.status,
            "created_at": item.created_at,
            "submitted_at": item.submitted_at,
            "vehicle": {
                "plate_number": item.plate_number,
                "brand_model": item.brand_model,
                "vehicle_type": item.vehicle_type,
            },
        }
    )


def _decision_response(result: DecisionResult) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "success": True,
        "proposalId": result.proposal_id,
        "acceptance": result.acceptance.value,
        "status": result.status.value,
        "finalPremium": float(result.final_premium),
        "decisionId": result.decision.decision_id,
    }
    if result.artifact is not None:
        body.update(
            {
                "authCode": result.auth_code,
                "qrPayload": result.qr_payload,
                "qrUrl": result.qr_payload,  # older clients read qrUrl
                "expiresAt": result.artifact.expires_at.isoformat(),
                "paymentLink": result.artifact.payment_link,
            }
        )
    return body


def _submit(engine: UnderwritingEngine, proposal_id: str, request: SubmitDecisionRequest) -> Dict[str, Any]:
    d = request.decision
    decision_input = DecisionInput(
        acceptance=d.acceptance,
        risk_level=d.risk_level,
        risk_reason=d.risk_reason or "",
        final_premium=d.final_premium,
        policy_effective_date=d.policy_effective_date,
        policy_expiry_date=d.policy_expiry_date,
        underwriter=request.underwriter or "",
        confirm_zero_premium=d.confirm_zero_premium,
        payment_link=d.payment_link or request.payment_link,
        expected_version=request.expected_version,
    )
    result = engine.submit_decision(
        proposal_id,
        decision_input,
        vehicle=request.vehicle,
        persons=request.persons,
        coverages=request.coverages,
    )
    return _decision_response(result)


# ============================================================================
# READS
# ============================================================================

@router.get("/pending")
async def get_pending_proposals(engine: UnderwritingEngine = Depends(get_engine)):
    """Proposals awaiting a decision, oldest submission first."""
    items = engine.get_pending_proposals()
    return {"count": len(items), "items": [_summary(item) for item in items]}


@router.get("/proposals")
async def list_proposals(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    engine: UnderwritingEngine = Depends(get_engine),
):
    items = engine.list_proposals(status_filter)
    return {"count": len(items), "items": [_summary(item) for item in items]}


@router.get("/proposals/{proposal_id}")
async def get_proposal_detail(proposal_id: str, engine: UnderwritingEngine = Depends(get_engine)):
    return to_json(engine.get_proposal_detail(proposal_id))


@router.get("/detail")
async def get_proposal_detail_by_query(id: str = Query(...), engine: UnderwritingEngine = Depends(get_engine)):
    """Backward compat: ``/detail?id=`` as used by the original back office."""
    return to_json(engine.get_proposal_detail(id))


# ============================================================================
# INTAKE & EDITS
# ============================================================================

@router.post("/proposals", status_code=status.HTTP_201_CREATED)
async def create_proposal(payload: Dict[str, Any] = Body(...), engine: UnderwritingEngine = Depends(get_engine)):
    proposal = engine.create_proposal(payload)
    return to_json(engine.get_proposal_detail(proposal.proposal_id))


@router.put("/proposals/{proposal_id}/vehicle")
async def update_vehicle(
    proposal_id: str,
    payload: Dict[str, Any] = Body(...),
    expected_version: Optional[int] = Query(default=None),
    engine: UnderwritingEngine = Depends(get_engine),
):
    engine.editor.update_vehicle(proposal_id, payload, expected_version=expected_version)
    return to_json(engine.get_proposal_detail(proposal_id))


@router.put("/proposals/{proposal_id}/persons")
async def update_persons(
    proposal_id: str,
    payload: Dict[str, Any] = Body(...),
    expected_version: Optional[int] = Query(default=None),
    engine: UnderwritingEngine = Depends(get_engine),
):
    engine.editor.update_persons(proposal_id, payload, expected_version=expected_version)
    return to_json(engine.get_proposal_detail(proposal_id))


@router.post("/proposals/{proposal_id}/coverages", status_code=status.HTTP_201_CREATED)
async def add_coverage(
    proposal_id: str,
    payload: Dict[str, Any] = Body(...),
    expected_version: Optional[int] = Query(default=None),
    engine: UnderwritingEngine = Depends(get_engine),
):
    engine.editor.add_coverage(proposal_id, payload, expected_version=expected_version)
    return to_json(engine.get_proposal_detail(proposal_id))


@router.put("/proposals/{proposal_id}/coverages")
async def replace_coverages(
    proposal_id: str,
    payload: List[Dict[str, Any]] = Body(...),
    expected_version: Optional[int] = Query(default=None),
    engine: UnderwritingEngine = Depends(get_engine),
):
    engine.editor.replace_coverages(proposal_id, payload, expected_version=expected_version)
    return to_json(engine.get_proposal_detail(proposal_id))


@router.put("/proposals/{proposal_id}/coverages/{index}")
async def update_coverage(
    proposal_id: str,
    index: int,
    payload: Dict[str, Any] = Body(...),
    expected_version: Optional[int] = Query(default=None),
    engine: UnderwritingEngine = Depends(get_engine),
):
    engine.editor.update_coverage(proposal_id, index, payload, expected_version=expected_version)
    return to_json(engine.get_proposal_detail(proposal_id))


@router.delete("/proposals/{proposal_id}/coverages/{index}")
async def remove_coverage(
    proposal_id: str,
    index: int,
    expected_version: Optional[int] = Query(default=None),
    engine: UnderwritingEngine = Depends(get_engine),
):
    engine.editor.remove_coverage(proposal_id, index, expected_version=expected_version)
    return to_json(engine.get_proposal_detail(proposal_id))


# ============================================================================
# DECISIONS
# ============================================================================

@router.post("/proposals/{proposal_id}/decision")
async def submit_decision(
    proposal_id: str,
    request: SubmitDecisionRequest,
    engine: UnderwritingEngine = Depends(get_engine),
):
    return _submit(engine, proposal_id, request)


@router.post("/decision")
async def submit_decision_by_body(request: SubmitDecisionRequest, engine: UnderwritingEngine = Depends(get_engine)):
    """Backward compat: proposal id in the body as ``proposalId``."""
    if not request.proposal_id:
        raise FieldValidationError({"proposalId": "proposalId is required"})
    return _submit(engine, request.proposal_id, request)
