"""Policy issuance and lifecycle catch-up endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.api.dependencies import get_engine
from src.engine import UnderwritingEngine

router = APIRouter(prefix="/api/v1", tags=["Lifecycle"])


class IssuePolicyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proposal_id: str = Field(..., alias="proposalId")
    actor: Optional[str] = None


class UpdateLifecycleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proposal_id: str = Field(..., alias="proposalId")
    target_status: str = Field(
        ...,
        validation_alias=AliasChoices("targetStatus", "target_status", "status"),
        description="PAID or COMPLETED",
    )
    actor: Optional[str] = None


@router.post("/policy/issue")
async def issue_policy(request: IssuePolicyRequest, engine: UnderwritingEngine = Depends(get_engine)):
    result = engine.issue_policy(request.proposal_id, request.actor or "operator")
    return {
        "success": True,
        "proposalId": result.proposal_id,
        "policyNo": result.policy_no,
        "status": result.status.value,
    }


@router.post("/proposal/lifecycle/update")
async def update_lifecycle(request: UpdateLifecycleRequest, engine: UnderwritingEngine = Depends(get_engine)):
    result = engine.update_lifecycle(request.proposal_id, request.target_status, request.actor or "operator")
    return {
        "success": True,
        "proposalId": result.proposal.proposal_id,
        "status": result.proposal.status.value,
        "changed": result.changed,
    }
