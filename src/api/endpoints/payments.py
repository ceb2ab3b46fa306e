from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from src.api.dependencies import get_engine
from src.engine import UnderwritingEngine

api = APIRouter()
payments_api = api


class GeneratePaymentLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_name: Optional[str] = Field(default=None, alias="productName")
    amount: Any = None
    proposal_id: Optional[str] = Field(default=None, alias="proposalId")


class AttachPaymentLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proposal_id: str = Field(..., alias="proposalId")
    payment_link: str = Field(..., alias="paymentLink", description="Link copied from the cashier portal, stored verbatim")


class AuthenticatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auth_code: str = Field(..., alias="authCode", description="One-time code shown to the customer after acceptance")


@api.post("/generate", tags=["Payments"])
async def generate_payment_link(request: GeneratePaymentLinkRequest, engine: UnderwritingEngine = Depends(get_engine)):
    """
    Obtain a payment-collection link from the external worker.

    On failure the response is 502 with ``retryable: true``; the operator can
    retry or paste a link through ``/attach``.
    """
    response = await engine.generate_payment_link(
        product_name=request.product_name,
        amount=request.amount,
        proposal_id=request.proposal_id,
    )
    return {
        "success": True,
        "paymentLink": response.payment_link,
        "payment_link": response.payment_link,
        "note": response.note,
        "proposalId": request.proposal_id,
    }


@api.post("/attach", tags=["Payments"])
async def attach_payment_link(request: AttachPaymentLinkRequest, engine: UnderwritingEngine = Depends(get_engine)):
    proposal = engine.attach_payment_link(request.proposal_id, request.payment_link)
    return {"success": True, "proposalId": proposal.proposal_id, "paymentLink": proposal.payment_link}


@api.post("/authenticate", tags=["Payments"])
async def authenticate_payment(request: AuthenticatePaymentRequest, engine: UnderwritingEngine = Depends(get_engine)):
    """Customer-facing: consume the auth code and mark the proposal PAID."""
    result = engine.authenticate_payment(request.auth_code)
    return {
        "success": True,
        "proposalId": result.proposal.proposal_id,
        "status": result.proposal.status.value,
        "changed": result.changed,
    }


@api.get("/status", tags=["Payments"])
async def payment_status(token: str = Query(..., min_length=8), engine: UnderwritingEngine = Depends(get_engine)):
    """Customer-facing: resolve the capability token from the QR payload. No operator session needed."""
    view = engine.payment_status(token)
    body: Dict[str, Any] = {
        "proposalId": view.proposal_id,
        "status": view.status.value,
        "amount": float(view.amount),
        "paymentLink": view.payment_link,
        "consumed": view.consumed,
        "invalidated": view.invalidated,
        "expired": view.expired,
        "policyNo": view.policy_no,
        "policyEffectiveDate": view.policy_effective_date.isoformat() if view.policy_effective_date else None,
        "policyExpiryDate": view.policy_expiry_date.isoformat() if view.policy_expiry_date else None,
    }
    return body
