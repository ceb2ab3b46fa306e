"""
Mock payment-link client.

Purpose:
- Stands in for the browser-automation worker that logs into the cashier
  portal and produces a payment-collection link
- Does NOT make any network calls
- Returns deterministic links so tests can assert on them

Usage:
- Wired in src/api/main.py when INTEGRATIONS_MODE is mock or no worker URL is set

Swap:
Replace with clients/real_http/payments.py once PAYMENT_LINK_API_URL is configured.
"""

import hashlib
import logging
from typing import List

from src.engine.errors import UpstreamError
from src.integrations.contracts.interfaces import PaymentLinkProvider, PaymentLinkRequest, PaymentLinkResponse
from src.utils.money import format_money

logger = logging.getLogger(__name__)

MOCK_LINK_BASE = "https://pay.mock.local/qr"


class MockPaymentLinkProvider(PaymentLinkProvider):
    """
    Deterministic payment-link provider.

    Parameters
    ----------
    fail : bool
        If True, every call raises UpstreamError, to exercise the operator's
        paste-a-link fallback. Default False.
    """

    def __init__(self, fail: bool = False, base_url: str = MOCK_LINK_BASE):
        self._fail = fail
        self._base_url = base_url.rstrip("/")
        self.requests: List[PaymentLinkRequest] = []

    async def generate_link(self, request: PaymentLinkRequest) -> PaymentLinkResponse:
        self.requests.append(request)
        logger.info("[PAYMENT LINK MOCK] product=%s amount=%s", request.product_name, format_money(request.amount))
        if self._fail:
            raise UpstreamError("Mock payment link worker is configured to fail")

        digest = hashlib.sha256(
            f"{request.reference or ''}|{request.product_name}|{format_money(request.amount)}".encode("utf-8")
        ).hexdigest()[:16].upper()
        link = f"{self._base_url}/MOCK_{digest}"
        return PaymentLinkResponse(
            payment_link=link,
            note="Mock link; no cashier portal was contacted.",
            raw={"success": True, "payment_link": link},
        )
