"""
Real payment-link HTTP client.

Calls the browser-automation worker that produces a payment-collection link
on the cashier portal. Used when PAYMENT_LINK_API_URL is configured.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from src.engine.errors import UpstreamError
from src.integrations.contracts.interfaces import PaymentLinkProvider, PaymentLinkRequest, PaymentLinkResponse
from src.integrations.policy.response_wrappers import IntegrationResponseError, normalize_payment_link_response
from src.utils.money import quantize_money

logger = logging.getLogger(__name__)


class RealPaymentLinkClient(PaymentLinkProvider):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        generate_path: Optional[str] = None,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("PAYMENT_LINK_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("PAYMENT_LINK_API_KEY", "")
        self.generate_path = generate_path or os.getenv("PAYMENT_LINK_GENERATE_PATH", "/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def generate_link(self, request: PaymentLinkRequest) -> PaymentLinkResponse:
        if not self.base_url:
            raise UpstreamError("PAYMENT_LINK_API_URL is not configured.")

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "productName": request.product_name,
            "amount": float(quantize_money(request.amount)),
        }
        if request.reference:
            payload["reference"] = request.reference

        path = self.generate_path if self.generate_path.startswith("/") else f"/{self.generate_path}"
        url = f"{self.base_url}{path}" if path != "/" else self.base_url
        try:
            logger.info(f"Requesting payment link from {url}")
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.TimeoutException as e:
            logger.error(f"Payment link worker timed out after {self.timeout_seconds}s")
            raise UpstreamError(f"Payment link worker timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error from payment link worker: {e.response.status_code} {e.response.text}")
            raise UpstreamError(
                f"Payment link worker returned HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error connecting to payment link worker: {e}")
            raise UpstreamError(f"Could not reach payment link worker: {e}") from e
        except ValueError as e:
            raise UpstreamError("Payment link worker returned a non-JSON body") from e

        try:
            normalized = normalize_payment_link_response(data)
        except IntegrationResponseError as e:
            logger.error("Unusable payment link response: %s", e)
            raise UpstreamError(str(e), payload=e.payload) from e

        return PaymentLinkResponse(payment_link=normalized.payment_link, note=normalized.note, raw=normalized.raw)
