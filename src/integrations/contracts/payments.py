from decimal import Decimal
from typing import Iterable, List, Optional

from .interfaces import PaymentLinkProvider, PaymentLinkRequest, PaymentLinkResponse, VehicleRecord

"""
Payment-link contracts.

Defines the request/response structures for obtaining a payment-collection
link from the third-party cashier portal, plus the helpers that build the
product description shown on that portal.

These contracts must be used by both:
- clients/mocks/payments.py (deterministic links for development/testing)
- clients/real_http/payments.py (the browser-automation worker over HTTP)

Why:
- The engine stores whatever link comes back verbatim and never parses it
- The amount sent to the portal is the same Decimal the customer is shown
"""

DEFAULT_NEW_ENERGY_KEYWORDS = ("电", "混合", "纯电", "插电", "新能源", "new", "ev")
DEFAULT_PRODUCT_NAME_TEMPLATE = "中国人寿财险{category}商业保险"

NEW_ENERGY_CATEGORY = "新能源汽车"
MOTOR_CATEGORY = "机动车"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def validate_payment_link_request(request: PaymentLinkRequest) -> List[str]:
    """
    Return a list of validation errors.
    Empty list means the request is valid.
    """
    errors: List[str] = []

    if not (request.product_name or "").strip():
        errors.append("product_name is required")
    if request.amount is None:
        errors.append("amount is required")
    elif request.amount <= Decimal("0"):
        errors.append("amount must be greater than zero")

    return errors


# ---------------------------------------------------------------------------
# Product naming
# ---------------------------------------------------------------------------

def is_new_energy(energy_type: Optional[str], keywords: Iterable[str] = DEFAULT_NEW_ENERGY_KEYWORDS) -> bool:
    value = (energy_type or "").strip().lower()
    if not value:
        return False
    return any(keyword.lower() in value for keyword in keywords)


def compose_product_name(
    vehicle: Optional[VehicleRecord],
    template: str = DEFAULT_PRODUCT_NAME_TEMPLATE,
    keywords: Iterable[str] = DEFAULT_NEW_ENERGY_KEYWORDS,
) -> str:
    """Product name for the cashier portal, by vehicle energy category."""
    energy_type = vehicle.energy_type if vehicle else None
    category = NEW_ENERGY_CATEGORY if is_new_energy(energy_type, keywords) else MOTOR_CATEGORY
    return template.format(category=category)


__all__ = [
    "PaymentLinkProvider",
    "PaymentLinkRequest",
    "PaymentLinkResponse",
    "compose_product_name",
    "is_new_energy",
    "validate_payment_link_request",
]
