from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError


class IntegrationResponseError(ValueError):
    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


class PaymentLinkResponseModel(BaseModel):
    payment_link: str = Field(min_length=1)
    note: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)


def normalize_payment_link_response(raw: Dict[str, Any]) -> PaymentLinkResponseModel:
    """
    The link worker answers ``{"success": true, "payment_link": ...}`` (older
    builds use ``paymentLink``) or ``{"error": "..."}``.
    """
    if not isinstance(raw, dict):
        raise IntegrationResponseError(f"Expected a JSON object, got {type(raw).__name__}.")
    if raw.get("success") is False or (raw.get("error") and not _has_link(raw)):
        raise IntegrationResponseError(
            f"Payment link worker reported an error: {_first_non_empty(raw, 'error', 'message', default='unknown error')}",
            payload=raw,
        )

    payment_link = str(_first_non_empty(raw, "payment_link", "paymentLink", "link", "url")).strip()
    note = str(_first_non_empty(raw, "note", "message", default=""))

    return _build_model(
        PaymentLinkResponseModel,
        {
            "payment_link": payment_link,
            "note": note,
            "raw": raw,
        },
        raw,
    )


def _has_link(data: Dict[str, Any]) -> bool:
    return any(str(data.get(key) or "").strip() for key in ("payment_link", "paymentLink", "link", "url"))


def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise IntegrationResponseError(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc
