from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from src.integrations.contracts.checkout import CheckoutSnapshot, FeeRecord, to_money

_MISSING = object()


class IntegrationResponseError(ValueError):
    status_code = 502

    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


def normalize_checkout_response(raw: Dict[str, Any], *, checkout_id: str) -> CheckoutSnapshot:
    if not isinstance(raw, dict):
        raise IntegrationResponseError(f"Checkout payload must be an object; got {type(raw).__name__}.")

    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    cart = data.get("cart") if isinstance(data.get("cart"), dict) else {}

    fees = [normalize_fee(item, raw) for item in extract_fees(raw)]
    subtotal = _first_non_empty(data, "subtotal_ex_tax", "subtotal_inc_tax", default=_MISSING)
    if subtotal is _MISSING:
        subtotal = _first_non_empty(cart, "base_amount", default=0)

    return _build_model(
        CheckoutSnapshot,
        {
            "checkout_id": str(_first_non_empty(data, "id", default=checkout_id)),
            "subtotal": _coerce_amount(subtotal, "checkout subtotal"),
            "fees": fees,
            "raw": raw,
        },
        raw,
    )


def extract_fees(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Fee list from ``data.fees``, ``data.cart.fees`` or top-level ``fees``, in that order."""
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    cart = data.get("cart") if isinstance(data.get("cart"), dict) else {}

    for container in (data, cart, raw):
        value = container.get("fees")
        if value is None:
            continue
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]
    return []


def normalize_fee(item: Dict[str, Any], raw: Optional[Dict[str, Any]] = None) -> FeeRecord:
    fee_id = item.get("id")
    # An explicit 0 is a real cost (a minimized fee), not a missing one.
    cost = _first_non_empty(item, "cost", "cost_inc_tax", "cost_ex_tax", default=0)
    name = item.get("name") or ""

    return _build_model(
        FeeRecord,
        {
            "id": None if fee_id in (None, "") else str(fee_id),
            "name": name,
            "display_name": item.get("display_name") or name,
            "type": item.get("type") or "custom_fee",
            "cost": _coerce_amount(cost, "fee cost"),
            "source": item.get("source") or "AA",
            "tax_class_id": item.get("tax_class_id"),
            "title": item.get("title"),
        },
        raw or item,
    )


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


def _coerce_amount(value: Any, label: str):
    if isinstance(value, bool):
        raise IntegrationResponseError(f"Invalid {label}: {value!r}")
    try:
        amount = to_money(value)
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise IntegrationResponseError(f"Invalid {label}: {value!r}") from exc
    if not amount.is_finite():
        raise IntegrationResponseError(f"Invalid {label}: {value!r}")
    return amount


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc
