"""
Checkout contracts.

Defines the shapes exchanged with the upstream checkout/fee API and the
results returned by the fee reconciler:
- FeeRecord: one fee line item as the upstream API reports it
- CheckoutSnapshot: the normalized fee list + subtotal of one fresh fetch
- ReconcileResult: the single terminal outcome of a reconcile call

These contracts must be used by both:
- clients/mocks/checkout.py (in-memory checkout for development/testing)
- clients/real_http/checkout.py (real API calls)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Quantize a number (float, str, Decimal) to 2 decimal places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def insurance_fee_amount(subtotal: Any, rate: Any = "0.04") -> Decimal:
    """Shipping insurance is ``round(subtotal * rate, 2)``, half-up."""
    return (Decimal(str(subtotal)) * Decimal(str(rate))).quantize(CENTS, rounding=ROUND_HALF_UP)


class ReconcileStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    ALREADY_EXISTS = "already_exists"
    REMOVED = "removed"
    ALREADY_ABSENT = "already_absent"
    MINIMIZED = "minimized"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    CONFIRMED = "confirmed"
    SKIPPED = "skipped"
    FAILED = "failed"


class FeeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = ""
    display_name: str = ""
    type: str = "custom_fee"
    cost: Decimal = Decimal("0.00")
    source: str = "AA"
    tax_class_id: Optional[int] = None
    title: Optional[str] = None

    @field_serializer("cost")
    def _serialize_cost(self, cost: Decimal) -> float:
        return float(cost)

    def matches(self, fee_name: str) -> bool:
        target = fee_name.strip().lower()
        return any(
            (label or "").strip().lower() == target
            for label in (self.name, self.display_name, self.title)
        )

    def to_write_payload(self, include_id: bool = False) -> Dict[str, Any]:
        """Body entry for the fee write endpoints."""
        payload: Dict[str, Any] = {
            "type": self.type or "custom_fee",
            "name": self.name,
            "display_name": self.display_name or self.name,
            "cost": float(self.cost),
            "source": self.source or "AA",
        }
        if self.tax_class_id is not None:
            payload["tax_class_id"] = self.tax_class_id
        if include_id and self.id:
            payload["id"] = self.id
        return payload


class CheckoutSnapshot(BaseModel):
    checkout_id: str
    subtotal: Decimal = Decimal("0.00")
    fees: List[FeeRecord] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @field_serializer("subtotal")
    def _serialize_subtotal(self, subtotal: Decimal) -> float:
        return float(subtotal)

    def matching_fees(self, fee_name: str) -> List[FeeRecord]:
        return [fee for fee in self.fees if fee.matches(fee_name)]

    def other_fees(self, fee_name: str) -> List[FeeRecord]:
        return [fee for fee in self.fees if not fee.matches(fee_name)]

    def find_fee(self, fee_name: str) -> Optional[FeeRecord]:
        matches = self.matching_fees(fee_name)
        return matches[0] if matches else None


class StrategyAttempt(BaseModel):
    strategy: str
    status: AttemptStatus
    error: Optional[str] = None


class ReconcileResult(BaseModel):
    status: ReconcileStatus
    fee: Optional[FeeRecord] = None
    amount: Optional[Decimal] = None
    residual_amount: Optional[Decimal] = None
    method: Optional[str] = None
    reason: Optional[str] = None
    attempts: List[StrategyAttempt] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @field_serializer("amount", "residual_amount")
    def _serialize_money(self, value: Optional[Decimal]) -> Optional[float]:
        return None if value is None else float(value)

    @property
    def removed(self) -> bool:
        return self.status in {ReconcileStatus.REMOVED, ReconcileStatus.ALREADY_ABSENT}


class UpstreamResponse(BaseModel):
    """Status + parsed body of one upstream mutation call."""

    status: int
    body: Any = None

    @property
    def not_found(self) -> bool:
        return self.status == 404


__all__ = [
    "AttemptStatus",
    "CheckoutSnapshot",
    "FeeRecord",
    "ReconcileResult",
    "ReconcileStatus",
    "StrategyAttempt",
    "UpstreamResponse",
    "insurance_fee_amount",
    "to_money",
]
