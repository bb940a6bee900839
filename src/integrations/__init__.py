"""
Integrations layer.
This package contains all code used to communicate with the upstream commerce
platform (BigCommerce checkouts and checkout fees).

Key rule:
- Endpoints MUST NOT call the upstream API directly.
- Endpoints call the FeeReconciler (integrations/policy), which calls a
  checkout client (integrations/clients).
- We use the MOCK client during development and the REAL_HTTP client when
  store credentials are available.

Switching implementations:
- The selection of mock vs real clients should happen in ONE place (src/api/main.py).
"""

from .contracts.checkout import (
    AttemptStatus,
    CheckoutSnapshot,
    FeeRecord,
    ReconcileResult,
    ReconcileStatus,
    StrategyAttempt,
    UpstreamResponse,
    insurance_fee_amount,
)
from .policy.fee_reconciler import FeeReconciler, coerce_subtotal, run_strategies
from .policy.response_wrappers import IntegrationResponseError, normalize_checkout_response

__all__ = [
    # contracts
    "AttemptStatus", "CheckoutSnapshot", "FeeRecord", "ReconcileResult",
    "ReconcileStatus", "StrategyAttempt", "UpstreamResponse", "insurance_fee_amount",
    # policy
    "FeeReconciler", "coerce_subtotal", "run_strategies",
    "IntegrationResponseError", "normalize_checkout_response",
]
