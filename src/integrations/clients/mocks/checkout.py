"""
Checkout MOCK client.

Purpose:
- In-memory stand-in for the BigCommerce checkout/fee API
- Does NOT make any network calls
- Can reproduce the upstream quirks the fee reconciler works around
  (DELETE answering 404, writes accepted but silently ignored, empty fee
  collections rejected, flaky reads)

Usage:
- Wired in src/api/main.py when INTEGRATIONS_MODE=mock or no credentials are set
- Used by the test-suite to drive every reconciler strategy

Swap:
Same interface as clients/real_http/checkout.py.
"""

import copy
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from src.error_handler import UpstreamError, UpstreamTimeoutError
from src.integrations.contracts.checkout import CheckoutSnapshot, FeeRecord, UpstreamResponse, to_money
from src.integrations.policy.response_wrappers import normalize_checkout_response

logger = logging.getLogger(__name__)

MUTATING_OPERATIONS = frozenset({"create_fees", "update_fees", "delete_fee", "delete_all_fees", "replace_fees"})


class MockCheckoutClient:
    """
    Mock checkout client.

    Parameters
    ----------
    delete_fee_status : int
        Status answered by DELETE of one fee. 204 removes it; 404 leaves it in
        place (the quirk seen on the live API); anything else >= 400 raises.
    ignore_replace, ignore_delete_all, ignore_updates : bool
        Accept the corresponding write but leave the checkout unchanged.
    reject_empty_collection : bool
        Answer 422 when a bulk write submits an empty fee list.
    auto_create : bool
        Create unknown checkouts on first access instead of answering 404.
    """

    def __init__(
        self,
        delete_fee_status: int = 204,
        ignore_replace: bool = False,
        ignore_delete_all: bool = False,
        ignore_updates: bool = False,
        reject_empty_collection: bool = True,
        auto_create: bool = False,
        default_subtotal: float = 100.0,
    ):
        self.delete_fee_status = delete_fee_status
        self.ignore_replace = ignore_replace
        self.ignore_delete_all = ignore_delete_all
        self.ignore_updates = ignore_updates
        self.reject_empty_collection = reject_empty_collection
        self.auto_create = auto_create
        self.default_subtotal = default_subtotal

        # Queued read failures, consumed one per fetch.
        self.fetch_failures: List[Exception] = []
        self.calls: List[Tuple[str, Any]] = []

        # In-memory store (reset on restart)
        self._checkouts: Dict[str, Dict[str, Any]] = {}

        logger.info("[CHECKOUT MOCK] Client initialised")

    # ------------------------------------------------------------------
    # Test/dev helpers
    # ------------------------------------------------------------------

    def add_checkout(self, checkout_id: str, subtotal: float = 100.0, fees: Optional[List[Dict[str, Any]]] = None) -> None:
        stored_fees = []
        for fee in fees or []:
            entry = dict(fee)
            entry.setdefault("id", self._new_fee_id())
            stored_fees.append(entry)
        self._checkouts[checkout_id] = {"subtotal": float(subtotal), "fees": stored_fees}

    def fees(self, checkout_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._checkout(checkout_id)["fees"])

    def set_subtotal(self, checkout_id: str, subtotal: float) -> None:
        self._checkout(checkout_id)["subtotal"] = float(to_money(subtotal))

    @property
    def mutating_calls(self) -> List[Tuple[str, Any]]:
        return [call for call in self.calls if call[0] in MUTATING_OPERATIONS]

    def fail_next_fetches(self, count: int, error: Optional[Exception] = None) -> None:
        for _ in range(count):
            self.fetch_failures.append(error or UpstreamTimeoutError("Request timeout after 15s (mock)", timeout_seconds=15))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_fee_id(self) -> str:
        return str(uuid.uuid4())

    def _checkout(self, checkout_id: str) -> Dict[str, Any]:
        if checkout_id not in self._checkouts:
            if not self.auto_create:
                raise UpstreamError(
                    f"API request failed: 404 - Checkout {checkout_id} not found",
                    status=404,
                    body={"status": 404, "title": "Checkout not found"},
                )
            self.add_checkout(checkout_id, subtotal=self.default_subtotal)
        return self._checkouts[checkout_id]

    def _stored_fee(self, fee: FeeRecord) -> Dict[str, Any]:
        entry = fee.to_write_payload()
        entry["id"] = self._new_fee_id()
        return entry

    def _reject_empty(self, fees: List[FeeRecord]) -> None:
        if self.reject_empty_collection and not fees:
            raise UpstreamError(
                "API request failed: 422 - fees must contain at least one item",
                status=422,
                body={"status": 422, "title": "fees must contain at least one item"},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_checkout(self, checkout_id: str) -> Dict[str, Any]:
        self.calls.append(("get_checkout", checkout_id))
        if self.fetch_failures:
            raise self.fetch_failures.pop(0)

        checkout = self._checkout(checkout_id)
        subtotal = checkout["subtotal"]
        return {
            "data": {
                "id": checkout_id,
                "cart": {"id": checkout_id, "base_amount": subtotal},
                "subtotal_ex_tax": subtotal,
                "fees": copy.deepcopy(checkout["fees"]),
            },
            "meta": {},
        }

    async def fetch_snapshot(self, checkout_id: str) -> CheckoutSnapshot:
        raw = await self.get_checkout(checkout_id)
        return normalize_checkout_response(raw, checkout_id=checkout_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_fees(self, checkout_id: str, fees: List[FeeRecord]) -> UpstreamResponse:
        self.calls.append(("create_fees", [fee.name for fee in fees]))
        checkout = self._checkout(checkout_id)
        checkout["fees"].extend(self._stored_fee(fee) for fee in fees)
        logger.info("[CHECKOUT MOCK] Created %d fee(s) on %s", len(fees), checkout_id)
        return UpstreamResponse(status=200, body={"data": {"fees": copy.deepcopy(checkout["fees"])}})

    async def update_fees(self, checkout_id: str, fees: List[FeeRecord]) -> UpstreamResponse:
        self.calls.append(("update_fees", [(fee.id, float(fee.cost)) for fee in fees]))
        checkout = self._checkout(checkout_id)
        if not self.ignore_updates:
            by_id = {fee.id: fee for fee in fees if fee.id}
            for stored in checkout["fees"]:
                update = by_id.get(stored.get("id"))
                if update is not None:
                    stored.update(update.to_write_payload(include_id=True))
        return UpstreamResponse(status=200, body={"data": {"fees": copy.deepcopy(checkout["fees"])}})

    async def delete_fee(self, checkout_id: str, fee_id: str) -> UpstreamResponse:
        self.calls.append(("delete_fee", fee_id))
        checkout = self._checkout(checkout_id)
        status = self.delete_fee_status
        if status == 404:
            return UpstreamResponse(status=404, body={"status": 404, "title": "The requested resource was not found"})
        if status >= 400:
            raise UpstreamError(f"API request failed: {status} - delete rejected", status=status, body=None)
        checkout["fees"] = [fee for fee in checkout["fees"] if fee.get("id") != fee_id]
        return UpstreamResponse(status=status, body=None)

    async def delete_all_fees(self, checkout_id: str) -> UpstreamResponse:
        self.calls.append(("delete_all_fees", checkout_id))
        checkout = self._checkout(checkout_id)
        if not self.ignore_delete_all:
            checkout["fees"] = []
        return UpstreamResponse(status=204, body=None)

    async def replace_fees(self, checkout_id: str, fees: List[FeeRecord]) -> UpstreamResponse:
        self.calls.append(("replace_fees", [fee.name for fee in fees]))
        checkout = self._checkout(checkout_id)
        self._reject_empty(fees)
        if not self.ignore_replace:
            checkout["fees"] = [self._stored_fee(fee) for fee in fees]
        return UpstreamResponse(status=200, body={"data": {"fees": copy.deepcopy(checkout["fees"])}})
