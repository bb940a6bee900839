"""
Real Checkout HTTP Client.

Talks to the BigCommerce v3 checkout and checkout-fee endpoints.

Implementation notes:
- Use httpx for async requests, one bounded client per call (15s by default)
- A timeout surfaces as UpstreamTimeoutError, distinct from HTTP errors
- Mutation calls hand 404 back to the caller instead of raising: the fee
  endpoints answer 404 for states the reconciler still has to verify

Important:
- Keep this client as the ONLY place where checkout HTTP calls are made.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from src.error_handler import UpstreamError, UpstreamTimeoutError
from src.integrations.contracts.checkout import CheckoutSnapshot, FeeRecord, UpstreamResponse
from src.integrations.policy.response_wrappers import normalize_checkout_response
from src.utils.config_loader import UpstreamConfig

logger = logging.getLogger(__name__)


class RealCheckoutClient:
    def __init__(
        self,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not config.configured:
            raise ValueError("BIGCOMMERCE_STORE_HASH and BIGCOMMERCE_ACCESS_TOKEN must be configured.")
        self.config = config
        self.base_url = f"{config.api_base_url.rstrip('/')}/stores/{config.store_hash}/v3"
        self.timeout_seconds = config.timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Auth-Token": self.config.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> UpstreamResponse:
        url = f"{self.base_url}{path}"
        logger.info("%s %s", method, url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.request(method, url, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error("Timeout after %ss on %s %s", self.timeout_seconds, method, url)
            raise UpstreamTimeoutError(
                f"Request timeout after {self.timeout_seconds}s: {method} {path}",
                timeout_seconds=self.timeout_seconds,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error connecting to checkout API: {e}")
            raise UpstreamError(f"Request to checkout API failed: {e}") from e

        body = _parse_body(response)
        logger.info("%s %s -> %s", method, path, response.status_code)

        if response.is_success or (allow_not_found and response.status_code == 404):
            return UpstreamResponse(status=response.status_code, body=body)

        logger.error("Checkout API error: %s %s -> %s %s", method, path, response.status_code, body)
        raise UpstreamError(
            f"API request failed: {response.status_code} - {_describe(body)}",
            status=response.status_code,
            body=body,
        )

    async def get_checkout(self, checkout_id: str) -> Any:
        # Passed through as-is; the normalizer rejects anything but an object.
        response = await self._request("GET", f"/checkouts/{checkout_id}")
        return response.body

    async def fetch_snapshot(self, checkout_id: str) -> CheckoutSnapshot:
        raw = await self.get_checkout(checkout_id)
        return normalize_checkout_response(raw, checkout_id=checkout_id)

    async def create_fees(self, checkout_id: str, fees: List[FeeRecord]) -> UpstreamResponse:
        payload = {"fees": [fee.to_write_payload() for fee in fees]}
        return await self._request("POST", f"/checkouts/{checkout_id}/fees", json=payload, allow_not_found=True)

    async def update_fees(self, checkout_id: str, fees: List[FeeRecord]) -> UpstreamResponse:
        payload = {"fees": [fee.to_write_payload(include_id=True) for fee in fees]}
        return await self._request("PUT", f"/checkouts/{checkout_id}/fees", json=payload, allow_not_found=True)

    async def delete_fee(self, checkout_id: str, fee_id: str) -> UpstreamResponse:
        return await self._request("DELETE", f"/checkouts/{checkout_id}/fees/{fee_id}", allow_not_found=True)

    async def delete_all_fees(self, checkout_id: str) -> UpstreamResponse:
        return await self._request("DELETE", f"/checkouts/{checkout_id}/fees", allow_not_found=True)

    async def replace_fees(self, checkout_id: str, fees: List[FeeRecord]) -> UpstreamResponse:
        # Upstream assigns new ids on write and rejects client-supplied ones.
        payload = {"fees": [fee.to_write_payload(include_id=False) for fee in fees]}
        return await self._request("PUT", f"/checkouts/{checkout_id}", json=payload, allow_not_found=True)


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _describe(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("title", "message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    if body is None:
        return "(empty)"
    return str(body)
