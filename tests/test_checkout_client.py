import json

import httpx
import pytest

from src.error_handler import UpstreamError, UpstreamTimeoutError
from src.integrations.clients.real_http.checkout import RealCheckoutClient
from src.integrations.contracts.checkout import FeeRecord, ReconcileStatus
from src.integrations.policy.fee_reconciler import FeeReconciler
from src.integrations.policy.response_wrappers import IntegrationResponseError
from src.utils.config_loader import UpstreamConfig

CONFIG = UpstreamConfig(store_hash="abc123", access_token="secret-token", timeout_seconds=15)
BASE = "https://api.bigcommerce.com/stores/abc123/v3"


class RecordingTransport:
    """Builds an httpx.MockTransport and keeps every request it saw."""

    def __init__(self, handler):
        self.requests = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)


def _client(handler):
    recorder = RecordingTransport(handler)
    return RealCheckoutClient(CONFIG, transport=recorder.transport), recorder


def _fee(**kwargs):
    defaults = {"id": "fee-1", "name": "Shipping Insurance", "display_name": "Shipping Insurance", "cost": "4.00"}
    defaults.update(kwargs)
    return FeeRecord(**defaults)


def test_requires_credentials():
    with pytest.raises(ValueError):
        RealCheckoutClient(UpstreamConfig())


@pytest.mark.asyncio
async def test_fetch_snapshot_sends_auth_headers_and_normalizes():
    payload = {"data": {"id": "chk-1", "subtotal_ex_tax": 100, "cart": {"fees": [{"id": "f", "name": "Shipping Insurance", "cost": 4}]}}}
    client, recorder = _client(lambda request: httpx.Response(200, json=payload))

    snapshot = await client.fetch_snapshot("chk-1")

    request = recorder.requests[0]
    assert request.method == "GET"
    assert str(request.url) == f"{BASE}/checkouts/chk-1"
    assert request.headers["X-Auth-Token"] == "secret-token"
    assert request.headers["Accept"] == "application/json"
    assert [fee.id for fee in snapshot.fees] == ["f"]
    assert float(snapshot.subtotal) == 100.0


@pytest.mark.asyncio
async def test_fetch_non_2xx_raises_upstream_error_with_status_and_body():
    client, _ = _client(lambda request: httpx.Response(403, json={"title": "Forbidden"}))

    with pytest.raises(UpstreamError) as exc_info:
        await client.get_checkout("chk-1")

    assert exc_info.value.status == 403
    assert exc_info.value.body == {"title": "Forbidden"}
    assert "403" in str(exc_info.value)
    assert exc_info.value.transient is False


@pytest.mark.asyncio
async def test_timeout_is_distinct_from_http_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client, _ = _client(handler)

    with pytest.raises(UpstreamTimeoutError) as exc_info:
        await client.get_checkout("chk-1")

    assert exc_info.value.timeout_seconds == 15
    assert exc_info.value.transient is True


@pytest.mark.asyncio
async def test_network_error_is_transient_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = _client(handler)

    with pytest.raises(UpstreamError) as exc_info:
        await client.get_checkout("chk-1")

    assert exc_info.value.status is None
    assert exc_info.value.transient is True


@pytest.mark.asyncio
async def test_non_json_checkout_body_is_rejected():
    client, _ = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(IntegrationResponseError):
        await client.fetch_snapshot("chk-1")


@pytest.mark.asyncio
async def test_non_json_checkout_body_fails_removal_without_mutating():
    client, recorder = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    result = await FeeReconciler(client).ensure_fee_absent("chk-1")

    assert result.status == ReconcileStatus.FAILED
    assert [request.method for request in recorder.requests] == ["GET"]


@pytest.mark.asyncio
async def test_delete_fee_404_is_returned_not_raised():
    client, recorder = _client(lambda request: httpx.Response(404, json={"title": "Not Found"}))

    response = await client.delete_fee("chk-1", "fee-1")

    assert response.not_found
    assert recorder.requests[0].method == "DELETE"
    assert str(recorder.requests[0].url) == f"{BASE}/checkouts/chk-1/fees/fee-1"


@pytest.mark.asyncio
async def test_delete_all_fees_hits_collection_endpoint():
    client, recorder = _client(lambda request: httpx.Response(204))

    response = await client.delete_all_fees("chk-1")

    assert response.status == 204
    assert response.body is None
    assert str(recorder.requests[0].url) == f"{BASE}/checkouts/chk-1/fees"


@pytest.mark.asyncio
async def test_create_fees_posts_fee_without_id():
    client, recorder = _client(lambda request: httpx.Response(200, json={"data": {}}))

    await client.create_fees("chk-1", [_fee(id=None, tax_class_id=1)])

    request = recorder.requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{BASE}/checkouts/chk-1/fees"
    assert json.loads(request.content) == {
        "fees": [
            {
                "type": "custom_fee",
                "name": "Shipping Insurance",
                "display_name": "Shipping Insurance",
                "cost": 4.0,
                "source": "AA",
                "tax_class_id": 1,
            }
        ]
    }


@pytest.mark.asyncio
async def test_update_keeps_ids_and_replace_strips_them():
    client, recorder = _client(lambda request: httpx.Response(200, json={"data": {}}))

    await client.update_fees("chk-1", [_fee()])
    await client.replace_fees("chk-1", [_fee()])

    update, replace = recorder.requests
    assert (update.method, str(update.url)) == ("PUT", f"{BASE}/checkouts/chk-1/fees")
    assert json.loads(update.content)["fees"][0]["id"] == "fee-1"
    assert (replace.method, str(replace.url)) == ("PUT", f"{BASE}/checkouts/chk-1")
    assert "id" not in json.loads(replace.content)["fees"][0]


@pytest.mark.asyncio
async def test_mutation_server_error_raises():
    client, _ = _client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(UpstreamError) as exc_info:
        await client.replace_fees("chk-1", [_fee()])

    assert exc_info.value.status == 500
    assert exc_info.value.body == "boom"
