from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.error_handler import ValidationError
from src.integrations.contracts.checkout import ReconcileResult, ReconcileStatus
from src.integrations.policy.fee_reconciler import FeeReconciler, coerce_subtotal
from src.api.dependencies import get_reconciler

checkout_api = APIRouter()

_MESSAGES = {
    ReconcileStatus.CREATED: "Fee added",
    ReconcileStatus.UPDATED: "Fee amount updated",
    ReconcileStatus.ALREADY_EXISTS: "Fee already exists",
    ReconcileStatus.REMOVED: "Fee removed",
    ReconcileStatus.ALREADY_ABSENT: "Fee not found or already removed",
    ReconcileStatus.MINIMIZED: "Fee could not be removed; its cost was reduced to the minimum",
    ReconcileStatus.UNSUPPORTED: "Fee removal is not supported for this checkout",
    ReconcileStatus.FAILED: "Fee removal failed; checkout state may have changed",
}


class FeeRequest(BaseModel):
    subtotal: Any = None


class ToggleFeeRequest(BaseModel):
    enabled: Any = None
    subtotal: Any = None


class SmokeTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    checkout_id: Optional[str] = Field(default=None, alias="checkoutId")


@checkout_api.get("/{checkout_id}")
async def get_checkout(checkout_id: str, reconciler: FeeReconciler = Depends(get_reconciler)):
    snapshot = await reconciler.fetch_checkout(checkout_id)
    return {"success": True, "data": snapshot.model_dump(mode="json")}


@checkout_api.post("/{checkout_id}/fee")
async def add_insurance_fee(
    checkout_id: str,
    body: Optional[FeeRequest] = None,
    reconciler: FeeReconciler = Depends(get_reconciler),
):
    subtotal = coerce_subtotal((body or FeeRequest()).subtotal)
    result = await reconciler.ensure_fee_present(checkout_id, subtotal)
    return {"success": True, "data": _result_to_dict(result)}


@checkout_api.delete("/{checkout_id}/fee")
async def remove_insurance_fee(checkout_id: str, reconciler: FeeReconciler = Depends(get_reconciler)):
    result = await reconciler.ensure_fee_absent(checkout_id)
    return _removal_response(result, reconciler)


@checkout_api.put("/{checkout_id}/fee")
async def toggle_insurance_fee(
    checkout_id: str,
    body: Optional[ToggleFeeRequest] = None,
    reconciler: FeeReconciler = Depends(get_reconciler),
):
    body = body or ToggleFeeRequest()
    if not isinstance(body.enabled, bool):
        raise ValidationError("'enabled' must be a boolean")

    result = await reconciler.toggle(checkout_id, body.enabled, body.subtotal)
    if body.enabled:
        return {"success": True, "data": _result_to_dict(result)}
    return _removal_response(result, reconciler)


@checkout_api.post("/test")
async def smoke_test(body: Optional[SmokeTestRequest] = None, reconciler: FeeReconciler = Depends(get_reconciler)):
    """Fetch a checkout and apply the fee from its own cart amount."""
    checkout_id = (body.checkout_id if body else None) or ""
    if not checkout_id.strip():
        raise ValidationError("checkoutId is required")

    snapshot, result = await reconciler.sync_from_checkout(checkout_id.strip())
    return {
        "success": True,
        "checkout": snapshot.model_dump(mode="json"),
        "fee": _result_to_dict(result),
    }


def _removal_response(result: ReconcileResult, reconciler: FeeReconciler):
    data = _result_to_dict(result)
    if result.status == ReconcileStatus.FAILED and reconciler.removal.strict_http_status:
        return JSONResponse(status_code=500, content={"success": False, "error": result.reason, "data": data})
    return {"success": True, "data": data}


def _result_to_dict(result: ReconcileResult) -> Dict[str, Any]:
    data = result.model_dump(mode="json")
    data["removed"] = result.removed
    data["message"] = _MESSAGES[result.status]
    return data
