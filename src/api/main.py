"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.dependencies import api_key_protection
from src.api.endpoints.checkout import checkout_api
from src.error_handler import ErrorHandler, ServiceError
from src.integrations.clients.mocks.checkout import MockCheckoutClient
from src.integrations.clients.real_http.checkout import RealCheckoutClient
from src.integrations.policy.fee_reconciler import FeeReconciler
from src.integrations.policy.response_wrappers import IntegrationResponseError
from src.utils.config_loader import CheckoutServiceConfig, load_checkout_config

# Setup logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

error_handler = ErrorHandler()

# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

config = load_checkout_config()


def _should_use_real_integrations(cfg: CheckoutServiceConfig) -> bool:
    mode = os.getenv("INTEGRATIONS_MODE", "").strip().lower()
    if mode in {"real", "live"}:
        return True
    if mode in {"mock", "test"}:
        return False
    return cfg.upstream.configured


def build_checkout_client(cfg: CheckoutServiceConfig):
    if _should_use_real_integrations(cfg):
        return RealCheckoutClient(cfg.upstream)
    logger.warning("BigCommerce credentials not configured; using in-memory mock checkout client")
    return MockCheckoutClient(
        auto_create=True,
        reject_empty_collection=cfg.removal.reject_empty_fee_collection,
    )


def build_reconciler(cfg: CheckoutServiceConfig) -> FeeReconciler:
    return FeeReconciler(build_checkout_client(cfg), fee=cfg.fee, removal=cfg.removal)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = app.state.reconciler.client
    logger.info(
        "Starting Shipping Insurance Fee API: client=%s store=%s fee=%s rate=%s",
        type(client).__name__,
        config.upstream.store_hash or "<unset>",
        config.fee.name,
        config.fee.rate,
    )
    yield
    logger.info("Shutting down Shipping Insurance Fee API...")


# Initialize FastAPI app
app = FastAPI(
    title="Shipping Insurance Fee API",
    description="Adds, removes and toggles the shipping insurance fee on BigCommerce checkouts",
    version="1.0.0",
    dependencies=[Depends(api_key_protection)],
    lifespan=lifespan,
)

app.state.reconciler = build_reconciler(config)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.allowed_origins or ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-API-KEY"],
)

app.include_router(checkout_api, prefix="/api/checkout", tags=["Checkout"])
app.include_router(checkout_api, prefix="/checkout", tags=["Checkout"])


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@app.exception_handler(ServiceError)
@app.exception_handler(IntegrationResponseError)
async def service_error_handler(request: Request, exc: Exception):
    status_code, payload = error_handler.handle_exception(exc, context={"path": request.url.path})
    return JSONResponse(status_code=status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": error})


# ============================================================================
# ENDPOINTS
# ============================================================================


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "Shipping Insurance Fee API",
        "endpoints": {
            "health": "/health",
            "getCheckout": "GET /api/checkout/{checkout_id}",
            "addInsuranceFee": "POST /api/checkout/{checkout_id}/fee",
            "removeInsuranceFee": "DELETE /api/checkout/{checkout_id}/fee",
            "toggleInsuranceFee": "PUT /api/checkout/{checkout_id}/fee",
            "test": "POST /api/checkout/test",
        },
    }


@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "ok", "message": "Server is running", "timestamp": datetime.now().isoformat()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
