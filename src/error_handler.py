"""Error taxonomy and error payload helpers for the checkout fee service."""
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for every error raised by this service."""

    status_code = 500


class ValidationError(ServiceError):
    """Bad caller input."""

    status_code = 400


class UpstreamError(ServiceError):
    """Non-2xx (or network failure) from the upstream commerce API."""

    status_code = 502

    def __init__(self, message: str, *, status: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def transient(self) -> bool:
        # No status means the request never got an HTTP response.
        return self.status is None or self.status >= 500


class UpstreamTimeoutError(UpstreamError):
    status_code = 504

    def __init__(self, message: str, *, timeout_seconds: Optional[float] = None) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds

    @property
    def transient(self) -> bool:
        return True


class VerificationFailed(ServiceError):
    """A mutation was accepted but a fresh checkout still shows the fee."""

    def __init__(self, message: str, *, snapshot: Any = None, warnings: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.snapshot = snapshot
        # Side effects already applied before verification gave up.
        self.warnings = list(warnings or [])


class StrategySkipped(ServiceError):
    """A removal strategy does not apply to the current snapshot."""


class ReconciliationExhausted(ServiceError):
    """Every removal strategy was attempted and none was confirmed."""


class ErrorHandler:
    def handle_exception(self, exc: Exception, context: Dict[str, Any] = None) -> Tuple[int, Dict[str, Any]]:
        status_code = getattr(exc, "status_code", 500)
        if status_code >= 500:
            logger.error("Request failed: %s context=%s", exc, context or {}, exc_info=not isinstance(exc, ServiceError))
        else:
            logger.info("Rejected request: %s context=%s", exc, context or {})

        payload: Dict[str, Any] = {"success": False, "error": str(exc)}
        if isinstance(exc, UpstreamError) and exc.status is not None:
            payload["upstream_status"] = exc.status
        return status_code, payload
