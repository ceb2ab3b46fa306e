"""Error handling helpers for the underwriting API."""
from typing import Any, Dict, Tuple
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.engine.errors import (
    ArtifactError,
    ConfirmationRequired,
    DuplicateAuthCode,
    DuplicatePolicyNumber,
    EngineError,
    FieldValidationError,
    InvalidState,
    NotFound,
    StoreUnavailable,
    UpstreamError,
)
from src.integrations.contracts.interfaces import ConsumeOutcome

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("src.security")

# Most specific first.
STATUS_CODES: Tuple[Tuple[type, int], ...] = (
    (NotFound, 404),
    (FieldValidationError, 422),
    (ConfirmationRequired, 409),
    (InvalidState, 409),
    (UpstreamError, 502),
    (StoreUnavailable, 503),
    (DuplicateAuthCode, 503),
    (DuplicatePolicyNumber, 503),
)

GONE_OUTCOMES = {ConsumeOutcome.EXPIRED, ConsumeOutcome.INVALIDATED}


class ErrorHandler:
    def status_code_for(self, exc: EngineError) -> int:
        if isinstance(exc, ArtifactError):
            return 410 if exc.outcome in GONE_OUTCOMES else 409
        for exc_type, status_code in STATUS_CODES:
            if isinstance(exc, exc_type):
                return status_code
        return 400

    def handle_engine_error(self, exc: EngineError, context: Dict[str, Any] = None) -> Tuple[int, Dict[str, Any]]:
        status_code = self.status_code_for(exc)
        if isinstance(exc, ArtifactError):
            security_logger.warning("Payment artifact refused (%s): %s", exc.details.get("outcome"), context or {})
        elif status_code >= 500:
            logger.warning("Engine error %s (retryable=%s): %s", exc.code, exc.retryable, exc.message)
        else:
            logger.info("Engine error %s: %s", exc.code, exc.message)
        return status_code, {"success": False, **exc.to_dict()}

    def handle_exception(self, exc: Exception, context: Dict[str, Any] = None) -> Dict[str, Any]:
        logger.error("Unhandled exception in underwriting API: %s", exc, exc_info=True)
        return {
            "success": False,
            "error": "internal_error",
            "message": "An internal error occurred while processing your request. Please try again later.",
            "retryable": False,
            "metadata": {"error": str(exc), "context": context or {}},
        }

    def register(self, app: FastAPI) -> None:
        """Install JSON exception handlers on a FastAPI app."""

        @app.exception_handler(EngineError)
        async def _engine_error(request: Request, exc: EngineError):
            status_code, body = self.handle_engine_error(exc, {"path": request.url.path, "method": request.method})
            return JSONResponse(status_code=status_code, content=body)

        @app.exception_handler(Exception)
        async def _unhandled(request: Request, exc: Exception):
            body = self.handle_exception(exc, {"path": request.url.path, "method": request.method})
            return JSONResponse(status_code=500, content=body)
