"""
FastAPI capture point.

Unhandled request exceptions are run through the interceptor and answered
with a JSON body that exposes only user-safe fields.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from faultline.models.failure import Failure, FailureError, FailureKind
from faultline.services.interceptor import CAPTURE_POINT_KEY, GlobalErrorInterceptor
from faultline.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_CODE = {
    FailureKind.NETWORK: {
        "TIMEOUT": 504,
        "NO_CONNECTION": 502,
        "SERVER_ERROR": 502,
        "RATE_LIMITED": 429,
    },
    FailureKind.AUTHENTICATION: {
        "TOKEN_EXPIRED": 401,
        "INVALID_CREDENTIALS": 401,
        "BIOMETRIC_FAILED": 401,
        "PERMISSION_DENIED": 403,
        "ACCOUNT_LOCKED": 403,
    },
    FailureKind.DATA: {
        "NOT_FOUND": 404,
        "CONFLICT": 409,
        "STORAGE_FULL": 507,
    },
    FailureKind.PLATFORM: {
        "PERMISSION_DENIED": 403,
        "NOT_SUPPORTED": 501,
    },
}

_STATUS_BY_KIND = {
    FailureKind.NETWORK: 502,
    FailureKind.AUTHENTICATION: 401,
    FailureKind.VALIDATION: 422,
    FailureKind.BUSINESS_RULE: 409,
}


def status_for_failure(failure: Failure) -> int:
    """HTTP status returned to clients for a failure."""
    status = _STATUS_BY_CODE.get(failure.kind, {}).get(failure.code or "")
    if status is not None:
        return status
    return _STATUS_BY_KIND.get(failure.kind, 500)


def error_body(failure: Failure) -> dict:
    """Response body: user-safe fields only, never the trace or message."""
    return {
        "error": {
            "user_message": failure.user_message,
            "kind": failure.kind.value,
            "code": failure.code,
            "failure_id": failure.failure_id,
        }
    }


def install_exception_handlers(app: FastAPI, interceptor: Optional[GlobalErrorInterceptor] = None) -> None:
    """
    Register the interceptor as the app's handler for unhandled exceptions.

    Args:
        app: FastAPI application
        interceptor: Interceptor to use; when omitted it is read from
            ``app.state.pipeline`` at request time
    """

    async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
        target = interceptor
        if target is None:
            target = request.app.state.pipeline.interceptor

        outcome = await target.handle(
            exc,
            {
                CAPTURE_POINT_KEY: "http",
                "method": request.method,
                "path": request.url.path,
            },
        )
        failure = outcome.failure
        logger.debug(
            f"Request {request.method} {request.url.path} failed with {failure.kind.value}",
            extra={"failure_id": failure.failure_id, "path": request.url.path},
        )
        return JSONResponse(status_code=status_for_failure(failure), content=error_body(failure))

    # The Exception handler runs inside ServerErrorMiddleware, which re-raises after responding
    app.add_exception_handler(FailureError, handle_exception)
    app.add_exception_handler(Exception, handle_exception)
