"""Translation of service-layer exceptions into HTTP errors for the routers."""

import logging

from fastapi import HTTPException

from question_bridge.services.errors import QuestionBridgeError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "precondition": 409,
    "busy": 409,
    "draft": 409,
    "disabled": 503,
    "generation": 502,
    "persistence": 503,
}


def status_for_kind(kind: str) -> int:
    return STATUS_BY_KIND.get(kind, 500)


def http_error(exc: Exception) -> HTTPException:
    """Map an exception raised by a service call to the matching ``HTTPException``."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, QuestionBridgeError):
        return HTTPException(status_code=status_for_kind(exc.kind), detail=str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc).strip("'\""))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    logger.error(f"[ERROR] Unexpected failure: {exc}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Internal error: {exc}")
