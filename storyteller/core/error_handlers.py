"""Exception handlers for the StoryTeller API.

Every failing endpoint answers with a JSON object that carries at least an
``error`` string, so the browser client can show the message verbatim.
"""
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from storyteller.core.exceptions import StoryTellerError
from storyteller.core.logging import get_logger
from storyteller.core.middleware import get_request_id

logger = get_logger(__name__)


def _describe_validation_errors(errors: List[Dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app.

    - StoryTellerError → its own status code and ``to_dict()`` body
    - RequestValidationError → 422 with a flattened message
    - HTTPException → ``{error: detail}``
    - Unhandled Exception → 500
    """

    @app.exception_handler(StoryTellerError)
    async def storyteller_error_handler(request: Request, exc: StoryTellerError):
        logger.warning(
            "request_rejected",
            path=request.url.path,
            request_id=get_request_id(request),
            error_code=exc.code,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        message = _describe_validation_errors(exc.errors())
        return JSONResponse(status_code=422, content={"error": message, "code": "VALIDATION_ERROR"})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            request_id=get_request_id(request),
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Unexpected server error", "code": "INTERNAL_ERROR"},
        )
