from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    """HTTPException carrying an optional machine-readable code for the client."""

    def __init__(self, status_code: int, error: str, code: str | None = None, headers: dict[str, str] | None = None) -> None:
        super().__init__(status_code=status_code, detail=error, headers=headers)
        self.code = code


def bad_request(error: str) -> APIError:
    return APIError(400, error)


def not_found(error: str) -> APIError:
    return APIError(404, error)


def forbidden(error: str) -> APIError:
    return APIError(403, error)


def plan_required(error: str) -> APIError:
    return APIError(403, error, code="PLAN_REQUIRED")


def limit_reached(error: str) -> APIError:
    return APIError(403, error, code="LIMIT_REACHED")


def insufficient_credits(needed: int, remaining: int, hint: str = "Upgrade your plan for more credits.") -> APIError:
    msg = f"Insufficient credits. Need {int(needed)}, have {int(remaining)}."
    if hint:
        msg = f"{msg} {hint}"
    return APIError(403, msg, code="INSUFFICIENT_CREDITS")


def error_body(error: str, code: str | None = None) -> dict:
    body: dict = {"error": error}
    if code:
        body["code"] = code
    return body


def _is_quota_message(message: str) -> bool:
    m = (message or "").lower()
    return "resource_exhausted" in m or "quota" in m or " 429" in m or m.startswith("429")


def provider_error_response(exc: Exception, fallback: str, provider_label: str = "provider") -> APIError:
    """Translate an upstream failure into the API envelope, mapping rate limits to 429."""
    status = getattr(exc, "status_code", None)
    message = str(exc) or fallback
    if status == 429 or _is_quota_message(message):
        return APIError(
            429,
            f"The {provider_label} API quota was exceeded. Please wait a few minutes and try again.",
            code="PROVIDER_RATE_LIMITED",
        )
    return APIError(500, message or fallback)


async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(detail, getattr(exc, "code", None)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        msg = str(first.get("msg") or "").strip()
        if first.get("type") == "value_error":
            # Messages raised by our own validators are already user-facing.
            if msg.lower().startswith("value error, "):
                msg = msg[len("value error, "):]
            message = msg or message
        else:
            message = f"{loc}: {msg}" if loc else (msg or message)
    return JSONResponse(status_code=400, content=error_body(message))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("api.unhandled_error path=%s", request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))
