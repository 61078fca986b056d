from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException


class AccessError(Exception):
    """Base class for expected, caller-visible identity and access failures."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__


class InvalidCredentials(AccessError):
    status_code = 401
    default_message = "Invalid credentials"


class MfaInvalid(AccessError):
    status_code = 401
    default_message = "Invalid verification code"


class MfaLocked(AccessError):
    status_code = 429
    default_message = "Too many failed verification attempts; try again later"


class LoginLocked(AccessError):
    status_code = 429
    default_message = "Too many login attempts; try again later"


class SessionInvalid(AccessError):
    status_code = 401
    default_message = "Session is invalid or has expired"


class ScopeConfigInvalid(AccessError):
    status_code = 403
    default_message = "API token scope configuration is invalid"


class ScopeDenied(AccessError):
    status_code = 403
    default_message = "API token does not grant this action"


class ApiTokenInvalid(AccessError):
    status_code = 401
    default_message = "Invalid API credentials"


class ApiNetworkDenied(AccessError):
    status_code = 403
    default_message = "IP address not allowed for this API key"


class CapabilityDenied(AccessError):
    status_code = 403
    default_message = "Missing capability"


class SessionNotFound(AccessError):
    status_code = 404
    default_message = "Session not found"


class CurrentSessionRevoke(AccessError):
    status_code = 400
    default_message = "Cannot revoke the current session; use logout instead"


class AccountConflict(AccessError):
    status_code = 409
    default_message = "Username or email already in use"


class SignupDisabled(AccessError):
    status_code = 403
    default_message = "User signup is currently disabled"


class SetupAlreadyCompleted(AccessError):
    status_code = 409
    default_message = "An administrator account already exists"


class TfaStateError(AccessError):
    status_code = 400
    default_message = "Two-factor authentication is not in the required state"


class PasswordPolicyError(AccessError):
    status_code = 400
    default_message = "Password does not satisfy policy"


class ReclamationFailed(AccessError):
    status_code = 500
    default_message = "Session reclamation failed"


class AuthPhaseError(RuntimeError):
    """Raised on an illegal phase transition or an operation outside READY."""


def _default_code(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "unprocessable_entity",
        429: "rate_limited",
    }
    return mapping.get(status_code, "http_error")


def _default_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _normalize_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = {
        "code": code,
        "message": message,
        "data": None,
        "details": _normalize_details(details),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload), headers=headers)


async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return build_error_response(exc.status_code, exc.code, exc.message, exc.details, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _default_code(exc.status_code)
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code") or code
        message = detail.get("message") or _default_message(exc.status_code)
        details = detail.get("details")
    elif isinstance(detail, str):
        message, details = detail, {"detail": detail}
    else:
        message, details = _default_message(exc.status_code), detail
    return build_error_response(exc.status_code, code, message, details, getattr(exc, "headers", None))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        loc_parts = [str(part) for part in first.get("loc") or [] if part not in {"body", "query", "path"}]
        msg = first.get("msg") or message
        message = f"{'.'.join(loc_parts)}: {msg}" if loc_parts else str(msg)
    # Request bodies may carry passwords; only the error list is echoed back.
    return build_error_response(422, "validation_error", message, {"errors": errors})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return build_error_response(429, "rate_limited", _default_message(429), getattr(exc, "detail", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return build_error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(AccessError, access_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
