"""Shared error helpers and codes."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse


class ErrorCode:
    MISSING_SIGNATURE = "missing_signature"
    UNKNOWN_ACCESS_KEY = "unknown_access_key"
    SIGNATURE_EXPIRED = "signature_expired"
    INVALID_SIGNATURE = "invalid_signature"
    SERVER_MISCONFIGURED = "server_misconfigured"
    BAD_REQUEST = "bad_request"


class SignatureAuthError(Exception):
    """Signed request rejected, with the HTTP status to answer with."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(payload, status_code=status_code)
