"""Error taxonomy for calls made through the API gateway client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx


@dataclass(frozen=True)
class ApiError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def __str__(self) -> str:
        return self.detail


class ApiValidationError(ApiError):
    def __init__(self, code: str, detail: str, status_code: int = 400):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=False)


class ApiAuthError(ApiError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=401, retryable=False)


class ApiForbiddenError(ApiError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=403, retryable=False)


class ApiNotFoundError(ApiError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404, retryable=False)


class ApiRateLimitError(ApiError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=429, retryable=True)


class ApiTransientError(ApiError):
    def __init__(self, code: str, detail: str, status_code: int = 503):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=True)


class OAuthHandshakeError(Exception):
    """A redirect handshake could not be completed."""


class OAuthStateMismatchError(OAuthHandshakeError):
    """The provider echoed a state that does not match the stored nonce."""


def extract_error_message(payload: Any, fallback: str | None = None) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message
    if fallback and fallback.strip():
        return fallback
    return "Request failed"


def _error_code(payload: Any, default: str) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("code"), str):
            return error["code"]
    return default


def error_from_response(response: httpx.Response) -> ApiError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    status_code = response.status_code
    detail = extract_error_message(payload, response.reason_phrase)
    if status_code == 401:
        return ApiAuthError(_error_code(payload, "unauthorized"), detail)
    if status_code == 403:
        return ApiForbiddenError(_error_code(payload, "forbidden"), detail)
    if status_code == 404:
        return ApiNotFoundError(_error_code(payload, "not_found"), detail)
    if status_code == 429:
        return ApiRateLimitError(_error_code(payload, "rate_limited"), detail)
    if status_code >= 500:
        return ApiTransientError(_error_code(payload, "server_error"), detail, status_code=status_code)
    return ApiValidationError(_error_code(payload, "invalid_request"), detail, status_code=status_code)


def error_from_transport(exc: httpx.HTTPError) -> ApiError:
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        return ApiTransientError("timeout", message, status_code=504)
    return ApiTransientError("network_error", message, status_code=503)
