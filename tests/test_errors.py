import httpx
import pytest

from omnidesk.services.errors import (
    ApiAuthError,
    ApiForbiddenError,
    ApiNotFoundError,
    ApiRateLimitError,
    ApiTransientError,
    ApiValidationError,
    error_from_response,
    error_from_transport,
    extract_error_message,
)


def test_extract_error_message_prefers_nested_error():
    payload = {"error": {"message": "Channel already connected"}, "message": "outer"}

    assert extract_error_message(payload) == "Channel already connected"


def test_extract_error_message_falls_back_in_order():
    assert extract_error_message({"error": {"message": "  "}, "message": "outer"}) == "outer"
    assert extract_error_message({"error": "flat"}, "Bad Request") == "Bad Request"
    assert extract_error_message(None) == "Request failed"


@pytest.mark.parametrize(
    ("status_code", "error_type", "code", "retryable"),
    [
        (400, ApiValidationError, "invalid_request", False),
        (401, ApiAuthError, "unauthorized", False),
        (403, ApiForbiddenError, "forbidden", False),
        (404, ApiNotFoundError, "not_found", False),
        (422, ApiValidationError, "invalid_request", False),
        (429, ApiRateLimitError, "rate_limited", True),
        (502, ApiTransientError, "server_error", True),
    ],
)
def test_error_from_response_maps_status(status_code, error_type, code, retryable):
    error = error_from_response(httpx.Response(status_code, json={"message": "nope"}))

    assert type(error) is error_type
    assert error.code == code
    assert error.status_code == status_code
    assert error.retryable is retryable
    assert str(error) == "nope"


def test_error_from_response_keeps_server_code():
    response = httpx.Response(401, json={"error": {"code": "token_expired", "message": "Expired"}})

    error = error_from_response(response)

    assert error.code == "token_expired"
    assert error.detail == "Expired"


def test_error_from_response_without_body_uses_reason_phrase():
    error = error_from_response(httpx.Response(503))

    assert error.detail == "Service Unavailable"


def test_error_from_transport():
    request = httpx.Request("GET", "http://api.test")

    timeout = error_from_transport(httpx.ReadTimeout("read timed out", request=request))
    network = error_from_transport(httpx.ConnectError("connection refused", request=request))

    assert (timeout.code, timeout.status_code) == ("timeout", 504)
    assert (network.code, network.status_code) == ("network_error", 503)
    assert network.retryable is True
