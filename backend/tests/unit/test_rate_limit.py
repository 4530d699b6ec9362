"""
Unit tests for rate-limit bucketing.
"""

import pytest
from starlette.requests import Request

from app.core.config import settings
from app.core.rate_limit import get_caller_key
from app.testing import get_auth_headers


def _request(headers: dict[str, str] | None = None, host: str = "10.0.0.1") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/notifications/channel-token",
        "headers": [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()],
        "client": (host, 50000),
    }
    return Request(scope)


@pytest.mark.unit
def test_authenticated_caller_is_bucketed_by_user():
    assert get_caller_key(_request(get_auth_headers(5))) == "user:5"
    assert get_caller_key(_request(get_auth_headers(5), host="10.0.0.2")) == "user:5"


@pytest.mark.unit
def test_anonymous_caller_is_bucketed_by_address():
    assert get_caller_key(_request()) == "ip:10.0.0.1"


@pytest.mark.unit
def test_invalid_bearer_falls_back_to_address():
    assert get_caller_key(_request({"Authorization": "Bearer nope"})) == "ip:10.0.0.1"


@pytest.mark.unit
def test_forwarded_for_only_trusted_behind_proxy(monkeypatch):
    headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}

    assert get_caller_key(_request(headers)) == "ip:10.0.0.1"

    monkeypatch.setattr(settings, "BEHIND_PROXY", True)
    assert get_caller_key(_request(headers)) == "ip:203.0.113.9"
