"""
Shared test utilities and factories.

Re-exports all factory functions for convenient imports:
    from app.testing import create_alarm, get_auth_headers
"""

from app.testing.factories import create_alarm, get_auth_headers, get_auth_token

__all__ = [
    "create_alarm",
    "get_auth_headers",
    "get_auth_token",
]
