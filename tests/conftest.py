"""
Pytest configuration and fixtures for authzscript tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from authzscript.schema import AuthZRequest


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def empty_request() -> AuthZRequest:
    """Return a request snapshot with every field empty."""
    return AuthZRequest()


@pytest.fixture
def sample_request() -> AuthZRequest:
    """Return the reference request used for binding checks."""
    return AuthZRequest(
        user="USER",
        user_authn_method="AUTHN",
        method="GET",
        uri="/foo?bar=baz",
        body=b'{"foo": "bar"}\n',
        headers={"foo": "bar"},
    )


@pytest.fixture
def binding_check_script() -> str:
    """Return a script asserting every binding of sample_request."""
    return """
assert user() == "USER"
assert user_authn_method() == "AUTHN"
assert request_method() == "GET"
assert request_uri() == "/foo?bar=baz"
assert request_uri_path() == "/foo"
assert request_uri_query() == {"bar": ["baz"]}
assert request_body() == {"foo": "bar"}
assert request_headers() == {"foo": "bar"}
"""


@pytest.fixture
def sample_rule() -> str:
    """Return a rule allowing reads and admin writes."""
    return """
if request_method() == "GET":
    allow()
elif user() == "admin":
    allow()
else:
    deny(f"{user()} may not {request_method()} {request_uri_path()}")
"""


@pytest.fixture
def sample_wire_request() -> str:
    """Return a wire-format request document (base64 body)."""
    return """
{
  "User": "alice",
  "UserAuthNMethod": "TLS",
  "RequestMethod": "POST",
  "RequestURI": "/v1.41/containers/create?name=web",
  "RequestBody": "eyJJbWFnZSI6ICJuZ2lueCJ9",
  "RequestHeaders": {"Content-Type": "application/json"}
}
"""
