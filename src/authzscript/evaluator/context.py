"""
Read-only view of a request snapshot for policy scripts.

RequestContextBinder exposes the AuthZRequest as zero-argument query
functions. Derived views (parsed URI, parsed body) are computed on first
access and cached on the binder, which lives for exactly one evaluation.

URI parsing follows standard URI syntax and is stricter than urlsplit():
control characters, bad percent escapes and a missing scheme before ':'
are all rejected.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import unquote, unquote_plus, urlsplit

from authzscript.errors import MalformedBodyError, MalformedURIError
from authzscript.schema import AuthZRequest

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_UNSET = object()


@dataclass(frozen=True)
class ParsedURI:
    """Path and decoded query of a request URI."""

    path: str
    query: dict[str, list[str]]


def parse_request_uri(raw: str) -> ParsedURI:
    """
    Parse a raw request URI into path and query.

    Args:
        raw: The URI as received (usually origin-form, "/path?query")

    Returns:
        ParsedURI with the percent-decoded path and the query mapping

    Raises:
        MalformedURIError: If the URI is not valid URI syntax
    """
    if _CONTROL_CHARS.search(raw):
        raise MalformedURIError(uri=raw, reason="invalid control character in URL")
    if raw.startswith(":"):
        raise MalformedURIError(uri=raw, reason="missing protocol scheme")

    try:
        parts = urlsplit(raw)
    except ValueError as e:
        raise MalformedURIError(uri=raw, reason=str(e)) from e

    if _BAD_ESCAPE.search(parts.path):
        raise MalformedURIError(uri=raw, reason="invalid URL escape in path")

    return ParsedURI(path=unquote(parts.path), query=parse_query(parts.query))


def parse_query(raw: str) -> dict[str, list[str]]:
    """
    Decode a query string into {key: [values...]}.

    Pairs containing ";" or an invalid percent escape are skipped; the
    remaining pairs are still returned.
    """
    query: dict[str, list[str]] = {}
    for pair in raw.split("&"):
        if not pair or ";" in pair:
            continue
        key, _, value = pair.partition("=")
        if _BAD_ESCAPE.search(key) or _BAD_ESCAPE.search(value):
            continue
        query.setdefault(unquote_plus(key), []).append(unquote_plus(value))
    return query


class RequestContextBinder:
    """
    Query functions over one request snapshot.

    Every accessor is a pure read. Mutable results (headers, query) are
    fresh copies so a script cannot alter the snapshot or later reads.

    Attributes:
        request: The snapshot being exposed
    """

    def __init__(self, request: AuthZRequest) -> None:
        self.request = request
        self._uri: ParsedURI | None = None
        self._body: Any = _UNSET

    def request_method(self) -> str:
        return self.request.method

    def request_uri(self) -> str:
        return self.request.uri

    def request_uri_path(self) -> str:
        return self._parsed_uri().path

    def request_uri_query(self) -> dict[str, list[str]]:
        return {key: list(values) for key, values in self._parsed_uri().query.items()}

    def request_headers(self) -> dict[str, str]:
        return dict(self.request.headers)

    def request_body_json(self) -> str:
        return self.request.body.decode("utf-8", errors="replace")

    def request_body(self) -> Any:
        """
        Parsed JSON body, or None when the body is empty.

        The parsed value is cached, so repeated calls return the same object.

        Raises:
            MalformedBodyError: If the non-empty body is not valid JSON
        """
        if self._body is _UNSET:
            text = self.request_body_json()
            if not text:
                self._body = None
            else:
                try:
                    self._body = json.loads(text)
                except json.JSONDecodeError as e:
                    raise MalformedBodyError(reason=str(e)) from e
        return self._body

    def user(self) -> str:
        return self.request.user

    def user_authn_method(self) -> str:
        return self.request.user_authn_method

    def bindings(self) -> dict[str, Callable[..., Any]]:
        """Map script-visible names to this binder's accessors."""
        return {
            "request_method": self.request_method,
            "request_uri": self.request_uri,
            "request_uri_path": self.request_uri_path,
            "request_uri_query": self.request_uri_query,
            "request_headers": self.request_headers,
            "request_body_json": self.request_body_json,
            "request_body": self.request_body,
            "user": self.user,
            "user_authn_method": self.user_authn_method,
        }

    def _parsed_uri(self) -> ParsedURI:
        if self._uri is None:
            self._uri = parse_request_uri(self.request.uri)
        return self._uri
