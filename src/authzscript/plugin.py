"""
Authorization plugin adapter.

Plugin turns evaluator results into host responses for the two hooks of
the authorization protocol:

    - authz_request: runs the policy script for an incoming API request
    - authz_response: the response hook, always allows

The rule is compiled once when the plugin is built, so a broken rule
fails at startup rather than on the first request. Transport (TCP or
Unix socket listeners) is left to the host process.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from authzscript.errors import RequestLoadError, RuleLoadError
from authzscript.evaluator import PolicyScript, compile_script, evaluate
from authzscript.schema import AuthZRequest, AuthZResponse, parse_request_document

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "authorization script failed"


class Plugin:
    """
    Authorization plugin backed by a single policy script.

    Usage:
        plugin = Plugin(load_rule("rule.py"))
        response = plugin.authz_request(AuthZRequest.from_wire(payload))
        send(response.to_wire())

    Attributes:
        script: The compiled policy script
        failure_message: Err text sent when the script fails
    """

    def __init__(
        self,
        rule: str | PolicyScript,
        rule_name: str = "<policy>",
        failure_message: str = DEFAULT_FAILURE_MESSAGE,
    ) -> None:
        """
        Initialize the plugin.

        Args:
            rule: Policy script text, or an already compiled script
            rule_name: Filename used in script tracebacks
            failure_message: Err text sent when the script fails

        Raises:
            ScriptValidationError: If the rule does not compile
        """
        self.script = rule if isinstance(rule, PolicyScript) else compile_script(rule, rule_name)
        self.failure_message = failure_message

    def authz_request(self, request: AuthZRequest) -> AuthZResponse:
        """Decide whether an API request may proceed."""
        result = evaluate(self.script, request)
        if result.error is not None:
            logger.error(
                "authorization script failed for %s %s: %s",
                request.method,
                request.uri,
                result.error,
            )
            return AuthZResponse(allow=False, err=self.failure_message)
        return AuthZResponse(allow=result.allowed, err=result.message)

    def authz_response(self, request: AuthZRequest) -> AuthZResponse:
        """Response hook; responses are never filtered."""
        return AuthZResponse(allow=True)

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Decode a wire request, decide it, and encode the response."""
        return self.authz_request(AuthZRequest.from_wire(payload)).to_wire()

    def __repr__(self) -> str:
        return f"<Plugin: {self.script.name}>"


# =============================================================================
# File Loading Helpers
# =============================================================================


def load_rule(path: Path | str) -> str:
    """
    Read a policy script from disk.

    Args:
        path: Path to the rule file

    Returns:
        The script text

    Raises:
        RuleLoadError: If the file can't be read or decoded
    """
    path = Path(path)
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RuleLoadError(path=str(path), underlying_error=str(e)) from e


def load_request_from_string(content: str, source: str = "<string>") -> AuthZRequest:
    """
    Parse a request snapshot from JSON or YAML text.

    Raises:
        RequestLoadError: If the text isn't a valid request document
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise RequestLoadError(path=source, underlying_error=str(e)) from e

    try:
        return parse_request_document(data)
    except ValueError as e:
        raise RequestLoadError(path=source, underlying_error=str(e)) from e


def load_request(path: Path | str) -> AuthZRequest:
    """
    Read a request snapshot document (JSON or YAML) from disk.

    Raises:
        RequestLoadError: If the file can't be read or validated
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RequestLoadError(path=str(path), underlying_error=str(e)) from e
    return load_request_from_string(content, source=str(path))
