"""
Unit tests for the evaluation engine.

Tests cover:
- Allow / deny / implicit deny results
- Script failures mapped to ScriptExecutionError
- Double decisions
- Binding fidelity and malformed requests
- Isolation between evaluations
"""

import logging

import pytest

from authzscript.errors import (
    AlreadyDecidedError,
    MalformedBodyError,
    MalformedURIError,
    ScriptExecutionError,
    ScriptValidationError,
)
from authzscript.evaluator import (
    DecisionState,
    EvaluationResult,
    ScriptEngine,
    compile_script,
    evaluate,
    map_result,
)
from authzscript.evaluator.engine import SCRIPT_ERROR_MESSAGE
from authzscript.schema import AuthZRequest


# =============================================================================
# Decisions
# =============================================================================


class TestDecisions:
    """Tests for scripts that complete normally."""

    def test_allow(self, empty_request: AuthZRequest) -> None:
        """allow() alone allows with an empty message."""
        assert evaluate("allow()", empty_request).as_tuple() == (True, "", None)

    def test_deny_with_message(self, empty_request: AuthZRequest) -> None:
        """deny(m) denies with m."""
        assert evaluate('deny("MESSAGE")', empty_request).as_tuple() == (False, "MESSAGE", None)

    def test_deny_keyword_message(self, empty_request: AuthZRequest) -> None:
        """The message may be passed by keyword."""
        assert evaluate('deny(message="nope")', empty_request).message == "nope"

    def test_deny_without_message(self, empty_request: AuthZRequest) -> None:
        """deny() denies with an empty message."""
        assert evaluate("deny()", empty_request).as_tuple() == (False, "", None)

    def test_deny_message_is_stringified(self, empty_request: AuthZRequest) -> None:
        """Non-string messages are converted to text."""
        assert evaluate("deny(403)", empty_request).message == "403"

    def test_empty_script_is_implicit_deny(self, empty_request: AuthZRequest) -> None:
        """A script that never decides is implicitly denied."""
        assert evaluate("", empty_request).as_tuple() == (False, "implicitly denied", None)

    def test_decision_then_more_code(self, empty_request: AuthZRequest) -> None:
        """Code after the decision still runs without changing it."""
        result = evaluate("allow()\nx = len([1, 2])", empty_request)
        assert result.allowed is True
        assert result.failed is False

    def test_conditional_rule(self, sample_rule: str) -> None:
        """A rule branches on request data."""
        read = AuthZRequest(user="bob", method="GET", uri="/v1.41/containers/json")
        write = AuthZRequest(user="bob", method="POST", uri="/v1.41/containers/create")
        admin = AuthZRequest(user="admin", method="POST", uri="/v1.41/containers/create")

        assert evaluate(sample_rule, read).allowed is True
        assert evaluate(sample_rule, admin).allowed is True
        result = evaluate(sample_rule, write)
        assert result.as_tuple() == (False, "bob may not POST /v1.41/containers/create", None)


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Tests for scripts that fail."""

    def test_raise(self, empty_request: AuthZRequest) -> None:
        """An unhandled error yields the generic failure result."""
        result = evaluate('raise Exception("ERROR")', empty_request)
        assert result.allowed is False
        assert result.message == SCRIPT_ERROR_MESSAGE == "error in policy script"
        assert isinstance(result.error, ScriptExecutionError)
        assert result.error.underlying_error == "ERROR"
        assert result.error.error_type == "Exception"

    def test_failure_overrides_allow(self, empty_request: AuthZRequest) -> None:
        """An error after allow() still denies."""
        result = evaluate('allow()\nraise ValueError("late")', empty_request)
        assert result.as_tuple()[:2] == (False, SCRIPT_ERROR_MESSAGE)
        assert result.failed

    def test_failed_assert(self, empty_request: AuthZRequest) -> None:
        """A failed assert is a script failure."""
        result = evaluate('assert user() == "root"', empty_request)
        assert result.failed
        assert result.error.error_type == "AssertionError"

    def test_name_error(self, empty_request: AuthZRequest) -> None:
        """Calling an unknown function is a script failure."""
        result = evaluate("allow_everything()", empty_request)
        assert result.failed
        assert result.error.error_type == "NameError"

    def test_syntax_error(self, empty_request: AuthZRequest) -> None:
        """Unparsable script text is a script failure, not a crash."""
        result = evaluate("allow(", empty_request)
        assert result.failed
        assert result.error.error_type == "ScriptValidationError"

    def test_sandbox_rejection(self, empty_request: AuthZRequest) -> None:
        """Disallowed constructs fail the evaluation."""
        result = evaluate("import os\nallow()", empty_request)
        assert result.allowed is False
        assert isinstance(result.error.__cause__, ScriptValidationError)

    def test_cause_is_preserved(self, empty_request: AuthZRequest) -> None:
        """The original error is chained for logging."""
        result = evaluate('raise ValueError("why")', empty_request)
        assert isinstance(result.error.__cause__, ValueError)

    def test_failure_is_logged(self, empty_request: AuthZRequest, caplog: pytest.LogCaptureFixture) -> None:
        """Failures are logged with their cause."""
        with caplog.at_level(logging.ERROR, logger="authzscript.evaluator.engine"):
            evaluate('raise ValueError("logged cause")', empty_request)
        assert "logged cause" in caplog.text


class TestAlreadyDecided:
    """Tests for second decisions."""

    @pytest.mark.parametrize(
        ("source", "current"),
        [
            ("allow()\nallow()", "allowed"),
            ("allow()\ndeny('x')", "allowed"),
            ("deny('x')\nallow()", "denied"),
            ("deny()\ndeny()", "denied"),
        ],
    )
    def test_second_decision_fails(self, empty_request: AuthZRequest, source: str, current: str) -> None:
        """Any second decision fails the evaluation."""
        result = evaluate(source, empty_request)
        assert result.as_tuple()[:2] == (False, SCRIPT_ERROR_MESSAGE)
        assert isinstance(result.error.__cause__, AlreadyDecidedError)
        assert result.error.underlying_error == f"already {current}"

    def test_second_decision_in_comprehension(self, empty_request: AuthZRequest) -> None:
        """Decisions made inside expressions are tracked too."""
        result = evaluate("[allow() for x in [1, 2]]", empty_request)
        assert result.failed
        assert isinstance(result.error.__cause__, AlreadyDecidedError)


# =============================================================================
# Bindings
# =============================================================================


class TestBindings:
    """Tests for the request bindings seen from scripts."""

    def test_binding_fidelity(self, sample_request: AuthZRequest, binding_check_script: str) -> None:
        """Every binding returns the reference values."""
        result = evaluate(binding_check_script, sample_request)
        assert result.error is None
        assert result.message == "implicitly denied"

    def test_malformed_uri_is_script_error(self) -> None:
        """A URI-derived binding on a bad URI fails the script."""
        request = AuthZRequest(uri="http://[::1")
        result = evaluate("request_uri_path()\nallow()", request)
        assert result.allowed is False
        assert isinstance(result.error.__cause__, MalformedURIError)

    def test_malformed_uri_unused_is_fine(self) -> None:
        """A bad URI only matters if the script parses it."""
        request = AuthZRequest(uri="http://[::1")
        assert evaluate("allow()", request).allowed is True
        assert evaluate('assert request_uri() == "http://[::1"\nallow()', request).allowed is True

    def test_malformed_body_is_script_error(self) -> None:
        """request_body() on invalid JSON fails the script."""
        request = AuthZRequest(body=b"{oops")
        result = evaluate("request_body()", request)
        assert isinstance(result.error.__cause__, MalformedBodyError)
        assert evaluate('assert request_body_json() == "{oops"\nallow()', request).allowed

    def test_empty_body_is_none(self, empty_request: AuthZRequest) -> None:
        """request_body() of an empty body is None."""
        assert evaluate("assert request_body() is None\nallow()", empty_request).allowed

    def test_body_memoized_within_script(self, sample_request: AuthZRequest) -> None:
        """request_body() returns the same object within one evaluation."""
        script = 'request_body()["seen"] = True\nassert request_body()["seen"]\nallow()'
        assert evaluate(script, sample_request).allowed

    def test_query_multi_values(self) -> None:
        """Query values are lists in encounter order."""
        request = AuthZRequest(uri="/containers/json?filters=a&all&filters=b")
        script = """
q = request_uri_query()
assert q["filters"] == ["a", "b"]
assert q["all"] == [""]
allow()
"""
        assert evaluate(script, request).allowed


# =============================================================================
# Isolation
# =============================================================================


class TestIsolation:
    """Tests that evaluations never share state."""

    def test_idempotent(self, sample_request: AuthZRequest, sample_rule: str) -> None:
        """Evaluating the same pair twice gives the same result."""
        assert evaluate(sample_rule, sample_request) == evaluate(sample_rule, sample_request)

    def test_compiled_script_reused(self, empty_request: AuthZRequest) -> None:
        """A compiled script can back many evaluations."""
        script = compile_script("allow()")
        for _ in range(3):
            assert evaluate(script, empty_request).allowed is True

    def test_globals_do_not_leak(self, empty_request: AuthZRequest) -> None:
        """A variable set in one evaluation is unset in the next."""
        assert evaluate("leaked = True\nallow()", empty_request).allowed
        result = evaluate("assert leaked\nallow()", empty_request)
        assert result.failed
        assert result.error.error_type == "NameError"

    def test_rebinding_does_not_leak(self, empty_request: AuthZRequest) -> None:
        """Shadowing a binding in one evaluation doesn't affect the next."""
        evaluate("allow = deny\nallow('shadowed')", empty_request)
        assert evaluate("allow()", empty_request).allowed is True

    def test_engine_executes_once(self, empty_request: AuthZRequest) -> None:
        """An engine cannot be executed twice."""
        engine = ScriptEngine("allow()", empty_request)
        engine.execute()
        with pytest.raises(RuntimeError):
            engine.execute()

    def test_snapshot_unchanged(self, sample_request: AuthZRequest) -> None:
        """Scripts cannot mutate the request snapshot."""
        script = 'h = request_headers()\nh["foo"] = "changed"\nq = request_uri_query()\nq["bar"].append("x")'
        evaluate(script, sample_request)
        assert sample_request.headers == {"foo": "bar"}
        assert evaluate('assert request_uri_query() == {"bar": ["baz"]}\nallow()', sample_request).allowed


class TestMapResult:
    """Tests for the result mapping."""

    def test_normal_completion(self) -> None:
        """Without failure, the state decides."""
        state = DecisionState()
        state.record_deny("no")
        assert map_result(state) == EvaluationResult(allowed=False, message="no")

    def test_failure_wins(self) -> None:
        """A failure overrides an allow."""
        state = DecisionState()
        state.record_allow()
        failure = ScriptExecutionError(underlying_error="boom")
        result = map_result(state, failure)
        assert result.as_tuple() == (False, SCRIPT_ERROR_MESSAGE, failure)
