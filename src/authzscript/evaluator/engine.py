"""
Evaluation engine for authzscript.

One ScriptEngine runs one policy script against one request snapshot:

    1. Build a fresh DecisionState and RequestContextBinder
    2. Register allow()/deny() and the request queries as bindings
    3. Execute the script exactly once
    4. Map the outcome to an EvaluationResult

Design Principles:
    - Fail-closed: any failure yields allowed=False, never a partial decision
    - Isolated: no engine, state or binder is reused across evaluations
    - Default-deny: a script that never decides is implicitly denied
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from authzscript.errors import (
    AlreadyDecidedError,
    AuthzScriptError,
    ScriptExecutionError,
)
from authzscript.evaluator.context import RequestContextBinder
from authzscript.evaluator.decision import DecisionState, TransitionOutcome
from authzscript.evaluator.sandbox import (
    PolicyScript,
    build_environment,
    compile_script,
    run,
)
from authzscript.schema import AuthZRequest

logger = logging.getLogger(__name__)

SCRIPT_ERROR_MESSAGE = "error in policy script"


@dataclass(frozen=True)
class EvaluationResult:
    """
    Caller-facing outcome of one evaluation.

    Attributes:
        allowed: Whether the request is permitted
        message: Denial/diagnostic message ("" on plain allow)
        error: The failure, when the script did not complete
    """

    allowed: bool
    message: str
    error: ScriptExecutionError | None = None

    @property
    def failed(self) -> bool:
        """Whether the script failed instead of completing."""
        return self.error is not None

    def as_tuple(self) -> tuple[bool, str, ScriptExecutionError | None]:
        return self.allowed, self.message, self.error


def map_result(
    state: DecisionState,
    failure: ScriptExecutionError | None = None,
) -> EvaluationResult:
    """
    Combine the final decision state with any execution failure.

    A failure always wins over whatever the script decided before failing.
    """
    if failure is not None:
        return EvaluationResult(allowed=False, message=SCRIPT_ERROR_MESSAGE, error=failure)
    allowed, message = state.final()
    return EvaluationResult(allowed=allowed, message=message)


class ScriptEngine:
    """
    Hosts a single isolated policy evaluation.

    Usage:
        engine = ScriptEngine('deny("read-only")', request)
        result = engine.execute()
        result.as_tuple()  # (False, "read-only", None)

    An engine executes once; build a new one for every request.

    Attributes:
        script: The policy script (text or pre-compiled)
        request: The request snapshot being evaluated
        state: Decision recorded by the script
        binder: Request query functions exposed to the script
    """

    def __init__(self, script: str | PolicyScript, request: AuthZRequest) -> None:
        self.script = script
        self.request = request
        self.state = DecisionState()
        self.binder = RequestContextBinder(request)
        self._violation: AlreadyDecidedError | None = None
        self._executed = False

    def bindings(self) -> dict[str, Callable[..., Any]]:
        """The full capability registry for this evaluation."""
        registry: dict[str, Callable[..., Any]] = {
            "allow": self._allow,
            "deny": self._deny,
        }
        registry.update(self.binder.bindings())
        return registry

    def execute(self) -> EvaluationResult:
        """
        Run the script and derive the result.

        Returns:
            EvaluationResult; failures are reported, never raised

        Raises:
            RuntimeError: If this engine has already executed
        """
        if self._executed:
            msg = "ScriptEngine instances execute exactly once"
            raise RuntimeError(msg)
        self._executed = True

        try:
            script = self.script
            if isinstance(script, str):
                script = compile_script(script)
            run(script, build_environment(self.bindings()))
        except Exception as e:
            return map_result(self.state, self._failure(e))

        if self._violation is not None:
            # a double decision stays fatal even if the script carried on
            return map_result(self.state, self._failure(self._violation))

        result = map_result(self.state)
        logger.debug(
            "policy decision for %s %s: allowed=%s message=%r",
            self.request.method,
            self.request.uri,
            result.allowed,
            result.message,
        )
        return result

    def _allow(self) -> None:
        self._check(self.state.record_allow())

    def _deny(self, message: Any = None) -> None:
        self._check(self.state.record_deny(None if message is None else str(message)))

    def _check(self, outcome: TransitionOutcome) -> None:
        if outcome.ok or outcome.error is None:
            return
        if self._violation is None:
            self._violation = outcome.error
        raise outcome.error

    def _failure(self, cause: BaseException) -> ScriptExecutionError:
        logger.error("error during evaluating policy script: %s", cause)
        reason = cause.message if isinstance(cause, AuthzScriptError) else str(cause)
        failure = ScriptExecutionError(
            underlying_error=reason,
            error_type=type(cause).__name__,
        )
        failure.__cause__ = cause
        return failure


def evaluate(script: str | PolicyScript, request: AuthZRequest) -> EvaluationResult:
    """
    Evaluate a policy script against a request snapshot.

    Each call builds its own engine, so concurrent calls never share state.

    Args:
        script: Policy script text or a compiled PolicyScript
        request: The request snapshot

    Returns:
        EvaluationResult with (allowed, message, error)
    """
    return ScriptEngine(script, request).execute()
