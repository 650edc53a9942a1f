"""
Exception hierarchy for authzscript.

All authzscript exceptions inherit from AuthzScriptError, allowing callers to
catch every authzscript-specific exception with a single except clause.

Exception Categories:
    - AlreadyDecidedError: Script recorded a second decision
    - MalformedURIError / MalformedBodyError: Request could not be parsed
    - ScriptExecutionError: Policy script failed during evaluation
    - ScriptValidationError: Policy script rejected by the sandbox
    - RuleLoadError / RequestLoadError: Input file could not be read

Errors raised by bindings (AlreadyDecided, MalformedURI, MalformedBody) are
only ever thrown inside the running script. The evaluation boundary folds
them into a single ScriptExecutionError for the caller.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Decision errors: 1xxx
ERROR_ALREADY_DECIDED = 1001

# Request errors: 2xxx
ERROR_MALFORMED_URI = 2001
ERROR_MALFORMED_BODY = 2002

# Script errors: 3xxx
ERROR_SCRIPT_EXECUTION = 3001
ERROR_SCRIPT_VALIDATION = 3002

# Loading errors: 4xxx
ERROR_RULE_LOAD = 4001
ERROR_REQUEST_LOAD = 4002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class AuthzScriptError(Exception):
    """
    Base exception for all authzscript errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Decision Errors
# =============================================================================


@dataclass
class AlreadyDecidedError(AuthzScriptError):
    """
    Raised inside a script that calls allow() or deny() a second time.

    Attributes:
        current_state: The terminal state already recorded ("allowed"/"denied")
    """

    current_state: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"already {self.current_state}"
        if self.code == 0:
            self.code = ERROR_ALREADY_DECIDED
        if not self.suggestion:
            self.suggestion = "Call allow() or deny() exactly once per evaluation"
        self.context["current_state"] = self.current_state


# =============================================================================
# Request Errors
# =============================================================================


@dataclass
class MalformedURIError(AuthzScriptError):
    """Raised when the request URI cannot be parsed."""

    uri: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed request URI {self.uri!r}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_MALFORMED_URI
        self.context.update({
            "uri": self.uri,
            "reason": self.reason,
        })


@dataclass
class MalformedBodyError(AuthzScriptError):
    """Raised when a non-empty request body is not valid JSON."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed request body: {self.reason}"
        if self.code == 0:
            self.code = ERROR_MALFORMED_BODY
        if not self.suggestion:
            self.suggestion = "Use request_body_json() to inspect the raw body text"
        self.context["reason"] = self.reason


# =============================================================================
# Script Errors
# =============================================================================


@dataclass
class ScriptExecutionError(AuthzScriptError):
    """
    Raised (or reported) when a policy script fails during evaluation.

    This is the only failure category callers of the evaluator see. The
    specific cause is kept in the context and as __cause__ for logging.

    Attributes:
        underlying_error: Text of the error the script raised
        error_type: Class name of the error the script raised
    """

    underlying_error: str = ""
    error_type: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy script failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_SCRIPT_EXECUTION
        self.context.update({
            "underlying_error": self.underlying_error,
            "error_type": self.error_type,
        })


@dataclass
class ScriptValidationError(AuthzScriptError):
    """Raised when a policy script uses syntax the sandbox does not allow."""

    reason: str = ""
    lineno: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            where = f" (line {self.lineno})" if self.lineno is not None else ""
            self.message = f"Invalid policy script{where}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_SCRIPT_VALIDATION
        self.context.update({
            "reason": self.reason,
            "lineno": self.lineno,
        })


# =============================================================================
# Loading Errors
# =============================================================================


@dataclass
class RuleLoadError(AuthzScriptError):
    """Raised when a rule file cannot be read."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to load rule file {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_RULE_LOAD
        if not self.suggestion:
            self.suggestion = "Check that the rule path exists and is readable"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


@dataclass
class RequestLoadError(AuthzScriptError):
    """Raised when a request snapshot document cannot be read or validated."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to load request {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_REQUEST_LOAD
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })
