"""
Decision state for a single policy evaluation.

A DecisionState starts UNDECIDED and may move exactly once, to ALLOWED or
DENIED. Transitions never raise: they return a TransitionOutcome, and the
engine decides how a refused transition surfaces to the running script.
"""

from dataclasses import dataclass

from authzscript.errors import AlreadyDecidedError
from authzscript.schema import DecisionStatus

IMPLICIT_DENY_MESSAGE = "implicitly denied"


@dataclass(frozen=True)
class TransitionOutcome:
    """
    Result of attempting a decision transition.

    Attributes:
        ok: Whether the transition was applied
        error: The refusal, when ok is False
    """

    ok: bool
    error: AlreadyDecidedError | None = None

    @classmethod
    def applied(cls) -> "TransitionOutcome":
        """Create a successful outcome."""
        return cls(ok=True)

    @classmethod
    def refused(cls, current: DecisionStatus) -> "TransitionOutcome":
        """Create a refused outcome for a state that is already terminal."""
        return cls(ok=False, error=AlreadyDecidedError(current_state=current.value))


class DecisionState:
    """
    At-most-one decision tracker.

    Usage:
        state = DecisionState()
        state.record_deny("read-only")
        state.final()  # (False, "read-only")
    """

    def __init__(self) -> None:
        self._status = DecisionStatus.UNDECIDED
        self._message = ""

    @property
    def status(self) -> DecisionStatus:
        return self._status

    @property
    def message(self) -> str:
        return self._message

    @property
    def decided(self) -> bool:
        return self._status is not DecisionStatus.UNDECIDED

    def record_allow(self) -> TransitionOutcome:
        """Move to ALLOWED with an empty message."""
        if self.decided:
            return TransitionOutcome.refused(self._status)
        self._status = DecisionStatus.ALLOWED
        self._message = ""
        return TransitionOutcome.applied()

    def record_deny(self, message: str | None = None) -> TransitionOutcome:
        """Move to DENIED, keeping message (empty when omitted)."""
        if self.decided:
            return TransitionOutcome.refused(self._status)
        self._status = DecisionStatus.DENIED
        self._message = message or ""
        return TransitionOutcome.applied()

    def final(self) -> tuple[bool, str]:
        """
        Project the state onto (allowed, message).

        An undecided state is a denial: a script that never decides can
        never let a request through.
        """
        if self._status is DecisionStatus.ALLOWED:
            return True, self._message
        if self._status is DecisionStatus.DENIED:
            return False, self._message
        return False, IMPLICIT_DENY_MESSAGE

    def __repr__(self) -> str:
        return f"<DecisionState: {self._status.value} {self._message!r}>"
