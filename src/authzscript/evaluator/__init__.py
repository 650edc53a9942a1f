"""
Evaluator module for authzscript.

This module implements the per-request policy decision engine: a policy
script runs once, in a restricted runtime, against a read-only request
snapshot and records at most one decision.

Key concepts:
    - DecisionState: undecided -> allowed | denied, exactly once
    - RequestContextBinder: the request exposed as query functions
    - ScriptEngine: one isolated execution per evaluation
    - EvaluationResult: (allowed, message, error), fail-closed on error
"""

from authzscript.evaluator.context import RequestContextBinder, parse_request_uri
from authzscript.evaluator.decision import DecisionState, TransitionOutcome
from authzscript.evaluator.engine import (
    EvaluationResult,
    ScriptEngine,
    evaluate,
    map_result,
)
from authzscript.evaluator.sandbox import PolicyScript, compile_script

__all__ = [
    "DecisionState",
    "EvaluationResult",
    "PolicyScript",
    "RequestContextBinder",
    "ScriptEngine",
    "TransitionOutcome",
    "compile_script",
    "evaluate",
    "map_result",
    "parse_request_uri",
]
