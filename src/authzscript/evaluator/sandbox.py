"""
Restricted script runtime for policy scripts.

Policy scripts are written in a small subset of Python. Before a script is
compiled, its syntax tree is walked and any construct outside the allowed
set is rejected. The compiled code then runs against a globals dict that
contains only a handful of safe builtins plus the capability registry
(the functions the evaluation chose to expose).

What a script cannot do:
    - import modules, define functions, lambdas or classes
    - use while loops, try/except, with, del, global or nonlocal
    - touch any name starting with an underscore
    - access attributes other than common str/list/dict/set methods
    - use the power operator

Example:
    script = compile_script('if user() == "admin":\\n    allow()')
    run(script, build_environment({"user": ..., "allow": ...}))
"""

import ast
from dataclasses import dataclass
from types import CodeType, MappingProxyType
from typing import Any, Callable, Mapping

from authzscript.errors import ScriptValidationError

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    # statements
    ast.Module,
    ast.Expr,
    ast.Assign,
    ast.AugAssign,
    ast.If,
    ast.For,
    ast.Break,
    ast.Continue,
    ast.Assert,
    ast.Raise,
    ast.Pass,
    # expressions
    ast.BoolOp,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.keyword,
    ast.Name,
    ast.Attribute,
    ast.Constant,
    ast.Subscript,
    ast.Slice,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.Set,
    ast.JoinedStr,
    ast.FormattedValue,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
    ast.comprehension,
    # contexts and operators
    ast.Load,
    ast.Store,
    ast.boolop,
    ast.unaryop,
    ast.cmpop,
    ast.operator,
)

_BLOCKED_NODES: tuple[type[ast.AST], ...] = (ast.Pow,)

# str, list, dict and set methods a policy may call; any other attribute is rejected
ALLOWED_ATTRIBUTES = frozenset({
    # str
    "casefold",
    "count",
    "endswith",
    "find",
    "isalnum",
    "isalpha",
    "isdigit",
    "join",
    "lower",
    "lstrip",
    "partition",
    "replace",
    "rpartition",
    "rsplit",
    "rstrip",
    "split",
    "splitlines",
    "startswith",
    "strip",
    "upper",
    # list
    "append",
    "extend",
    "index",
    "insert",
    "pop",
    "remove",
    "reverse",
    "sort",
    # dict
    "clear",
    "get",
    "items",
    "keys",
    "setdefault",
    "update",
    "values",
    # set
    "add",
    "difference",
    "discard",
    "intersection",
    "issubset",
    "issuperset",
    "union",
})

SAFE_BUILTINS: Mapping[str, Any] = MappingProxyType({
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "enumerate": enumerate,
    "float": float,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "set": set,
    "sorted": sorted,
    "str": str,
    "tuple": tuple,
    "zip": zip,
    "Exception": Exception,
    "ValueError": ValueError,
})


@dataclass(frozen=True)
class PolicyScript:
    """
    A validated, compiled policy script.

    Holds no evaluation state, so one instance can back any number of
    evaluations.

    Attributes:
        source: The script text
        name: Filename used in tracebacks and error messages
        code: The compiled module code object
    """

    source: str
    name: str
    code: CodeType


def validate_tree(tree: ast.AST) -> None:
    """
    Reject any construct the sandbox does not allow.

    Raises:
        ScriptValidationError: On the first disallowed node found
    """
    for node in ast.walk(tree):
        lineno = getattr(node, "lineno", None)

        if isinstance(node, _BLOCKED_NODES) or not isinstance(node, _ALLOWED_NODES):
            raise ScriptValidationError(
                reason=f"{type(node).__name__} is not allowed",
                lineno=lineno,
            )

        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise ScriptValidationError(
                reason=f"name {node.id!r} is not allowed",
                lineno=lineno,
            )

        if isinstance(node, ast.Attribute):
            if node.attr not in ALLOWED_ATTRIBUTES:
                raise ScriptValidationError(
                    reason=f"attribute {node.attr!r} is not allowed",
                    lineno=lineno,
                )

        if isinstance(node, ast.keyword) and node.arg is None:
            raise ScriptValidationError(reason="**kwargs is not allowed", lineno=lineno)

        if isinstance(node, ast.comprehension) and node.is_async:
            raise ScriptValidationError(
                reason="async comprehension is not allowed",
                lineno=lineno,
            )


def compile_script(source: str, name: str = "<policy>") -> PolicyScript:
    """
    Parse, validate and compile a policy script.

    Args:
        source: The script text
        name: Filename shown in tracebacks

    Returns:
        The compiled PolicyScript

    Raises:
        ScriptValidationError: On syntax errors or disallowed constructs
    """
    try:
        tree = ast.parse(source, filename=name, mode="exec")
    except SyntaxError as e:
        raise ScriptValidationError(reason=e.msg, lineno=e.lineno) from e
    except ValueError as e:
        raise ScriptValidationError(reason=str(e)) from e

    validate_tree(tree)
    code = compile(tree, filename=name, mode="exec")
    return PolicyScript(source=source, name=name, code=code)


def build_environment(bindings: Mapping[str, Callable[..., Any]]) -> dict[str, Any]:
    """
    Create a fresh globals dict for one script execution.

    Args:
        bindings: The capability registry (script-visible name -> callable)

    Returns:
        Globals containing only the safe builtins and the bindings
    """
    environment: dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS)}
    environment.update(bindings)
    return environment


def run(script: PolicyScript, environment: dict[str, Any]) -> None:
    """Execute a compiled script once against the given globals."""
    exec(script.code, environment)
