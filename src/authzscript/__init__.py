"""
authzscript - Scriptable authorization plugin for container engine APIs.

Every API request the engine forwards is checked by a short policy script.
The script inspects the request through read-only functions and records a
single decision:

    if request_method() == "GET" or user() == "admin":
        allow()
    else:
        deny("read-only access")

Guarantees:
- Deny-by-default (a script that never decides denies the request)
- Fail-closed (a script error denies the request)
- One decision per request, no state shared between requests

Example usage:
    $ authzscript check rule.py
    $ authzscript evaluate rule.py --request request.json
"""

from authzscript.evaluator import EvaluationResult, compile_script, evaluate
from authzscript.schema import AuthZRequest, AuthZResponse

__version__ = "0.1.0"
__author__ = "authzscript Contributors"

__all__ = [
    "__version__",
    "__author__",
    "AuthZRequest",
    "AuthZResponse",
    "EvaluationResult",
    "compile_script",
    "evaluate",
]
