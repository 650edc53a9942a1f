"""
CLI entry point for authzscript.

This module provides the Typer-based command-line interface for authzscript.

Commands:
    evaluate     Evaluate a request snapshot against a rule file
    run-config   Same as evaluate, with rule and settings from a YAML config
    check        Validate a rule file in the script sandbox
    bindings     List the functions available to policy scripts

Architecture Note:
    The CLI is intentionally thin - it loads files and delegates to the
    plugin and evaluator modules. Listening for host requests is left to
    the process embedding the plugin.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from authzscript import __version__
from authzscript.errors import AuthzScriptError
from authzscript.evaluator import compile_script
from authzscript.plugin import DEFAULT_FAILURE_MESSAGE, Plugin, load_request, load_rule
from authzscript.schema import AuthZRequest, AuthZResponse, load_config

# Initialize Typer app with metadata
app = typer.Typer(
    name="authzscript",
    help="Scriptable authorization decisions for container engine API requests.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

BINDINGS: list[tuple[str, str]] = [
    ("allow()", "Allow the request (at most one decision per request)"),
    ("deny(message=None)", "Deny the request with an optional message"),
    ("request_method()", "HTTP method, e.g. 'POST'"),
    ("request_uri()", "Raw request URI, unparsed"),
    ("request_uri_path()", "Percent-decoded path of the request URI"),
    ("request_uri_query()", "Query parameters as {key: [values...]}"),
    ("request_headers()", "Request headers as {name: value}"),
    ("request_body_json()", "Raw request body text"),
    ("request_body()", "Parsed JSON body, or None when empty"),
    ("user()", "Authenticated user name"),
    ("user_authn_method()", "Authentication method of the user"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]authzscript[/bold] version {__version__}")
        raise typer.Exit()


def configure_logging(level: str, quiet: bool = False) -> None:
    """
    Route log records through rich at the given level.

    quiet keeps JSON output machine-readable by only letting CRITICAL through.
    """
    logging.basicConfig(
        level="CRITICAL" if quiet else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    authzscript - policy scripts for container engine authorization.

    Every API request is checked by a short script that records a single
    allow or deny decision. Errors and undecided scripts deny.
    """
    pass


@app.command()
def evaluate(
    rule_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the policy script.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    request_path: Annotated[
        Path,
        typer.Option(
            "--request",
            "-r",
            help="Path to a request snapshot (JSON or YAML).",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            help="Logging level (DEBUG, INFO, WARNING, ERROR).",
        ),
    ] = "WARNING",
) -> None:
    """
    Evaluate a request snapshot against a policy script.

    Exits 0 when the request is allowed, 1 when it is denied or the script fails.

    Example:
        $ authzscript evaluate rule.py --request request.json
    """
    configure_logging("DEBUG" if debug else log_level, quiet=json_output and not debug)
    _evaluate(rule_path, request_path, DEFAULT_FAILURE_MESSAGE, json_output, debug)


@app.command("run-config")
def run_config(
    config_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the plugin configuration YAML file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    request_path: Annotated[
        Path,
        typer.Option(
            "--request",
            "-r",
            help="Path to a request snapshot (JSON or YAML).",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
) -> None:
    """
    Evaluate a request using the rule and settings from a config file.

    Example:
        $ authzscript run-config authz.yaml --request request.json
    """
    try:
        config = load_config(config_path)
    except Exception as e:
        _report_error("config_load_error", f"Error loading config: {e}", json_output, debug)
        raise typer.Exit(code=1)

    configure_logging("DEBUG" if debug else config.log_level, quiet=json_output and not debug)
    _evaluate(config.rule, request_path, config.failure_message, json_output, debug)


def _evaluate(
    rule_path: Path,
    request_path: Path,
    failure_message: str,
    json_output: bool,
    debug: bool,
) -> None:
    """Load inputs, run them through the plugin and exit with the decision."""
    try:
        plugin = Plugin(
            load_rule(rule_path),
            rule_name=str(rule_path),
            failure_message=failure_message,
        )
    except AuthzScriptError as e:
        _report_error("rule_load_error", f"Error loading rule: {e}", json_output, debug)
        raise typer.Exit(code=1)

    try:
        request = load_request(request_path)
    except AuthzScriptError as e:
        _report_error("request_load_error", f"Error loading request: {e}", json_output, debug)
        raise typer.Exit(code=1)

    response = plugin.authz_request(request)

    if json_output:
        print(json.dumps(response.to_wire(), indent=2))
    else:
        _display_response(request, response)

    raise typer.Exit(code=0 if response.allow else 1)


def _display_response(request: AuthZRequest, response: AuthZResponse) -> None:
    """Display a decision in a formatted way."""
    target = escape(f"{request.method} {request.uri}")
    if response.allow:
        console.print(f"[green]✓[/green] [bold]{target}[/bold]: [green]allowed[/green]")
    else:
        console.print(f"[red]✗[/red] [bold]{target}[/bold]: [red]denied[/red]")

    if response.err:
        console.print(f"  [dim]Message:[/dim] {escape(response.err)}")
    if request.user:
        console.print(f"  [dim]User:[/dim] {escape(request.user)}")


def _report_error(error_type: str, message: str, json_output: bool, include_traceback: bool) -> None:
    """Report an error as JSON or as console output."""
    if json_output:
        output = {
            "error": True,
            "error_type": error_type,
            "message": message,
        }
        if include_traceback:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2))
    else:
        console.print(f"[red]{escape(message)}[/red]")
        if include_traceback:
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")


@app.command()
def check(
    rule_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the policy script.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Check that a policy script compiles in the sandbox.

    Example:
        $ authzscript check rule.py
    """
    try:
        compile_script(load_rule(rule_path), name=str(rule_path))
    except AuthzScriptError as e:
        if json_output:
            print(json.dumps({"ok": False, "path": str(rule_path), **e.to_dict()}, indent=2))
        else:
            console.print(f"[red]✗[/red] {rule_path}")
            console.print(f"    [red]{escape(e.message)}[/red]")
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps({"ok": True, "path": str(rule_path)}, indent=2))
    else:
        console.print(f"[green]✓[/green] {rule_path}: [dim]valid policy script[/dim]")


@app.command()
def bindings(
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    List the functions a policy script can call.

    Example:
        $ authzscript bindings
    """
    if json_output:
        output = [{"signature": signature, "description": description} for signature, description in BINDINGS]
        print(json.dumps(output, indent=2))
        return

    table = Table(title="Policy Script Functions", show_header=True, header_style="bold")
    table.add_column("Function", style="cyan")
    table.add_column("Description")
    for signature, description in BINDINGS:
        table.add_row(signature, description)
    console.print(table)


if __name__ == "__main__":
    app()
