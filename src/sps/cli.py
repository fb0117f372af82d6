"""`sps` command: run snippets and list capabilities from the shell."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from safe_py_supervisor import (
    ConfigError,
    ExecutionResult,
    ExecutionSuccess,
    SupervisorConfig,
    configure_logging,
    run_code,
)
from safe_py_supervisor.execution.capabilities import (
    BASE_CAPABILITIES,
    FETCH_CAPABILITY_NAME,
    OPTIONAL_CAPABILITIES,
    OUTPUT_CAPABILITY_NAMES,
)

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m sps")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_usage()
        raise SystemExit(2)


def _parse_param(raw: str) -> tuple[str, Any]:
    """Parse one `NAME=JSON` parameter flag.

    Example:
        ```python
        _parse_param('rows=[1, 2, 3]')  # ("rows", [1, 2, 3])
        ```
    """
    name, sep, value = raw.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=JSON, got {raw!r}")
    try:
        return name, json.loads(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON for {name!r}: {exc}") from None


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser for running snippets under the supervisor.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m sps",
        description=(
            "safe-py-supervisor CLI\n"
            "Run a Python snippet in a supervised, capability-restricted worker."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m sps run snippet.py\n"
            "  python -m sps run snippet.py --param x=21 --param 'rows=[1,2,3]'\n"
            "  python -m sps run snippet.py --timeout-ms 2000 --allow chr --allow ord\n"
            "  python -m sps run snippet.py --fetch-proxy http://127.0.0.1:8080/proxy\n"
            "  python -m sps capabilities"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Emit supervisor lifecycle logs to stderr.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute one snippet file and print its result.",
        description=(
            "Execute a snippet in a fresh worker.\n"
            "The last expression (or `return`) becomes the JSON result."
        ),
        epilog=(
            "Examples:\n"
            "  python -m sps run job.py --param 'values=[1, 2, 3]'\n"
            "  python -m sps run - --json < job.py"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("file", help="Snippet file, or `-` to read stdin.")
    run_cmd.add_argument(
        "--param",
        action="append",
        default=[],
        type=_parse_param,
        metavar="NAME=JSON",
        help="Bind a keyword parameter (repeatable).",
    )
    run_cmd.add_argument("--config", help="Supervisor TOML config file.")
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Override max execution time in milliseconds.",
    )
    run_cmd.add_argument(
        "--allow",
        action="append",
        default=[],
        metavar="NAME",
        help="Enable an optional capability (repeatable).",
    )
    run_cmd.add_argument("--fetch-proxy", help="Proxy URL that backs the `fetch` capability.")
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the outcome as a JSON document instead of panels.",
    )

    sub.add_parser(
        "capabilities",
        help="List base and optional capability names.",
        description="Show every name the execution context can expose.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_config(args: argparse.Namespace) -> SupervisorConfig:
    """Create the supervisor configuration from CLI flags.

    Example:
        ```python
        config = build_config(build_parser().parse_args(["run", "job.py", "--timeout-ms", "500"]))
        ```
    """
    config = SupervisorConfig.from_file(args.config) if args.config else SupervisorConfig()
    overrides: dict[str, Any] = {}
    if args.timeout_ms is not None:
        overrides["max_execution_ms"] = args.timeout_ms
    if args.allow:
        overrides["extra_whitelist"] = config.extra_whitelist | frozenset(args.allow)
    if args.fetch_proxy:
        overrides["fetch_proxy_url"] = args.fetch_proxy
    return dataclasses.replace(config, **overrides) if overrides else config


def _read_code(path: str) -> str:
    """Read snippet source from a file or stdin.

    Example:
        ```python
        code = _read_code("job.py")
        ```
    """
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _outcome_payload(outcome: ExecutionResult) -> dict[str, Any]:
    """Convert an execution result into a JSON-friendly dict.

    Example:
        ```python
        payload = _outcome_payload(ExecutionSuccess("1"))
        ```
    """
    if isinstance(outcome, ExecutionSuccess):
        return {
            "ok": True,
            "result": json.loads(outcome.result_json),
            "logs": outcome.logs,
            "dropped_logs": outcome.dropped_logs,
        }
    return {
        "ok": False,
        "error": outcome.error.value,
        "message": outcome.message,
        "logs": outcome.logs,
    }


def _print_logs(logs: list[str]) -> None:
    """Render captured console entries in a rich table.

    Example:
        ```python
        _print_logs(["hello", "world"])
        ```
    """
    if not logs:
        return
    table = Table(title="Logs")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Entry")
    for index, entry in enumerate(logs, start=1):
        table.add_row(str(index), escape(entry))
    _CONSOLE.print(table)


def _print_outcome(outcome: ExecutionResult) -> None:
    """Render the result or failure panel followed by the logs.

    Example:
        ```python
        _print_outcome(ExecutionSuccess('{"a":1}', ["hi"]))
        ```
    """
    _print_logs(outcome.logs)
    if isinstance(outcome, ExecutionSuccess):
        value = json.loads(outcome.result_json)
        _CONSOLE.print(Panel.fit(Pretty(value), title="Result", border_style="green"))
        if outcome.dropped_logs:
            _CONSOLE.print(f"[yellow]{outcome.dropped_logs} log entries dropped by pacing[/yellow]")
        return
    _CONSOLE.print(
        Panel.fit(
            f"[bold red]{outcome.error.value}:[/bold red] {escape(outcome.message)}",
            title="Failure",
            border_style="red",
        )
    )


def _print_capabilities() -> None:
    """Render the capability table.

    Example:
        ```python
        _print_capabilities()
        ```
    """
    table = Table(title="Capabilities")
    table.add_column("Name", style="cyan")
    table.add_column("Availability", style="magenta")
    rows: list[tuple[str, str]] = []
    rows.extend((name, "base") for name in BASE_CAPABILITIES if not name.startswith("_"))
    rows.extend((name, "output") for name in OUTPUT_CAPABILITY_NAMES)
    rows.append((FETCH_CAPABILITY_NAME, "with --fetch-proxy"))
    rows.extend((name, "optional (--allow)") for name in OPTIONAL_CAPABILITIES)
    for name, availability in sorted(rows):
        table.add_row(name, availability)
    _CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `sps` CLI command handler.

    Example:
        ```python
        code = main(["run", "job.py", "--param", "x=2"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING, stream=sys.stderr)

    if args.command == "capabilities":
        _print_capabilities()
        return 0

    if args.command == "run":
        try:
            config = build_config(args)
            code = _read_code(args.file)
        except (ConfigError, OSError) as exc:
            _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(str(exc))}", border_style="red"))
            return 2
        outcome = asyncio.run(run_code(code, dict(args.param), config=config))
        if args.json:
            _CONSOLE.print_json(data=_outcome_payload(outcome))
        else:
            _print_outcome(outcome)
        return 0 if outcome.ok else 1

    parser.error("Unhandled command")
