from __future__ import annotations

import argparse
import importlib
import json
import logging
from functools import partial
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from procfun import REGISTRY, CallOutcome, Launcher, ProcfunError, TaskHandler, call

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)


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
        parser = _RichArgumentParser(prog="python -m pfr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for listing and calling procfun tasks.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m pfr",
        description=(
            "procfun CLI\n"
            "Import task modules, list their tasks, and call one in a child process."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m pfr --module myapp.tasks list\n"
            "  python -m pfr --module myapp.tasks call add 2 3\n"
            "  python -m pfr --module myapp.tasks call slow_report --timeout 10\n"
            "  python -m pfr --config procfun.toml --module myapp.tasks call greet '\"Ada\"'"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--module",
        action="append",
        default=[],
        metavar="MODULE",
        help=(
            "Import a module that registers tasks. Repeatable.\n"
            "Example: --module myapp.tasks"
        ),
    )
    parser.add_argument(
        "--config",
        help="Path to a procfun TOML config (default: $PROCFUN_CONFIG or bundled defaults).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug logging from the runtime.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "list",
        help="List registered tasks.",
        description=(
            "Show every task registered by the imported modules.\n"
            "Includes name, task id, signature, and defining module."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    call_cmd = sub.add_parser(
        "call",
        help="Call one task in a child process.",
        description=(
            "Run a task by name or id in a fresh child process.\n"
            "Each positional argument is parsed as JSON; bare words are taken as strings."
        ),
        epilog=(
            "Examples:\n"
            "  python -m pfr --module myapp.tasks call add 2 3\n"
            "  python -m pfr --module myapp.tasks call add 2 --kwarg b=3 --timeout 5"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    call_cmd.add_argument("task")
    call_cmd.add_argument("args", nargs="*", metavar="ARG")
    call_cmd.add_argument(
        "--kwarg",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Keyword argument; VALUE is parsed like positional arguments. Repeatable.",
    )
    call_cmd.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before the child is stopped (default: config default_timeout_seconds).",
    )

    return parser


def _configure_logging(verbose: bool) -> None:
    """Route runtime logging through Rich on stderr.

    Example:
        ```python
        _configure_logging(verbose=True)
        ```
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False)],
    )


def _parse_value(raw: str) -> Any:
    """Parse one CLI value as JSON, falling back to the raw string.

    Example:
        ```python
        _parse_value("3")  # 3
        ```
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_kwargs(items: Sequence[str]) -> dict[str, Any]:
    """Split KEY=VALUE pairs into keyword arguments.

    Example:
        ```python
        _parse_kwargs(["b=3"])  # {"b": 3}
        ```
    """
    out: dict[str, Any] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Keyword arguments must look like KEY=VALUE, got {item!r}")
        out[key] = _parse_value(value)
    return out


def build_launcher(args: argparse.Namespace) -> Launcher:
    """Create a Launcher from global CLI flags.

    Example:
        ```python
        launcher = build_launcher(args)
        ```
    """
    return Launcher(config_file=args.config)


def _print_tasks(handlers: Sequence[TaskHandler]) -> None:
    """Render registered tasks in a rich table.

    Example:
        ```python
        _print_tasks(REGISTRY.handlers())
        ```
    """
    table = Table(title="Registered Tasks")
    table.add_column("Name", style="cyan")
    table.add_column("Task ID", style="magenta")
    table.add_column("Signature")
    table.add_column("Module")
    for handler in handlers:
        signature = f"({', '.join(handler.arg_types)}) -> {handler.return_type}"
        table.add_row(escape(handler.name), handler.task_id, escape(signature), handler.module)
    _CONSOLE.print(table)


def _print_outcome(name: str, outcome: CallOutcome) -> None:
    """Render a call outcome as a panel.

    Example:
        ```python
        _print_outcome("add", outcome)
        ```
    """
    if outcome.ok:
        _CONSOLE.print(Panel.fit(Pretty(outcome.value), title=f"{name}: {outcome.state.value}", border_style="green"))
        return
    body = {
        "state": outcome.state.value,
        "error": type(outcome.error).__name__ if outcome.error is not None else None,
        "message": str(outcome.error) if outcome.error is not None else None,
        "exit_code": outcome.exit_code,
    }
    _CONSOLE.print(Panel.fit(Pretty(body), title=f"{name}: failed", border_style="red"))
    if outcome.stderr.strip():
        _ERR_CONSOLE.print(outcome.stderr.rstrip())


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `pfr` CLI command handler.

    Example:
        ```python
        code = main(["--module", "myapp.tasks", "list"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    for module in args.module:
        importlib.import_module(module)

    if args.command == "list":
        handlers = REGISTRY.handlers()
        if not handlers:
            _CONSOLE.print(Panel.fit("No tasks registered. Pass --module to import some.", style="bold yellow"))
            return 0
        _print_tasks(handlers)
        return 0
    if args.command == "call":
        handler = REGISTRY.find(args.task)
        if handler is None:
            _CONSOLE.print(Panel.fit(f"No task matched '{args.task}'", style="bold red"))
            return 1
        try:
            kwargs = _parse_kwargs(args.kwarg)
        except ValueError as exc:
            parser.error(str(exc))
        positional = [_parse_value(raw) for raw in args.args]
        try:
            outcome = call(
                handler,
                *positional,
                timeout=args.timeout,
                launcher=build_launcher(args),
                **kwargs,
            )
        except ProcfunError as exc:
            _CONSOLE.print(
                Panel.fit(f"[bold red]{type(exc).__name__}:[/bold red] {escape(str(exc))}", border_style="red")
            )
            return 1
        _print_outcome(handler.name, outcome)
        return 0 if outcome.ok else 1

    parser.error("Unhandled command")
    return 2
