from __future__ import annotations

import importlib
import logging
import os
import sys
from typing import Mapping, Sequence, TextIO

from .codec import encode_response
from .errors import DecodeError
from .registry import REGISTRY, TaskRegistry

DISPATCH_MARKER = "--procfun-dispatch"
IMPORTS_ENV_VAR = "PROCFUN_IMPORTS"
SYS_PATH_ENV_VAR = "PROCFUN_SYS_PATH"

EXIT_FRAME_WRITTEN = 0
EXIT_BAD_ARGUMENTS = 64
EXIT_DISPATCH_FAILED = 70

logger = logging.getLogger(__name__)


def is_dispatch_call(argv: Sequence[str]) -> bool:
    """Return True when `argv` asks this process to dispatch one task.

    Example:
        ```python
        is_dispatch_call(["prog", DISPATCH_MARKER, task_id, frame])  # True
        ```
    """
    return len(argv) > 1 and argv[1] == DISPATCH_MARKER


def _prepare_imports(environ: Mapping[str, str]) -> None:
    """
    Make the parent's task modules importable, then import them so their
    tasks register before dispatch.
    """
    inherited = [entry for entry in environ.get(SYS_PATH_ENV_VAR, "").split(os.pathsep) if entry]
    sys.path[:0] = [entry for entry in inherited if entry not in sys.path]
    for name in environ.get(IMPORTS_ENV_VAR, "").split(os.pathsep):
        if name:
            importlib.import_module(name)


def _claim_frame_channel() -> TextIO:
    # fd 1 belongs to the frame from here on; anything the task prints lands on stderr.
    sys.stdout.flush()
    frame_fd = os.dup(1)
    os.dup2(2, 1)
    return os.fdopen(frame_fd, "w", encoding="ascii", newline="\n")


def respond(task_id: str, frame: str, registry: TaskRegistry | None = None) -> str:
    """Dispatch one call and return the encoded response line.

    Example:
        ```python
        line = respond(add.task_id, encode_args((2, 3)))
        ```
    """
    table = registry if registry is not None else REGISTRY
    return encode_response(table.dispatch(task_id, frame))


def main(argv: Sequence[str] | None = None, registry: TaskRegistry | None = None) -> int:
    """Run the child side of one call and return the process exit code.

    Writes exactly one response line on the frame channel and returns 0, or
    returns 64 for a malformed call and 70 when dispatch fails before a
    response exists.

    Example:
        ```python
        raise SystemExit(main([sys.executable, DISPATCH_MARKER, task_id, frame]))
        ```
    """
    args = list(sys.argv if argv is None else argv)
    if len(args) != 4 or args[1] != DISPATCH_MARKER:
        program = args[0] if args else "procfun"
        sys.stderr.write(f"usage: {program} {DISPATCH_MARKER} TASK_ID FRAME\n")
        return EXIT_BAD_ARGUMENTS
    _, _, task_id, frame = args

    with _claim_frame_channel() as channel:
        try:
            _prepare_imports(os.environ)
            line = respond(task_id, frame, registry)
        except DecodeError as exc:
            logger.error("Malformed call for task %s: %s", task_id, exc)
            return EXIT_BAD_ARGUMENTS
        except Exception:
            logger.exception("Dispatch of task %s failed before a response was written", task_id)
            return EXIT_DISPATCH_FAILED
        channel.write(line + "\n")
        channel.flush()
    return EXIT_FRAME_WRITTEN


def bootstrap(argv: Sequence[str] | None = None) -> None:
    """Turn this process into a dispatcher when launched with the dispatch marker.

    Call it after every task is registered and before any other startup
    logic; it returns normally for ordinary launches.

    Example:
        ```python
        if __name__ == "__main__":
            procfun.bootstrap()
            main()
        ```
    """
    args = sys.argv if argv is None else argv
    if is_dispatch_call(args):
        raise SystemExit(main(args))
