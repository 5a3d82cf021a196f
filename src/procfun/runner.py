from __future__ import annotations

import threading
from typing import Any

from .execution.launcher import Launcher
from .execution.types import CallOutcome

_DEFAULT_LAUNCHER: Launcher | None = None
_DEFAULT_LAUNCHER_LOCK = threading.Lock()


def default_launcher() -> Launcher:
    """Return the process-wide launcher bound to the global registry.

    Example:
        ```python
        handle = default_launcher().spawn("add", 2, 3)
        ```
    """
    global _DEFAULT_LAUNCHER
    with _DEFAULT_LAUNCHER_LOCK:
        if _DEFAULT_LAUNCHER is None:
            _DEFAULT_LAUNCHER = Launcher()
        return _DEFAULT_LAUNCHER


def call(
    task: Any,
    *args: Any,
    timeout: float | None = None,
    launcher: Launcher | None = None,
    **kwargs: Any,
) -> CallOutcome:
    """Run one task in a child process and wait for it under a deadline.

    The handle is always released before returning, so the child is reaped
    whatever the outcome.

    Example:
        ```python
        from procfun import call
        outcome = call("add", 2, 3, timeout=5)
        ```
    """
    active = launcher if launcher is not None else default_launcher()
    limit = active.config.default_timeout_seconds if timeout is None else timeout
    with active.spawn(task, *args, **kwargs) as handle:
        return handle.wait_with_timeout(limit)
