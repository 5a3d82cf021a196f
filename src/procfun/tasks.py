from __future__ import annotations

import functools
from typing import Any, Callable, overload

from .execution.launcher import Launcher
from .execution.supervisor import ProcessHandle
from .execution.types import CallOutcome
from .registry import REGISTRY, TaskHandler, TaskRegistry
from .runner import call, default_launcher


class Task:
    """Caller-facing stub for a registered task.

    Calling it runs the function in-process; `spawn` and `call` run it in a
    child process.

    Example:
        ```python
        @task
        def add(a: int, b: int) -> int:
            return a + b

        add(2, 3)                      # 5, in-process
        add.call(2, 3, timeout=5).value  # 5, in a child process
        ```
    """

    def __init__(
        self,
        handler: TaskHandler,
        *,
        registry: TaskRegistry | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        """Wrap a registered handler.

        Example:
            ```python
            stub = Task(TaskHandler.from_function(add))
            ```
        """
        self.handler = handler
        self._registry = registry if registry is not None else REGISTRY
        self._launcher = launcher
        functools.update_wrapper(self, handler.func)

    @property
    def task_id(self) -> str:
        return self.handler.task_id

    @property
    def name(self) -> str:
        return self.handler.name

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.handler.func(*args, **kwargs)

    def __repr__(self) -> str:
        return f"Task(name={self.name!r}, task_id={self.task_id!r})"

    def launcher(self) -> Launcher:
        """Return the launcher used by `spawn` and `call`.

        Example:
            ```python
            add.launcher().config.default_timeout_seconds
            ```
        """
        if self._launcher is None:
            if self._registry is REGISTRY:
                self._launcher = default_launcher()
            else:
                self._launcher = Launcher(registry=self._registry)
        return self._launcher

    def spawn(self, *args: Any, **kwargs: Any) -> ProcessHandle:
        """Start the task in a child process without waiting.

        Example:
            ```python
            with add.spawn(2, 3) as handle:
                outcome = handle.wait()
            ```
        """
        return self.launcher().spawn(self.handler, *args, **kwargs)

    def call(self, *args: Any, timeout: float | None = None, **kwargs: Any) -> CallOutcome:
        """Run the task in a child process and wait under a deadline.

        Example:
            ```python
            outcome = add.call(2, 3, timeout=5)
            ```
        """
        return call(self.handler, *args, timeout=timeout, launcher=self.launcher(), **kwargs)


@overload
def task(func: Callable[..., Any]) -> Task: ...


@overload
def task(
    func: None = None,
    *,
    name: str | None = None,
    registry: TaskRegistry | None = None,
    launcher: Launcher | None = None,
) -> Callable[[Callable[..., Any]], Task]: ...


def task(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    registry: TaskRegistry | None = None,
    launcher: Launcher | None = None,
) -> Task | Callable[[Callable[..., Any]], Task]:
    """Register a function as a task and return its stub.

    The task id comes from the task name (default: the function's
    qualified name) and its annotated signature.

    Example:
        ```python
        @task(name="math.add")
        def add(a: int, b: int) -> int:
            return a + b
        ```
    """

    def decorate(fn: Callable[..., Any]) -> Task:
        target = registry if registry is not None else REGISTRY
        handler = target.register(TaskHandler.from_function(fn, name=name))
        return Task(handler, registry=target, launcher=launcher)

    if func is None:
        return decorate
    return decorate(func)
