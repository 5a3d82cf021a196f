from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from ..errors import ProcfunError


class HandleState(str, enum.Enum):
    """Lifecycle of a process handle. Every state but RUNNING is terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self is not HandleState.RUNNING


@dataclass(frozen=True, slots=True)
class ChildProcessRecord:
    """What the supervisor knows about the process it spawned.

    Example:
        ```python
        record = ChildProcessRecord(pid=4242, start_time=1718000000.25, argv=("python",), task_id="0f3a")
        ```
    """

    pid: int
    start_time: float
    argv: tuple[str, ...]
    task_id: str


@dataclass(slots=True)
class CallOutcome:
    """Typed result of one out-of-process call.

    Example:
        ```python
        outcome = CallOutcome(state=HandleState.COMPLETED, value=5, exit_code=0)
        ```
    """

    state: HandleState
    value: Any = None
    error: ProcfunError | None = None
    exit_code: int | None = None
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.state is HandleState.COMPLETED and self.error is None

    def unwrap(self) -> Any:
        """Return the task's value or raise the error that replaced it.

        Example:
            ```python
            value = handle.wait().unwrap()
            ```
        """
        if self.ok:
            return self.value
        if self.error is not None:
            raise self.error
        raise ProcfunError(f"Task process ended in state {self.state.value}")
