from __future__ import annotations

from dataclasses import dataclass

HANDLER_NOT_FOUND = "HandlerNotFound"
HANDLER_FAILURE = "HandlerFailure"
FAILURE_KINDS = frozenset({HANDLER_NOT_FOUND, HANDLER_FAILURE})


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Task-level failure carried as data inside a response frame.

    Example:
        ```python
        payload = ErrorPayload(kind="HandlerFailure", message="boom", exc_type="ValueError")
        ```
    """

    kind: str
    message: str
    exc_type: str | None = None
    traceback: str | None = None


class ProcfunError(Exception):
    """Base class for every error raised or reported by procfun."""


class SpawnError(ProcfunError):
    """The operating system refused to create the child process."""


class EncodeError(ProcfunError):
    """A value could not be turned into a frame."""


class DecodeError(ProcfunError):
    """A frame was malformed or did not match the expected shape."""


class HandlerNotFound(ProcfunError):
    """The child had no handler registered for the requested task id."""

    def __init__(self, task_id: str, message: str | None = None) -> None:
        """Record the missing task id.

        Example:
            ```python
            err = HandlerNotFound("0f3a9c")
            ```
        """
        super().__init__(message or f"No task registered for id {task_id!r}")
        self.task_id = task_id


class HandlerFailure(ProcfunError):
    """The task itself raised inside the child process."""

    def __init__(self, payload: ErrorPayload) -> None:
        """Wrap the failure payload decoded from the response frame.

        Example:
            ```python
            err = HandlerFailure(ErrorPayload(kind="HandlerFailure", message="boom"))
            ```
        """
        prefix = f"{payload.exc_type}: " if payload.exc_type else ""
        super().__init__(f"{prefix}{payload.message}")
        self.payload = payload


class ChildCrashed(ProcfunError):
    """The child exited non-zero without writing a response frame."""

    def __init__(self, exit_code: int | None, stderr: str = "") -> None:
        """Keep the exit status and captured diagnostics.

        Example:
            ```python
            err = ChildCrashed(70, "Traceback ...")
            ```
        """
        super().__init__(f"Task process exited with code {exit_code} before writing a response")
        self.exit_code = exit_code
        self.stderr = stderr


class ProtocolViolation(ProcfunError):
    """The child's standard output did not hold exactly one valid frame."""

    def __init__(self, detail: str, exit_code: int | None = None, stderr: str = "") -> None:
        """Keep what was wrong with the output plus exit diagnostics.

        Example:
            ```python
            err = ProtocolViolation("expected one frame, got 2", exit_code=0)
            ```
        """
        super().__init__(detail)
        self.detail = detail
        self.exit_code = exit_code
        self.stderr = stderr


class TimedOut(ProcfunError):
    """The deadline passed; the child was signalled and reaped."""

    def __init__(self, timeout: float, pid: int) -> None:
        """Record the deadline and the process that missed it.

        Example:
            ```python
            err = TimedOut(1.0, 4242)
            ```
        """
        super().__init__(f"Task process {pid} timed out after {timeout}s")
        self.timeout = timeout
        self.pid = pid


class LostChild(ProcfunError):
    """The recorded pid no longer refers to the spawned child, so it was not signalled."""

    def __init__(self, pid: int, message: str | None = None) -> None:
        """Record the pid that failed revalidation.

        Example:
            ```python
            err = LostChild(4242)
            ```
        """
        super().__init__(message or f"Process id {pid} no longer refers to the spawned task process")
        self.pid = pid


def error_from_payload(task_id: str, payload: ErrorPayload) -> ProcfunError:
    """Turn a decoded failure payload back into its exception type.

    Example:
        ```python
        err = error_from_payload("0f3a9c", ErrorPayload(kind="HandlerNotFound", message="missing"))
        ```
    """
    if payload.kind == HANDLER_NOT_FOUND:
        return HandlerNotFound(task_id, payload.message)
    return HandlerFailure(payload)
