from __future__ import annotations

import logging
import signal
import subprocess
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from ..codec import Failure, decode_response, from_wire
from ..errors import (
    ChildCrashed,
    DecodeError,
    LostChild,
    ProcfunError,
    ProtocolViolation,
    TimedOut,
    error_from_payload,
)
from .introspection import ProcessIntrospector
from .types import CallOutcome, ChildProcessRecord, HandleState

logger = logging.getLogger(__name__)

_FORCE_SIGNAL = int(getattr(signal, "SIGKILL", signal.SIGTERM))


class ProcessHandle:
    """Parent-side owner of one task process.

    The handle reaps its child on every path: normal completion, timeout,
    explicit kill, context-manager exit and garbage collection. Before any
    deferred signal the pid is revalidated against the start time captured
    at spawn, so a recycled pid is never signalled.

    Example:
        ```python
        with launcher.spawn(add, 2, 3) as handle:
            outcome = handle.wait_with_timeout(5)
        ```
    """

    def __init__(
        self,
        process: subprocess.Popen[str],
        record: ChildProcessRecord,
        *,
        introspector: ProcessIntrospector,
        kill_signal: int = _FORCE_SIGNAL,
        terminate_grace_seconds: float = 5.0,
        result_decoder: Callable[[Any], Any] | None = None,
    ) -> None:
        """Take ownership of a freshly spawned process.

        Example:
            ```python
            handle = ProcessHandle(process, record, introspector=PsutilIntrospector())
            ```
        """
        self._process = process
        self._record = record
        self._introspector = introspector
        self._kill_signal = kill_signal
        self._grace = terminate_grace_seconds
        self._decode_result = result_decoder or from_wire
        self._lock = threading.Lock()
        self._outcome: CallOutcome | None = None

    @property
    def pid(self) -> int:
        return self._record.pid

    @property
    def record(self) -> ChildProcessRecord:
        return self._record

    @property
    def state(self) -> HandleState:
        return self._outcome.state if self._outcome is not None else HandleState.RUNNING

    @property
    def outcome(self) -> CallOutcome | None:
        return self._outcome

    def wait(self) -> CallOutcome:
        """Block until the child exits and return its decoded outcome.

        Example:
            ```python
            outcome = handle.wait()
            ```
        """
        return self._wait(None)

    def wait_with_timeout(self, timeout: float) -> CallOutcome:
        """Wait at most `timeout` seconds, then stop the child.

        Example:
            ```python
            outcome = handle.wait_with_timeout(1.5)
            ```
        """
        if timeout < 0:
            raise ValueError("timeout must not be negative")
        return self._wait(timeout)

    def kill(self) -> CallOutcome:
        """Abort the child through the pid-revalidating signal path.

        Example:
            ```python
            outcome = handle.kill()
            ```
        """
        with self._exclusive():
            if self._outcome is not None:
                return self._outcome
            logger.info("Killing task process %s on request", self.pid)
            return self._terminate(HandleState.KILLED, None)

    def close(self) -> None:
        """Release the handle, collecting or stopping the child if still pending.

        Example:
            ```python
            handle.close()
            ```
        """
        with self._exclusive():
            if self._outcome is not None:
                return
            if self._process.poll() is not None:
                self._interpret(*self._drain())
                return
            logger.info("Stopping task process %s released before completion", self.pid)
            self._terminate(HandleState.KILLED, None)

    def __enter__(self) -> "ProcessHandle":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_outcome", True) is not None:
            return
        try:
            self.close()
        except Exception:
            logger.warning("Could not release task process %s", self._record.pid, exc_info=True)

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, task_id={self._record.task_id!r}, state={self.state.value})"

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise RuntimeError(f"A wait on task process {self.pid} is already in progress")
        try:
            yield
        finally:
            self._lock.release()

    def _wait(self, timeout: float | None) -> CallOutcome:
        with self._exclusive():
            if self._outcome is not None:
                return self._outcome
            try:
                stdout, stderr = self._process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.info("Task process %s missed its %ss deadline", self.pid, timeout)
                return self._terminate(HandleState.TIMED_OUT, TimedOut(float(timeout or 0), self.pid))
            return self._interpret(stdout, stderr)

    def _owns_pid(self) -> bool:
        """Check that the pid still names the process spawned for this handle.

        Example:
            ```python
            if handle._owns_pid(): ...
            ```
        """
        current = self._introspector.start_time(self.pid)
        if current is None or current != self._record.start_time:
            logger.warning(
                "Process id %s no longer refers to the task process (start time %s, recorded %s)",
                self.pid,
                current,
                self._record.start_time,
            )
            return False
        return True

    def _signal_if_owned(self, signum: int) -> bool:
        if not self._owns_pid():
            return False
        try:
            self._introspector.signal(self.pid, signum)
        except ProcessLookupError:
            logger.warning("Task process %s vanished before signal %s", self.pid, signum)
            return False
        logger.debug("Sent signal %s to task process %s", signum, self.pid)
        return True

    def _terminate(self, state: HandleState, error: ProcfunError | None) -> CallOutcome:
        """Signal and reap the child, or report it lost when the pid moved on.

        Example:
            ```python
            outcome = handle._terminate(HandleState.KILLED, None)
            ```
        """
        if not self._signal_if_owned(self._kill_signal):
            return self._lose()
        _, stderr = self._reap_after_signal()
        return self._settle(
            CallOutcome(state=state, error=error, exit_code=self._process.returncode, stderr=stderr)
        )

    def _reap_after_signal(self) -> tuple[str, str]:
        try:
            return self._process.communicate(timeout=self._grace)
        except subprocess.TimeoutExpired:
            pass
        # Either the signal was ignored or a descendant keeps the pipes open.
        if self._process.poll() is None:
            logger.warning("Task process %s outlived its grace period; forcing it down", self.pid)
            self._signal_if_owned(_FORCE_SIGNAL)
            self._process.wait()
        self._close_pipes()
        return "", ""

    def _drain(self) -> tuple[str, str]:
        try:
            return self._process.communicate(timeout=self._grace)
        except subprocess.TimeoutExpired:
            self._close_pipes()
            return "", ""

    def _lose(self) -> CallOutcome:
        # An unreaped child keeps its pid, so a non-blocking reap cannot touch another process.
        exit_code = self._process.poll()
        if exit_code is None:
            # Still running under a pid we can no longer vouch for; never wait on it.
            self._process.returncode = -1
        else:
            logger.debug("Reaped task process %s (exit %s) after losing track of it", self.pid, exit_code)
        self._close_pipes()
        return self._settle(
            CallOutcome(state=HandleState.ERRORED, error=LostChild(self.pid), exit_code=exit_code)
        )

    def _interpret(self, stdout: str | None, stderr: str | None) -> CallOutcome:
        """Turn the child's exit status and output into an outcome.

        Example:
            ```python
            outcome = handle._interpret('{"ok":true,"result":5}\\n', "")
            ```
        """
        exit_code = self._process.returncode
        stderr = stderr or ""
        frames = [line for line in (stdout or "").split("\n") if line.strip()]

        if not frames:
            if exit_code != 0:
                error: ProcfunError = ChildCrashed(exit_code, stderr)
            else:
                error = ProtocolViolation(
                    "Task process exited without writing a response frame", exit_code, stderr
                )
            return self._settle(
                CallOutcome(state=HandleState.ERRORED, error=error, exit_code=exit_code, stderr=stderr)
            )
        if len(frames) > 1:
            return self._settle(
                CallOutcome(
                    state=HandleState.ERRORED,
                    error=ProtocolViolation(
                        f"Expected one response frame, got {len(frames)}", exit_code, stderr
                    ),
                    exit_code=exit_code,
                    stderr=stderr,
                )
            )

        try:
            response = decode_response(frames[0].strip())
            if isinstance(response, Failure):
                return self._settle(
                    CallOutcome(
                        state=HandleState.COMPLETED,
                        error=error_from_payload(self._record.task_id, response.error),
                        exit_code=exit_code,
                        stderr=stderr,
                    )
                )
            value = self._decode_result(response.result)
        except DecodeError as exc:
            return self._settle(
                CallOutcome(
                    state=HandleState.ERRORED,
                    error=ProtocolViolation(f"Unreadable response frame: {exc}", exit_code, stderr),
                    exit_code=exit_code,
                    stderr=stderr,
                )
            )

        if exit_code != 0:
            logger.warning("Task process %s wrote a response but exited with code %s", self.pid, exit_code)
        return self._settle(
            CallOutcome(state=HandleState.COMPLETED, value=value, exit_code=exit_code, stderr=stderr)
        )

    def _settle(self, outcome: CallOutcome) -> CallOutcome:
        self._outcome = outcome
        self._close_pipes()
        logger.debug("Task process %s settled as %s", self.pid, outcome.state.value)
        return outcome

    def _close_pipes(self) -> None:
        for stream in (self._process.stdin, self._process.stdout, self._process.stderr):
            if stream is not None and not stream.closed:
                stream.close()
