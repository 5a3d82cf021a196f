from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

from ..child import DISPATCH_MARKER, IMPORTS_ENV_VAR, SYS_PATH_ENV_VAR
from ..config import RuntimeConfig, load_config
from ..errors import EncodeError, SpawnError
from ..registry import REGISTRY, TaskHandler, TaskRegistry
from .introspection import ProcessIntrospector, PsutilIntrospector
from .supervisor import ProcessHandle
from .types import ChildProcessRecord

logger = logging.getLogger(__name__)


def _package_root() -> Path:
    """Return the directory that holds the `procfun` package.

    Example:
        ```python
        root = _package_root()
        ```
    """
    return Path(__file__).resolve().parents[2]


def _main_command() -> list[str]:
    """Return the interpreter arguments that re-run the current `__main__`.

    Example:
        ```python
        args = _main_command()  # ["-m", "myapp"] or ["/srv/app/run.py"]
        ```
    """
    main = sys.modules.get("__main__")
    spec = getattr(main, "__spec__", None)
    if spec is not None and spec.name:
        name = spec.name.removesuffix(".__main__")
        return ["-m", name]
    path = getattr(main, "__file__", None)
    if path:
        return [os.path.abspath(path)]
    raise SpawnError("Tasks defined in an interactive session cannot run in a child process")


def _parent_sys_path() -> list[str]:
    return [os.getcwd() if entry == "" else entry for entry in sys.path if isinstance(entry, str)]


class Launcher:
    """Spawn task processes and hand back supervising handles.

    By default the child is `python -m procfun`; tasks defined in `__main__`
    re-run the host program instead, which must call `procfun.bootstrap()`.

    Example:
        ```python
        launcher = Launcher(config=RuntimeConfig(default_timeout_seconds=5))
        handle = launcher.spawn(add, 2, 3)
        ```
    """

    def __init__(
        self,
        *,
        registry: TaskRegistry | None = None,
        config: RuntimeConfig | None = None,
        config_file: str | None = None,
        command: Sequence[str] | None = None,
        introspector: ProcessIntrospector | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Configure how children are started.

        Example:
            ```python
            launcher = Launcher(command=[sys.executable, "/srv/app/run.py"])
            ```
        """
        if command is not None and not command:
            raise ValueError("Launcher 'command' must not be empty")
        self._registry = registry if registry is not None else REGISTRY
        self._config = load_config(config, config_file)
        self._command = list(command) if command is not None else None
        self._introspector = introspector if introspector is not None else PsutilIntrospector()
        self._env = dict(env) if env is not None else None

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    def launch(self, task_id: str, frame: str) -> ProcessHandle:
        """Start a child that dispatches `task_id` with an encoded argument frame.

        Example:
            ```python
            handle = launcher.launch(add.task_id, encode_args((2, 3)))
            ```
        """
        size = len(frame.encode("utf-8"))
        if size > self._config.max_frame_bytes:
            raise EncodeError(
                f"Argument frame is {size} bytes; the limit is {self._config.max_frame_bytes}"
            )
        self._registry.seal()
        handler = self._registry.lookup(task_id)
        argv = [*self._command_for(handler), DISPATCH_MARKER, task_id, frame]
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=self._child_env(handler),
                close_fds=True,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(f"Could not start task process for {task_id}: {exc}") from exc

        start_time = self._introspector.start_time(process.pid)
        if start_time is None:
            if process.poll() is None:
                process.kill()
            process.wait()
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            raise SpawnError(f"Could not read the start time of task process {process.pid}")

        logger.debug(
            "Spawned task process %s for %s",
            process.pid,
            handler.name if handler is not None else task_id,
        )
        return ProcessHandle(
            process,
            ChildProcessRecord(
                pid=process.pid,
                start_time=start_time,
                argv=tuple(argv),
                task_id=task_id,
            ),
            introspector=self._introspector,
            kill_signal=self._config.signal_number(),
            terminate_grace_seconds=self._config.terminate_grace_seconds,
            result_decoder=handler.decode_result if handler is not None else None,
        )

    def spawn(self, task: Any, *args: Any, **kwargs: Any) -> ProcessHandle:
        """Encode a call to `task` and launch it.

        `task` may be a `Task`, a `TaskHandler`, a task id or a task name.

        Example:
            ```python
            handle = launcher.spawn("add", 2, 3)
            ```
        """
        handler = self._resolve(task)
        return self.launch(handler.task_id, handler.encode_call(*args, **kwargs))

    def _resolve(self, task: Any) -> TaskHandler:
        if isinstance(task, TaskHandler):
            return task
        handler = getattr(task, "handler", None)
        if isinstance(handler, TaskHandler):
            return handler
        if isinstance(task, str):
            found = self._registry.find(task)
            if found is not None:
                return found
        raise ValueError(f"Unknown task {task!r}")

    def _command_for(self, handler: TaskHandler | None) -> list[str]:
        if self._command is not None:
            return list(self._command)
        python = self._config.executable()
        if handler is not None and handler.module == "__main__":
            return [python, *_main_command()]
        return [python, "-m", "procfun"]

    def _child_env(self, handler: TaskHandler | None) -> dict[str, str]:
        """Build the child environment: import hints and the parent's module search path.

        Example:
            ```python
            env = launcher._child_env(add.handler)
            ```
        """
        env = dict(os.environ if self._env is None else self._env)
        modules = list(self._config.preload_modules)
        if handler is not None and handler.module != "__main__" and handler.module not in modules:
            modules.append(handler.module)
        env[IMPORTS_ENV_VAR] = os.pathsep.join(modules)
        env[SYS_PATH_ENV_VAR] = os.pathsep.join(_parent_sys_path())
        python_path = [str(_package_root())]
        if env.get("PYTHONPATH"):
            python_path.append(env["PYTHONPATH"])
        env["PYTHONPATH"] = os.pathsep.join(python_path)
        return env
