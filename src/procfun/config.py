from __future__ import annotations

import os
import signal
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_ENV_VAR = "PROCFUN_CONFIG"


def _default_config_path() -> Path:
    """Return bundled default config TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read a config TOML and return its runtime table.

    Example:
        ```python
        raw = _read_config_toml(Path("/tmp/procfun.toml"))
        ```
    """
    if not path.exists():
        return {
            "default_timeout_seconds": 30,
            "kill_signal": "SIGKILL",
            "terminate_grace_seconds": 5,
            "max_frame_bytes": 131000,
            "preload_modules": [],
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    runtime = raw.get("runtime", raw)
    if not isinstance(runtime, dict):
        raise ValueError("Runtime config must be a TOML table")
    return runtime


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings config field.

    Example:
        ```python
        modules = _list_of_str(["myapp.tasks"], "preload_modules")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


_DEFAULT_CONFIG_RAW = _read_config_toml(_default_config_path())
DEFAULT_TIMEOUT_SECONDS = float(_DEFAULT_CONFIG_RAW.get("default_timeout_seconds", 30))
DEFAULT_KILL_SIGNAL = str(_DEFAULT_CONFIG_RAW.get("kill_signal", "SIGKILL"))
DEFAULT_TERMINATE_GRACE_SECONDS = float(_DEFAULT_CONFIG_RAW.get("terminate_grace_seconds", 5))
DEFAULT_MAX_FRAME_BYTES = int(_DEFAULT_CONFIG_RAW.get("max_frame_bytes", 131000))
DEFAULT_PRELOAD_MODULES = _list_of_str(
    _DEFAULT_CONFIG_RAW.get("preload_modules", []), "preload_modules"
)


@dataclass(slots=True)
class RuntimeConfig:
    """Settings shared by launchers and process handles.

    Example:
        ```python
        config = RuntimeConfig(default_timeout_seconds=5, kill_signal="SIGTERM")
        ```
    """

    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    kill_signal: str = DEFAULT_KILL_SIGNAL
    terminate_grace_seconds: float = DEFAULT_TERMINATE_GRACE_SECONDS
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES
    preload_modules: list[str] = field(default_factory=lambda: DEFAULT_PRELOAD_MODULES.copy())
    python_executable: str | None = None
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric limits and the signal name.

        Example:
            ```python
            RuntimeConfig(default_timeout_seconds=1)
            ```
        """
        if self.default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be positive")
        if self.terminate_grace_seconds < 0:
            raise ValueError("terminate_grace_seconds must not be negative")
        if self.max_frame_bytes <= 0:
            raise ValueError("max_frame_bytes must be positive")
        known = isinstance(getattr(signal, self.kill_signal, None), signal.Signals)
        if os.name == "posix" and not known:
            raise ValueError(f"Unknown kill_signal {self.kill_signal!r}")

    @classmethod
    def from_file(cls, config_path: str) -> "RuntimeConfig":
        """Create a config instance from a TOML file.

        Example:
            ```python
            config = RuntimeConfig.from_file("/tmp/procfun.toml")
            ```
        """
        raw = _read_config_toml(Path(config_path))
        executable = raw.get("python_executable")
        if executable is not None and not isinstance(executable, str):
            raise ValueError("'python_executable' must be a string")
        return cls(
            default_timeout_seconds=float(raw.get("default_timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            kill_signal=str(raw.get("kill_signal", DEFAULT_KILL_SIGNAL)),
            terminate_grace_seconds=float(
                raw.get("terminate_grace_seconds", DEFAULT_TERMINATE_GRACE_SECONDS)
            ),
            max_frame_bytes=int(raw.get("max_frame_bytes", DEFAULT_MAX_FRAME_BYTES)),
            preload_modules=_list_of_str(raw.get("preload_modules", []), "preload_modules"),
            python_executable=executable,
            config_path=config_path,
        )

    def signal_number(self) -> int:
        """Resolve `kill_signal` to a signal number for this platform.

        Platforms without the named signal fall back to SIGTERM.

        Example:
            ```python
            signum = RuntimeConfig().signal_number()
            ```
        """
        return int(getattr(signal, self.kill_signal, signal.SIGTERM))

    def executable(self) -> str:
        """Return the interpreter used for child processes.

        Example:
            ```python
            python = RuntimeConfig().executable()
            ```
        """
        return self.python_executable or sys.executable


def load_config(config: RuntimeConfig | None = None, config_file: str | None = None) -> RuntimeConfig:
    """Resolve the effective runtime config.

    Example:
        ```python
        config = load_config(config_file="/tmp/procfun.toml")
        ```
    """
    if config is not None and config_file is not None:
        raise ValueError("Provide either 'config' or 'config_file', not both")
    if config is not None:
        return config
    if config_file is None:
        config_file = os.environ.get(CONFIG_ENV_VAR) or None
    if config_file is not None:
        return RuntimeConfig.from_file(config_file)
    return RuntimeConfig()
