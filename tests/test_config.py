from __future__ import annotations

import signal
import sys
from pathlib import Path

import pytest

import sample_tasks
from procfun import EncodeError, Launcher, RuntimeConfig, load_config
from procfun.config import CONFIG_ENV_VAR


def _write(tmp_path: Path, body: str) -> str:
    path = tmp_path / "procfun.toml"
    path.write_text(body, encoding="utf-8")
    return str(path)


def test_defaults_come_from_bundled_toml(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    config = load_config()

    assert config.default_timeout_seconds == 30
    assert config.kill_signal == "SIGKILL"
    assert config.terminate_grace_seconds == 5
    assert config.max_frame_bytes == 131000
    assert config.preload_modules == []
    assert config.executable() == sys.executable


def test_from_file_reads_runtime_table(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[runtime]
default_timeout_seconds = 2.5
kill_signal = "SIGTERM"
terminate_grace_seconds = 0.5
max_frame_bytes = 4096
preload_modules = ["myapp.tasks"]
python_executable = "/opt/python/bin/python3"
""",
    )

    config = RuntimeConfig.from_file(path)

    assert config.default_timeout_seconds == 2.5
    assert config.signal_number() == signal.SIGTERM
    assert config.terminate_grace_seconds == 0.5
    assert config.max_frame_bytes == 4096
    assert config.preload_modules == ["myapp.tasks"]
    assert config.executable() == "/opt/python/bin/python3"
    assert config.config_path == path


def test_partial_file_keeps_defaults(tmp_path: Path) -> None:
    config = RuntimeConfig.from_file(_write(tmp_path, "[runtime]\ndefault_timeout_seconds = 7\n"))

    assert config.default_timeout_seconds == 7
    assert config.kill_signal == "SIGKILL"


def test_environment_variable_selects_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, "[runtime]\ndefault_timeout_seconds = 11\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, path)

    assert load_config().default_timeout_seconds == 11
    assert Launcher().config.default_timeout_seconds == 11


def test_config_and_config_file_are_mutually_exclusive(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not both"):
        load_config(RuntimeConfig(), _write(tmp_path, ""))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"default_timeout_seconds": 0},
        {"terminate_grace_seconds": -1},
        {"max_frame_bytes": 0},
    ],
)
def test_invalid_limits_are_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        RuntimeConfig(**kwargs)


@pytest.mark.skipif(sys.platform == "win32", reason="signal names are POSIX")
def test_unknown_signal_is_rejected() -> None:
    with pytest.raises(ValueError, match="kill_signal"):
        RuntimeConfig(kill_signal="SIGNOPE")


def test_bad_preload_modules_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="preload_modules"):
        RuntimeConfig.from_file(_write(tmp_path, "[runtime]\npreload_modules = [1]\n"))


def test_oversized_frame_is_refused_before_spawn() -> None:
    launcher = Launcher(config=RuntimeConfig(max_frame_bytes=64))

    with pytest.raises(EncodeError, match="limit"):
        launcher.spawn(sample_tasks.echo, "x" * 200)
