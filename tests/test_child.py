from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

import procfun
import sample_tasks
from procfun import DISPATCH_MARKER, Failure, Success, TaskHandler, TaskRegistry, bootstrap, encode_args
from procfun.child import EXIT_BAD_ARGUMENTS, is_dispatch_call, main, respond
from procfun.codec import decode_response


def multiply(a: int, b: int) -> int:
    return a * b


def _run_module(*args: str) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    src = str(Path(procfun.__file__).resolve().parents[1])
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [src, env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, "-m", "procfun", *args],
        capture_output=True,
        text=True,
        timeout=60,
        check=False,
        env=env,
    )


def test_dispatch_marker_detection() -> None:
    assert is_dispatch_call(["prog", DISPATCH_MARKER, "id", "{}"])
    assert not is_dispatch_call(["prog", "--verbose"])
    assert not is_dispatch_call(["prog"])


def test_bootstrap_is_a_no_op_for_ordinary_launches() -> None:
    bootstrap(["prog", "serve", "--port", "8000"])


def test_main_rejects_wrong_argument_shape(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["prog", DISPATCH_MARKER, "only-id"]) == EXIT_BAD_ARGUMENTS
    assert main(["prog", "--not-the-marker", "id", "{}"]) == EXIT_BAD_ARGUMENTS
    assert "usage:" in capsys.readouterr().err


def test_respond_encodes_one_line_for_hits_and_misses() -> None:
    registry = TaskRegistry()
    handler = registry.register(TaskHandler.from_function(multiply))

    hit = respond(handler.task_id, encode_args((6, 7)), registry)
    miss = respond("f" * 32, encode_args(()), registry)

    assert "\n" not in hit and "\n" not in miss
    assert decode_response(hit) == Success(result=42)
    missing = decode_response(miss)
    assert isinstance(missing, Failure)
    assert missing.error.kind == "HandlerNotFound"


def test_module_entry_point_writes_exactly_one_frame() -> None:
    completed = _run_module(DISPATCH_MARKER, "0" * 32, encode_args(()))

    assert completed.returncode == 0
    lines = completed.stdout.splitlines()
    assert len(lines) == 1
    response = decode_response(lines[0])
    assert isinstance(response, Failure)
    assert response.error.kind == "HandlerNotFound"


def test_module_entry_point_without_marker_is_a_usage_error() -> None:
    completed = _run_module()

    assert completed.returncode == EXIT_BAD_ARGUMENTS
    assert completed.stdout == ""
    assert "pfr" in completed.stderr


def test_launch_arguments_follow_the_dispatch_contract() -> None:
    with sample_tasks.add.spawn(1, 2) as handle:
        handle.wait_with_timeout(30)

    argv = handle.record.argv
    assert argv[-3:] == (DISPATCH_MARKER, sample_tasks.add.task_id, encode_args((1, 2)))
    assert argv[0] == sys.executable
