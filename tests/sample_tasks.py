"""Tasks shared by the tests; child processes import this module to dispatch them."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Any

from procfun import task


@dataclass
class Point:
    x: int
    y: int


@task
def add(a: int, b: int) -> int:
    return a + b


@task
def add_points(p1: Point, p2: Point) -> Point:
    return Point(x=p1.x + p2.x, y=p1.y + p2.y)


@task
def echo(value: Any) -> Any:
    return value


@task
def sleepy(seconds: float) -> float:
    time.sleep(seconds)
    return seconds


@task
def explode(message: str) -> int:
    raise ValueError(message)


@task
def chatty(n: int) -> int:
    print("noise from print")
    os.write(1, b"noise from fd 1\n")
    return n


@task
def hard_exit(code: int) -> None:
    os._exit(code)


@task
def exit_early() -> None:
    sys.exit(3)


@task
def child_pid() -> int:
    return os.getpid()


@task
def unique(values: set[int]) -> frozenset[int]:
    return frozenset(values)


@task
def ignore_terminate(ready_path: str, seconds: float) -> None:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    with open(ready_path, "w", encoding="utf-8") as handle:
        handle.write("ready")
    time.sleep(seconds)


@task
def leave_grandchild(seconds: float) -> int:
    # The grandchild inherits the stderr pipe and keeps it open after this process exits.
    helper = subprocess.Popen([sys.executable, "-c", f"import time; time.sleep({seconds})"])
    return helper.pid
