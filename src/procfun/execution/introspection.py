from __future__ import annotations

import os
from typing import Protocol

import psutil


class ProcessIntrospector(Protocol):
    """OS capability the supervisor needs to signal a pid safely."""

    def start_time(self, pid: int) -> float | None:
        """Return the kernel-reported start time of `pid`, or None if there is no such process.

        Example:
            ```python
            started = introspector.start_time(4242)
            ```
        """
        ...

    def signal(self, pid: int, signum: int) -> None:
        """Send `signum` to `pid`; raises ProcessLookupError if it does not exist.

        Example:
            ```python
            introspector.signal(4242, signal.SIGKILL)
            ```
        """
        ...


class PsutilIntrospector:
    """Start times from psutil, signals through `os.kill`.

    A fresh `psutil.Process` is built on every query; the object caches its
    own create time, which would defeat revalidation.

    Example:
        ```python
        introspector = PsutilIntrospector()
        ```
    """

    def start_time(self, pid: int) -> float | None:
        """Read the process create time for `pid`.

        Example:
            ```python
            started = PsutilIntrospector().start_time(os.getpid())
            ```
        """
        try:
            return psutil.Process(pid).create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def signal(self, pid: int, signum: int) -> None:
        """Deliver a signal with `os.kill`.

        Example:
            ```python
            PsutilIntrospector().signal(4242, signal.SIGTERM)
            ```
        """
        os.kill(pid, signum)
