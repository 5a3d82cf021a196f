from .introspection import ProcessIntrospector, PsutilIntrospector
from .launcher import Launcher
from .supervisor import ProcessHandle
from .types import CallOutcome, ChildProcessRecord, HandleState

__all__ = [
    "CallOutcome",
    "ChildProcessRecord",
    "HandleState",
    "Launcher",
    "ProcessHandle",
    "ProcessIntrospector",
    "PsutilIntrospector",
]
