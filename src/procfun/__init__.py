from .child import DISPATCH_MARKER, bootstrap
from .codec import Failure, Success, decode_args, decode_response, encode_args, encode_response
from .config import RuntimeConfig, load_config
from .errors import (
    ChildCrashed,
    DecodeError,
    EncodeError,
    ErrorPayload,
    HandlerFailure,
    HandlerNotFound,
    LostChild,
    ProcfunError,
    ProtocolViolation,
    SpawnError,
    TimedOut,
)
from .execution import CallOutcome, HandleState, Launcher, ProcessHandle, PsutilIntrospector
from .registry import REGISTRY, TaskHandler, TaskRegistry, derive_task_id
from .runner import call
from .tasks import Task, task

__all__ = [
    "DISPATCH_MARKER",
    "REGISTRY",
    "CallOutcome",
    "ChildCrashed",
    "DecodeError",
    "EncodeError",
    "ErrorPayload",
    "Failure",
    "HandleState",
    "HandlerFailure",
    "HandlerNotFound",
    "Launcher",
    "LostChild",
    "ProcessHandle",
    "ProcfunError",
    "ProtocolViolation",
    "PsutilIntrospector",
    "RuntimeConfig",
    "SpawnError",
    "Success",
    "Task",
    "TaskHandler",
    "TaskRegistry",
    "TimedOut",
    "bootstrap",
    "call",
    "decode_args",
    "decode_response",
    "derive_task_id",
    "encode_args",
    "encode_response",
    "load_config",
    "task",
]
