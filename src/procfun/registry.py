from __future__ import annotations

import hashlib
import inspect
import logging
import threading
import traceback
import types
import typing
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from .codec import CallResponse, Failure, Success, coerce, decode_args, encode_args, from_wire, to_wire
from .errors import HANDLER_FAILURE, HANDLER_NOT_FOUND, DecodeError, EncodeError, ErrorPayload

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_ARG_SEP = "\x1e"


def canonical_type_name(hint: Any) -> str:
    """Return the canonical spelling of a type hint used in task ids.

    Example:
        ```python
        canonical_type_name(dict[str, int])  # "dict[str,int]"
        ```
    """
    if hint is inspect.Parameter.empty or hint is Any:
        return "Any"
    if hint is None or hint is type(None):
        return "None"
    origin = typing.get_origin(hint)
    if origin is Union or origin is types.UnionType:
        return "Union[" + ",".join(canonical_type_name(arg) for arg in typing.get_args(hint)) + "]"
    if origin is not None:
        args = typing.get_args(hint)
        inner = ",".join("..." if arg is Ellipsis else canonical_type_name(arg) for arg in args)
        return f"{canonical_type_name(origin)}[{inner}]"
    if isinstance(hint, type):
        if hint.__module__ == "builtins":
            return hint.__qualname__
        return f"{hint.__module__}.{hint.__qualname__}"
    if isinstance(hint, str):
        return hint.replace(" ", "")
    return repr(hint).replace(" ", "")


def derive_task_id(name: str, arg_types: typing.Sequence[str], return_type: str) -> str:
    """Derive the deterministic task id for a (name, argument types, return type) triple.

    The hashed material is `name US args US return`, with `US` = 0x1F and the
    argument type names joined by 0x1E, encoded as UTF-8.

    Example:
        ```python
        task_id = derive_task_id("add", ["int", "int"], "int")
        ```
    """
    material = _FIELD_SEP.join([name, _ARG_SEP.join(arg_types), return_type])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]


def _resolved_hints(func: Callable[..., Any]) -> dict[str, Any]:
    """Resolve annotations, keeping raw strings when a forward reference cannot be resolved.

    Example:
        ```python
        hints = _resolved_hints(add)
        ```
    """
    try:
        return typing.get_type_hints(func)
    except (NameError, TypeError):
        return dict(getattr(func, "__annotations__", {}))


@dataclass(frozen=True, slots=True)
class TaskHandler:
    """Immutable binding of one task id to the function that implements it.

    Example:
        ```python
        handler = TaskHandler.from_function(add)
        ```
    """

    task_id: str
    name: str
    func: Callable[..., Any]
    arg_types: tuple[str, ...]
    return_type: str
    module: str
    signature: inspect.Signature = field(repr=False, compare=False)
    hints: dict[str, Any] = field(repr=False, compare=False, default_factory=dict)

    @classmethod
    def from_function(cls, func: Callable[..., Any], *, name: str | None = None) -> "TaskHandler":
        """Build a handler from a function's name and annotations.

        Example:
            ```python
            handler = TaskHandler.from_function(add, name="math.add")
            ```
        """
        signature = inspect.signature(func)
        hints = _resolved_hints(func)
        task_name = name or func.__qualname__
        arg_types = tuple(
            _param_type_name(param, hints.get(param.name, param.annotation))
            for param in signature.parameters.values()
        )
        return_type = canonical_type_name(hints.get("return", signature.return_annotation))
        return cls(
            task_id=derive_task_id(task_name, arg_types, return_type),
            name=task_name,
            func=func,
            arg_types=arg_types,
            return_type=return_type,
            module=getattr(func, "__module__", None) or "__main__",
            signature=signature,
            hints=hints,
        )

    def encode_call(self, *args: Any, **kwargs: Any) -> str:
        """Check the arguments against the signature and encode them as a frame.

        Example:
            ```python
            frame = handler.encode_call(2, 3)
            ```
        """
        try:
            self.signature.bind(*args, **kwargs)
        except TypeError as exc:
            raise EncodeError(f"Bad arguments for task {self.name!r}: {exc}") from exc
        return encode_args(args, kwargs)

    def bind(self, frame: str) -> inspect.BoundArguments:
        """Decode a frame into arguments fitted to the task's signature.

        Example:
            ```python
            bound = handler.bind('{"args":[2,3],"kwargs":{}}')
            ```
        """
        args, kwargs = decode_args(frame)
        try:
            bound = self.signature.bind(*args, **kwargs)
        except TypeError as exc:
            raise DecodeError(f"Frame does not match task {self.name!r}: {exc}") from exc
        for key, value in list(bound.arguments.items()):
            param = self.signature.parameters[key]
            bound.arguments[key] = _coerce_param(param, value, self.hints.get(key, Any))
        return bound

    def run(self, bound: inspect.BoundArguments) -> Any:
        """Execute the task with already bound arguments.

        Example:
            ```python
            value = handler.run(handler.bind(frame))
            ```
        """
        return self.func(*bound.args, **bound.kwargs)

    def decode_result(self, wire: Any) -> Any:
        """Rebuild a typed return value from its wire form.

        Example:
            ```python
            value = handler.decode_result(5)
            ```
        """
        return coerce(from_wire(wire), self.hints.get("return", Any))

    def __call__(self, frame: str) -> Any:
        return self.run(self.bind(frame))


def _param_type_name(param: inspect.Parameter, hint: Any) -> str:
    name = canonical_type_name(hint)
    if param.kind is inspect.Parameter.VAR_POSITIONAL:
        return f"*{name}"
    if param.kind is inspect.Parameter.VAR_KEYWORD:
        return f"**{name}"
    return name


def _coerce_param(param: inspect.Parameter, value: Any, hint: Any) -> Any:
    if param.kind is inspect.Parameter.VAR_POSITIONAL:
        return tuple(coerce(item, hint) for item in value)
    if param.kind is inspect.Parameter.VAR_KEYWORD:
        return {key: coerce(item, hint) for key, item in value.items()}
    return coerce(value, hint)


class TaskRegistry:
    """Append-only table of task handlers, sealed once invocations start.

    Registration happens during process initialization. The first dispatch
    or launch seals the table; lookups after that are plain dict reads.

    Example:
        ```python
        registry = TaskRegistry()
        registry.register(TaskHandler.from_function(add))
        ```
    """

    def __init__(self) -> None:
        """Create an empty, unsealed registry.

        Example:
            ```python
            registry = TaskRegistry()
            ```
        """
        self._lock = threading.Lock()
        self._handlers: dict[str, TaskHandler] = {}
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def register(self, handler: TaskHandler) -> TaskHandler:
        """Add a handler; a duplicate id keeps the first registration.

        Returns the handler that ends up bound to the id.

        Example:
            ```python
            registry.register(TaskHandler.from_function(add))
            ```
        """
        with self._lock:
            if self._sealed:
                raise RuntimeError(
                    f"Cannot register task {handler.name!r}: registry is sealed after the first invocation"
                )
            existing = self._handlers.get(handler.task_id)
            if existing is not None:
                if existing.func is not handler.func:
                    logger.warning(
                        "Duplicate registration for task %s (%s); keeping %s.%s",
                        handler.name,
                        handler.task_id,
                        existing.module,
                        existing.func.__qualname__,
                    )
                else:
                    logger.debug("Task %s (%s) is already registered", handler.name, handler.task_id)
                return existing
            self._handlers[handler.task_id] = handler
            logger.debug("Registered task %s as %s", handler.name, handler.task_id)
            return handler

    def seal(self) -> None:
        """End the initialization phase.

        Example:
            ```python
            registry.seal()
            ```
        """
        with self._lock:
            self._sealed = True

    def lookup(self, task_id: str) -> TaskHandler | None:
        """Return the handler bound to `task_id`, or None.

        Example:
            ```python
            handler = registry.lookup(task_id)
            ```
        """
        return self._handlers.get(task_id)

    def find(self, name_or_id: str) -> TaskHandler | None:
        """Return a handler by task id, falling back to the first one with that name.

        Example:
            ```python
            handler = registry.find("add")
            ```
        """
        handler = self._handlers.get(name_or_id)
        if handler is not None:
            return handler
        for candidate in list(self._handlers.values()):
            if candidate.name == name_or_id:
                return candidate
        return None

    def handlers(self) -> list[TaskHandler]:
        """Return registered handlers in registration order.

        Example:
            ```python
            names = [h.name for h in registry.handlers()]
            ```
        """
        return list(self._handlers.values())

    def dispatch(self, task_id: str, frame: str) -> CallResponse:
        """Run the task bound to `task_id` and capture its outcome as a response.

        A missing handler and any fault raised by the task become a
        `Failure`; a malformed argument frame raises `DecodeError`.

        Example:
            ```python
            response = registry.dispatch(task_id, encode_args((2, 3)))
            ```
        """
        self.seal()
        handler = self.lookup(task_id)
        if handler is None:
            logger.warning("No task registered for id %s", task_id)
            return Failure(
                ErrorPayload(kind=HANDLER_NOT_FOUND, message=f"No task registered for id {task_id!r}")
            )
        bound = handler.bind(frame)
        try:
            return Success(result=to_wire(handler.run(bound)))
        except (Exception, SystemExit) as exc:
            logger.debug("Task %s failed", handler.name, exc_info=True)
            return Failure(
                ErrorPayload(
                    kind=HANDLER_FAILURE,
                    message=str(exc),
                    exc_type=type(exc).__qualname__,
                    traceback=traceback.format_exc(),
                )
            )

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._handlers


REGISTRY = TaskRegistry()


def register(handler: TaskHandler) -> TaskHandler:
    """Register a handler in the process-wide registry.

    Example:
        ```python
        register(TaskHandler.from_function(add))
        ```
    """
    return REGISTRY.register(handler)


def lookup(task_id: str) -> TaskHandler | None:
    """Look up a handler in the process-wide registry.

    Example:
        ```python
        handler = lookup(task_id)
        ```
    """
    return REGISTRY.lookup(task_id)
