from __future__ import annotations

import base64
import binascii
import dataclasses
import inspect
import json
import types
import typing
from dataclasses import dataclass
from typing import Any, Union

from .errors import FAILURE_KINDS, DecodeError, EncodeError, ErrorPayload

_BYTES_TAG = "$bytes"
_TUPLE_TAG = "$tuple"
_DICT_TAG = "$dict"
_SET_TAG = "$set"


@dataclass(frozen=True, slots=True)
class Success:
    """Response carrying the wire form of a task's return value.

    Example:
        ```python
        resp = Success(result=5)
        ```
    """

    result: Any


@dataclass(frozen=True, slots=True)
class Failure:
    """Response carrying a task-level error payload.

    Example:
        ```python
        resp = Failure(ErrorPayload(kind="HandlerNotFound", message="missing"))
        ```
    """

    error: ErrorPayload


CallResponse = Union[Success, Failure]


def to_wire(value: Any) -> Any:
    """Convert a Python value into a JSON-ready tree.

    Bytes, tuples and sets are tagged so they survive the trip; dataclass
    instances become plain objects and are rebuilt by `coerce`.

    Example:
        ```python
        tree = to_wire((1, b"\\xff"))
        ```
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, tuple):
        return {_TUPLE_TAG: [to_wire(item) for item in value]}
    if isinstance(value, (set, frozenset)):
        return {_SET_TAG: [to_wire(item) for item in value]}
    if isinstance(value, list):
        return [to_wire(item) for item in value]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _wire_object({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    if isinstance(value, dict):
        return _wire_object(value)
    raise EncodeError(f"Cannot encode value of type {type(value).__qualname__}")


def _wire_object(mapping: dict[Any, Any]) -> dict[str, Any]:
    """Encode a mapping, escaping objects that would read as a tag.

    Example:
        ```python
        tree = _wire_object({"$ref": 1})
        ```
    """
    out: dict[str, Any] = {}
    for key, item in mapping.items():
        if not isinstance(key, str):
            raise EncodeError(f"Dict keys must be strings, got {type(key).__qualname__}")
        out[key] = to_wire(item)
    if len(out) == 1 and next(iter(out)).startswith("$"):
        return {_DICT_TAG: out}
    return out


def from_wire(tree: Any) -> Any:
    """Rebuild a Python value from a decoded JSON tree.

    Example:
        ```python
        value = from_wire({"$tuple": [1, 2]})
        ```
    """
    if isinstance(tree, list):
        return [from_wire(item) for item in tree]
    if not isinstance(tree, dict):
        return tree
    if len(tree) == 1:
        key, inner = next(iter(tree.items()))
        if key.startswith("$"):
            return _from_tag(key, inner)
    return {key: from_wire(item) for key, item in tree.items()}


def _from_tag(tag: str, inner: Any) -> Any:
    """Decode one tagged wire object.

    Example:
        ```python
        data = _from_tag("$bytes", "aGk=")
        ```
    """
    if tag == _BYTES_TAG:
        if not isinstance(inner, str):
            raise DecodeError("'$bytes' must hold a base64 string")
        try:
            return base64.b64decode(inner.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise DecodeError(f"Invalid base64 payload: {exc}") from exc
    if tag == _TUPLE_TAG:
        if not isinstance(inner, list):
            raise DecodeError("'$tuple' must hold a list")
        return tuple(from_wire(item) for item in inner)
    if tag == _SET_TAG:
        if not isinstance(inner, list):
            raise DecodeError("'$set' must hold a list")
        try:
            return {from_wire(item) for item in inner}
        except TypeError as exc:
            raise DecodeError(f"Unhashable '$set' member: {exc}") from exc
    if tag == _DICT_TAG:
        if not isinstance(inner, dict):
            raise DecodeError("'$dict' must hold an object")
        return {key: from_wire(item) for key, item in inner.items()}
    raise DecodeError(f"Unknown wire tag {tag!r}")


def _dumps(tree: Any) -> str:
    """Serialize a wire tree to one line of printable ASCII.

    Example:
        ```python
        line = _dumps({"ok": True, "result": "é"})
        ```
    """
    try:
        return json.dumps(tree, ensure_ascii=True, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise EncodeError(str(exc)) from exc


def _loads(frame: str) -> Any:
    """Parse one frame, mapping every parser failure to DecodeError.

    Example:
        ```python
        tree = _loads('{"args":[],"kwargs":{}}')
        ```
    """
    if not isinstance(frame, str):
        raise DecodeError(f"Frame must be str, got {type(frame).__qualname__}")
    try:
        return json.loads(frame)
    except (ValueError, RecursionError) as exc:
        raise DecodeError(f"Malformed frame: {exc}") from exc


def encode_args(args: tuple[Any, ...] | list[Any], kwargs: dict[str, Any] | None = None) -> str:
    """Encode call arguments into a frame safe for argv and for one output line.

    Example:
        ```python
        frame = encode_args((2, 3))
        ```
    """
    tree = {
        "args": [to_wire(item) for item in args],
        "kwargs": _wire_kwargs(kwargs or {}),
    }
    return _dumps(tree)


def _wire_kwargs(kwargs: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, item in kwargs.items():
        if not isinstance(key, str):
            raise EncodeError("Keyword argument names must be strings")
        out[key] = to_wire(item)
    return out


def decode_args(frame: str) -> tuple[list[Any], dict[str, Any]]:
    """Decode an argument frame into positional and keyword arguments.

    Example:
        ```python
        args, kwargs = decode_args('{"args":[2,3],"kwargs":{}}')
        ```
    """
    tree = _loads(frame)
    if not isinstance(tree, dict) or set(tree) != {"args", "kwargs"}:
        raise DecodeError("Argument frame must be an object with exactly 'args' and 'kwargs'")
    raw_args, raw_kwargs = tree["args"], tree["kwargs"]
    if not isinstance(raw_args, list):
        raise DecodeError("'args' must be a list")
    if not isinstance(raw_kwargs, dict):
        raise DecodeError("'kwargs' must be an object")
    args = [from_wire(item) for item in raw_args]
    kwargs = {key: from_wire(item) for key, item in raw_kwargs.items()}
    return args, kwargs


def encode_response(response: CallResponse) -> str:
    """Encode a call response as the single frame a child writes.

    Example:
        ```python
        line = encode_response(Success(result=5))
        ```
    """
    if isinstance(response, Success):
        return _dumps({"ok": True, "result": response.result})
    if isinstance(response, Failure):
        error = response.error
        return _dumps(
            {
                "ok": False,
                "error": {
                    "kind": error.kind,
                    "message": error.message,
                    "exc_type": error.exc_type,
                    "traceback": error.traceback,
                },
            }
        )
    raise EncodeError(f"Not a call response: {type(response).__qualname__}")


def decode_response(frame: str) -> CallResponse:
    """Decode the child's response frame.

    The result stays in wire form; callers rebuild it with `from_wire`
    and `coerce`.

    Example:
        ```python
        resp = decode_response('{"ok":true,"result":5}')
        ```
    """
    tree = _loads(frame)
    if not isinstance(tree, dict) or not isinstance(tree.get("ok"), bool):
        raise DecodeError("Response frame must be an object with a boolean 'ok'")
    if tree["ok"]:
        if set(tree) != {"ok", "result"}:
            raise DecodeError("Success frame must hold exactly 'ok' and 'result'")
        return Success(result=tree["result"])
    if set(tree) != {"ok", "error"} or not isinstance(tree["error"], dict):
        raise DecodeError("Failure frame must hold exactly 'ok' and an 'error' object")
    raw = tree["error"]
    kind, message = raw.get("kind"), raw.get("message")
    if kind not in FAILURE_KINDS or not isinstance(message, str):
        raise DecodeError(f"Unknown failure kind {kind!r} or missing message")
    exc_type, trace = raw.get("exc_type"), raw.get("traceback")
    for name, optional in (("exc_type", exc_type), ("traceback", trace)):
        if optional is not None and not isinstance(optional, str):
            raise DecodeError(f"'{name}' must be a string or null")
    return Failure(ErrorPayload(kind=kind, message=message, exc_type=exc_type, traceback=trace))


def coerce(value: Any, hint: Any) -> Any:
    """Fit a decoded value to a type hint, rebuilding dataclasses and containers.

    Hints it does not understand pass the value through unchanged.

    Example:
        ```python
        point = coerce({"x": 1, "y": 2}, Point)
        ```
    """
    if hint is Any or hint is object or hint is inspect.Parameter.empty:
        return value
    if hint is None or hint is type(None):
        if value is not None:
            raise DecodeError(f"Expected None, got {type(value).__qualname__}")
        return None

    origin = typing.get_origin(hint)
    hint_args = typing.get_args(hint)
    if origin is Union or origin is types.UnionType:
        return _coerce_union(value, hint_args)
    if origin is list:
        items = _expect_sequence(value, hint)
        return [coerce(item, hint_args[0]) for item in items] if hint_args else list(items)
    if origin is tuple:
        return _coerce_tuple(value, hint_args)
    if origin in (set, frozenset):
        items = _expect_sequence(value, hint)
        inner = [coerce(item, hint_args[0]) for item in items] if hint_args else items
        return origin(inner)
    if origin is dict:
        if not isinstance(value, dict):
            raise DecodeError(f"Expected an object for {hint}, got {type(value).__qualname__}")
        if not hint_args:
            return value
        return {key: coerce(item, hint_args[1]) for key, item in value.items()}
    if origin is not None or not isinstance(hint, type):
        return value
    if dataclasses.is_dataclass(hint):
        return _coerce_dataclass(value, hint)
    if isinstance(value, hint):
        return value
    if hint is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if hint in (tuple, list, set, frozenset) and isinstance(value, (list, tuple, set, frozenset)):
        return hint(value)
    raise DecodeError(f"Expected {hint.__qualname__}, got {type(value).__qualname__}")


def _expect_sequence(value: Any, hint: Any) -> list[Any] | tuple[Any, ...] | set[Any]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise DecodeError(f"Expected a sequence for {hint}, got {type(value).__qualname__}")
    return value


def _coerce_union(value: Any, options: tuple[Any, ...]) -> Any:
    if value is None and type(None) in options:
        return None
    for option in options:
        if option is type(None):
            continue
        try:
            return coerce(value, option)
        except DecodeError:
            continue
    raise DecodeError(f"Value of type {type(value).__qualname__} matches none of {options}")


def _coerce_tuple(value: Any, hint_args: tuple[Any, ...]) -> tuple[Any, ...]:
    items = _expect_sequence(value, tuple)
    if not hint_args:
        return tuple(items)
    if len(hint_args) == 2 and hint_args[1] is Ellipsis:
        return tuple(coerce(item, hint_args[0]) for item in items)
    if len(items) != len(hint_args):
        raise DecodeError(f"Expected a tuple of {len(hint_args)} items, got {len(items)}")
    return tuple(coerce(item, item_hint) for item, item_hint in zip(items, hint_args))


def _coerce_dataclass(value: Any, cls: type) -> Any:
    if isinstance(value, cls):
        return value
    if not isinstance(value, dict):
        raise DecodeError(f"Expected an object for {cls.__qualname__}, got {type(value).__qualname__}")
    hints = typing.get_type_hints(cls)
    init_fields = {f.name for f in dataclasses.fields(cls) if f.init}
    unknown = set(value) - init_fields
    if unknown:
        raise DecodeError(f"Unexpected fields for {cls.__qualname__}: {sorted(unknown)}")
    kwargs = {name: coerce(item, hints.get(name, Any)) for name, item in value.items()}
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise DecodeError(f"Cannot build {cls.__qualname__}: {exc}") from exc
