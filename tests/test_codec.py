from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pytest

from procfun import DecodeError, EncodeError, ErrorPayload, Failure, Success
from procfun.codec import (
    coerce,
    decode_args,
    decode_response,
    encode_args,
    encode_response,
    from_wire,
    to_wire,
)


@dataclass
class Span:
    start: int
    end: int


@dataclass
class Labelled:
    label: str
    spans: list[Span]
    note: Optional[str] = None


AWKWARD_VALUES = [
    "two words",
    'say "hi" and \'bye\'',
    "line one\nline two\r\n",
    "héllo wörld 日本語 🚀",
    b"\x00\xff\xfe raw bytes",
    "back\\slash and $dollar",
    {"$bytes": "not really bytes"},
    (1, (2, "three")),
    {3, 1, 2},
    frozenset({"a", b"b"}),
]


@pytest.mark.parametrize("value", AWKWARD_VALUES)
def test_args_round_trip(value: object) -> None:
    frame = encode_args((value, 1), {"key": value})
    args, kwargs = decode_args(frame)

    assert args == [value, 1]
    assert kwargs == {"key": value}


def test_frame_is_single_line_ascii() -> None:
    frame = encode_args(("a\nb", "ünï cödé", b"\n\n"))

    assert "\n" not in frame
    assert "\r" not in frame
    assert frame.isascii()
    assert all(ch.isprintable() for ch in frame)


def test_dataclass_encodes_as_object_and_is_rebuilt_by_coerce() -> None:
    value = Labelled(label="x", spans=[Span(0, 1), Span(2, 5)])
    wire = to_wire(value)

    assert wire == {"label": "x", "spans": [{"start": 0, "end": 1}, {"start": 2, "end": 5}], "note": None}
    assert coerce(from_wire(wire), Labelled) == value


def test_unencodable_values_raise() -> None:
    with pytest.raises(EncodeError):
        encode_args((object(),))
    with pytest.raises(EncodeError, match="keys must be strings"):
        encode_args(({1: "a"},))


@pytest.mark.parametrize(
    "frame",
    [
        "",
        "not json",
        "[]",
        '{"args": []}',
        '{"args": {}, "kwargs": {}}',
        '{"args": [], "kwargs": [], "extra": 1}',
        '{"args": [{"$bytes": "%%%"}], "kwargs": {}}',
        '{"args": [{"$nope": 1}], "kwargs": {}}',
        '{"args": [{"$set": 1}], "kwargs": {}}',
        '{"args": [{"$set": [[1]]}], "kwargs": {}}',
    ],
)
def test_decode_args_rejects_malformed_frames(frame: str) -> None:
    with pytest.raises(DecodeError):
        decode_args(frame)


def test_response_round_trip() -> None:
    success = Success(result={"$tuple": [1, 2]})
    failure = Failure(
        ErrorPayload(kind="HandlerFailure", message="boom\nsecond line", exc_type="ValueError", traceback="tb")
    )

    assert decode_response(encode_response(success)) == success
    assert decode_response(encode_response(failure)) == failure
    assert "\n" not in encode_response(failure)


@pytest.mark.parametrize(
    "frame",
    [
        '{"ok": true}',
        '{"ok": "yes", "result": 1}',
        '{"ok": false, "error": {"kind": "Weird", "message": "x"}}',
        '{"ok": false, "error": {"kind": "HandlerFailure"}}',
        '{"ok": false, "error": {"kind": "HandlerFailure", "message": "x", "exc_type": 3}}',
    ],
)
def test_decode_response_rejects_bad_shapes(frame: str) -> None:
    with pytest.raises(DecodeError):
        decode_response(frame)


def test_coerce_containers_and_optionals() -> None:
    assert coerce([1, 2], tuple[int, ...]) == (1, 2)
    assert coerce([1, "a"], tuple[int, str]) == (1, "a")
    assert coerce(None, Optional[Span]) is None
    assert coerce({"start": 1, "end": 2}, Span | None) == Span(1, 2)
    assert coerce({"a": {"start": 0, "end": 0}}, dict[str, Span]) == {"a": Span(0, 0)}
    assert coerce(3, float) == 3.0


def test_coerce_rejects_mismatches() -> None:
    with pytest.raises(DecodeError):
        coerce("3", int)
    with pytest.raises(DecodeError):
        coerce({"start": 1}, Span)
    with pytest.raises(DecodeError):
        coerce({"start": 1, "end": 2, "extra": 3}, Span)
    with pytest.raises(DecodeError):
        coerce([1, 2, 3], tuple[int, int])


def test_sets_are_tagged_and_rebuilt() -> None:
    assert to_wire({7}) == {"$set": [7]}
    assert from_wire({"$set": [1, {"$tuple": [2, 3]}]}) == {1, (2, 3)}
    assert coerce({1, 2}, frozenset[int]) == frozenset({1, 2})
    assert coerce([1, 2], set[int]) == {1, 2}
    assert isinstance(coerce({1}, frozenset), frozenset)
