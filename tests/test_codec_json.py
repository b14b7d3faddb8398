from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Annotated, List, Optional

import pytest
from pydantic import BaseModel, ConfigDict, Field

from webtoolkit.codec import decode_json, find_unknown_key
from webtoolkit.errors import (
    BodyTooLargeError,
    EmptyBodyError,
    FieldTypeError,
    InvalidTargetError,
    MalformedBodyError,
    MultipleValuesError,
    UnknownFieldError,
)


class Foo(BaseModel):
    foo: str = ""


class Inner(BaseModel):
    x: int


class Outer(BaseModel):
    inner: Inner
    items: List[Inner] = []
    maybe: Optional[Inner] = None


class Loose(BaseModel):
    model_config = ConfigDict(extra="allow")

    a: int = 0


class Counter(BaseModel):
    count: int
    flag: bool = False
    ratio: float = 0.0


@dataclass
class Point:
    x: int
    inner: Optional[Inner] = None


class Tagged(BaseModel):
    items: List[Annotated[Inner, Field(description="tagged")]] = []


# name, body, max size, allow unknown, expected error
json_tests = [
    ("valid json", '{"foo": "bar"}', 1024, False, None),
    ("badly formatted json", '{"foo": }', 1024, False, MalformedBodyError),
    ("incorrect type", '{"foo": 1}', 1024, False, FieldTypeError),
    ("two json files", '{"foo": "1""}{"alpha" : "beta"}', 1024, False, MalformedBodyError),
    ("two json values", '{"foo": "1"}{"foo": "2"}', 1024, False, MultipleValuesError),
    ("empty json", "", 1024, False, EmptyBodyError),
    ("whitespace only", " \n\t ", 1024, False, EmptyBodyError),
    ("syntax error in json", '{"foo": 1""', 1024, False, MalformedBodyError),
    ("unknown field in json", '{"fod": "1"}', 1024, False, UnknownFieldError),
    ("allow unknown field in json", '{"fooo": "1"}', 1024, True, None),
    ("missing field name in json", '{jack: "1"}', 1024, True, MalformedBodyError),
    ("file too large", '{"foo"": "bar"}', 4, True, BodyTooLargeError),
    ("not json", "Hello World!", 1024, True, MalformedBodyError),
    ("truncated", '{"foo": "bar"', 1024, False, MalformedBodyError),
    ("nan is not json", '{"foo": NaN}', 1024, False, MalformedBodyError),
    ("trailing whitespace", '{"foo": "bar"}\n\n', 1024, False, None),
]


@pytest.mark.parametrize("name, body, max_size, allow_unknown, error", json_tests, ids=[t[0] for t in json_tests])
def test_decode_json(name, body, max_size, allow_unknown, error):
    if error is None:
        decoded = decode_json(body.encode(), Foo, max_bytes=max_size, allow_unknown_fields=allow_unknown)
        assert isinstance(decoded, Foo)
        return
    with pytest.raises(error):
        decode_json(body.encode(), Foo, max_bytes=max_size, allow_unknown_fields=allow_unknown)


def test_decoded_value():
    assert decode_json(b'{"foo":"bar"}', Foo) == Foo(foo="bar")


def test_error_messages():
    with pytest.raises(MalformedBodyError, match=r"^body contains badly-formed JSON \(at character 8\)$") as info:
        decode_json(b'{"foo": }', Foo)
    assert info.value.offset == 8

    with pytest.raises(MalformedBodyError, match=r"^body contains badly-formed JSON$"):
        decode_json(b'{"foo": "bar"', Foo)

    with pytest.raises(FieldTypeError, match='incorrect JSON type for field "foo"') as info:
        decode_json(b'{"foo": 1}', Foo)
    assert info.value.field == "foo"

    with pytest.raises(UnknownFieldError, match='^body contains unknown key "fod"$'):
        decode_json(b'{"fod": "1"}', Foo)

    with pytest.raises(BodyTooLargeError, match="^body must not be larger than 4 bytes$"):
        decode_json(b'{"foo": "bar"}', Foo, max_bytes=4)

    with pytest.raises(MultipleValuesError, match="^body must contain only one JSON value$"):
        decode_json(b'{"foo": "a"} {"foo": "b"}', Foo)

    with pytest.raises(EmptyBodyError, match="^body must not be empty$"):
        decode_json(b"", Foo)


def test_syntax_offset_counts_bytes():
    # "é" is two bytes in UTF-8.
    with pytest.raises(MalformedBodyError) as info:
        decode_json('{"foo": "é" x}'.encode(), Foo)
    assert info.value.offset == len('{"foo": "é" '.encode())


def test_top_level_type_mismatch_reports_offset():
    with pytest.raises(FieldTypeError, match=r"invalid JSON \(at character 2\)") as info:
        decode_json(b"  [1, 2]", Foo)
    assert info.value.field is None


def test_missing_required_field():
    with pytest.raises(FieldTypeError, match='missing required JSON field "inner"'):
        decode_json(b"{}", Outer)


def test_unknown_keys_in_nested_models():
    with pytest.raises(UnknownFieldError) as info:
        decode_json(b'{"inner": {"x": 1, "y": 2}}', Outer)
    assert info.value.field == "inner.y"

    with pytest.raises(UnknownFieldError):
        decode_json(b'{"inner": {"x": 1}, "items": [{"x": 1}, {"z": 3}]}', Outer)

    with pytest.raises(UnknownFieldError):
        decode_json(b'{"inner": {"x": 1}, "maybe": {"x": 1, "q": 0}}', Outer)

    decoded = decode_json(b'{"inner": {"x": 1, "y": 2}}', Outer, allow_unknown_fields=True)
    assert decoded.inner.x == 1


def test_model_extra_policy_wins():
    decoded = decode_json(b'{"a": 1, "b": 2}', Loose)
    assert decoded.a == 1


def test_find_unknown_key_on_plain_types():
    assert find_unknown_key({"a": 1}, dict) is None
    assert find_unknown_key([{"x": 1, "bad": 1}], List[Inner]) == "bad"


def test_non_model_targets():
    assert decode_json(b'{"a": 1, "b": 2}', dict[str, int]) == {"a": 1, "b": 2}
    assert decode_json(b"[1, 2, 3]", List[int]) == [1, 2, 3]


def test_stream_body():
    assert decode_json(io.BytesIO(b'{"foo": "bar"}'), Foo).foo == "bar"
    with pytest.raises(BodyTooLargeError):
        decode_json(io.BytesIO(b'{"foo": "bar"}'), Foo, max_bytes=5)


def test_invalid_target():
    with pytest.raises(InvalidTargetError, match="error unmarshalling JSON"):
        decode_json(b'{"foo": "bar"}', Foo())


def test_read_json_endpoint(make_client):
    client = make_client()
    response = client.post("/api/json/echo", json={"foo": "bar", "count": 2})
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert len(response.headers["x-request-token"]) == 16
    assert response.json() == {"error": False, "message": "ok", "data": {"foo": "bar", "count": 2}}


def test_read_json_accepts_charset_parameter(make_client):
    client = make_client()
    response = client.post(
        "/api/json/echo",
        content=b'{"foo": "bar"}',
        headers={"Content-Type": "Application/JSON; charset=utf-8"},
    )
    assert response.status_code == 200


def test_read_json_rejects_other_content_types(make_client):
    client = make_client()
    response = client.post("/api/json/echo", content=b'{"foo": "bar"}', headers={"Content-Type": "text/plain"})
    assert response.status_code == 415
    assert response.json() == {"error": True, "message": "Content-Type must be application/json"}


def test_read_json_without_content_type(make_client):
    client = make_client()
    response = client.post("/api/json/echo", content=b'{"foo": "bar"}')
    assert response.status_code == 200


def test_read_json_empty_body(make_client):
    client = make_client()
    response = client.post("/api/json/echo")
    assert response.status_code == 400
    assert response.json()["message"] == "body must not be empty"


def test_read_json_size_limit_from_config(make_client):
    client = make_client(max_json_bytes=8)
    response = client.post("/api/json/echo", json={"foo": "a much longer value"})
    assert response.status_code == 413
    assert response.json()["message"] == "body must not be larger than 8 bytes"


def test_read_json_unknown_fields_from_config(make_client):
    strict = make_client()
    assert strict.post("/api/json/echo", json={"foo": "x", "extra": 1}).status_code == 400

    lenient = make_client(allow_unknown_fields=True)
    assert lenient.post("/api/json/echo", json={"foo": "x", "extra": 1}).status_code == 200


# name, body
strict_type_tests = [
    ("numeric string into int", b'{"count": "5"}'),
    ("float into int", b'{"count": 1.5}'),
    ("string into bool", b'{"count": 1, "flag": "yes"}'),
    ("number into bool", b'{"count": 1, "flag": 1}'),
    ("string into float", b'{"count": 1, "ratio": "0.5"}'),
]


@pytest.mark.parametrize("name, body", strict_type_tests, ids=[t[0] for t in strict_type_tests])
def test_values_are_not_coerced(name, body):
    with pytest.raises(FieldTypeError, match="incorrect JSON type for field"):
        decode_json(body, Counter)


def test_exact_types_are_accepted():
    decoded = decode_json(b'{"count": 5, "flag": true, "ratio": 2}', Counter)
    assert decoded == Counter(count=5, flag=True, ratio=2.0)


def test_unknown_keys_in_dataclass_targets():
    with pytest.raises(UnknownFieldError) as info:
        decode_json(b'{"x": 1, "bar": 1}', Point)
    assert info.value.field == "bar"

    with pytest.raises(UnknownFieldError) as info:
        decode_json(b'{"x": 1, "inner": {"x": 2, "y": 3}}', Point)
    assert info.value.field == "inner.y"

    assert decode_json(b'{"x": 1, "bar": 1}', Point, allow_unknown_fields=True) == Point(x=1)


def test_unknown_keys_behind_annotated():
    with pytest.raises(UnknownFieldError):
        decode_json(b'{"items": [{"x": 1, "y": 2}]}', Tagged)
    assert decode_json(b'{"items": [{"x": 1}]}', Tagged).items == [Inner(x=1)]
