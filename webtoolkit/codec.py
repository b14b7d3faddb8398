"""Decoding of JSON and XML request bodies into typed targets.

Every decode path follows the same rules:
- the body is read through a byte-limited reader, so oversized bodies fail
  with BodyTooLargeError instead of being silently truncated;
- exactly one document is accepted; anything after it besides whitespace
  fails with MultipleValuesError;
- parser and validation failures are translated into the BodyDecodeError
  taxonomy (errors.py) with messages safe to show to API clients.

Targets are anything pydantic can validate: usually a BaseModel subclass,
but also dataclasses, TypedDicts or plain annotations like ``dict[str, int]``.
"""
from __future__ import annotations

import collections.abc
import dataclasses
import json
import logging
from functools import lru_cache
from types import UnionType
from typing import Annotated, Any, Optional, Type, TypeVar, Union, get_args, get_origin, get_type_hints, is_typeddict
from xml.parsers.expat import ExpatError
from xml.parsers.expat import errors as expat_errors

import xmltodict
from pydantic import BaseModel, PydanticUserError, TypeAdapter, ValidationError
from pydantic.fields import FieldInfo
from starlette.requests import Request

from .config import BUILTIN_MAX_JSON_BYTES, BUILTIN_MAX_XML_BYTES, ToolsConfig, resolve_config
from .errors import (
    BodyDecodeError,
    BodyTooLargeError,
    ContentTypeError,
    EmptyBodyError,
    FieldTypeError,
    InvalidTargetError,
    MalformedBodyError,
    MultipleValuesError,
    UnknownFieldError,
)
from .sniff import media_type


logger = logging.getLogger(__name__)

T = TypeVar("T")

_JSON_WS = " \t\n\r"

# expat reports a second document as junk (or a misplaced declaration)
# after the root element.
_TRAILING_DOCUMENT_CODES = {
    expat_errors.codes[expat_errors.XML_ERROR_JUNK_AFTER_DOC_ELEMENT],
    expat_errors.codes[expat_errors.XML_ERROR_MISPLACED_XML_PI],
}

_SEQUENCE_ORIGINS = (list, tuple, set, frozenset, collections.abc.Sequence, collections.abc.Set)


def read_limited(stream: Any, limit: int) -> bytes:
    """Read a binary stream to EOF, failing once more than ``limit`` bytes arrive."""
    buf = bytearray()
    while True:
        chunk = stream.read(limit + 1 - len(buf))
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > limit:
            raise BodyTooLargeError(limit)


async def read_body(request: Request, limit: int) -> bytes:
    """Collect a request body, failing once more than ``limit`` bytes arrive."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise BodyTooLargeError(limit)

    buf = bytearray()
    async for chunk in request.stream():
        buf.extend(chunk)
        if len(buf) > limit:
            raise BodyTooLargeError(limit)
    return bytes(buf)


def _body_bytes(body: Any, limit: int) -> bytes:
    if isinstance(body, str):
        body = body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        data = bytes(body)
        if len(data) > limit:
            raise BodyTooLargeError(limit)
        return data
    return read_limited(body, limit)


@lru_cache(maxsize=256)
def _cached_adapter(target: Any) -> TypeAdapter:
    return TypeAdapter(target)


def _adapter(target: Any, fmt: str) -> TypeAdapter:
    if isinstance(target, BaseModel):
        raise InvalidTargetError(
            f"error unmarshalling {fmt}: target must be a type, got {type(target).__name__} instance"
        )
    try:
        return _cached_adapter(target)
    except (PydanticUserError, TypeError) as exc:
        raise InvalidTargetError(f"error unmarshalling {fmt}: {exc}") from exc


def _unwrap(annotation: Any) -> Any:
    while get_origin(annotation) is Annotated:
        annotation = get_args(annotation)[0]
    return annotation


def _is_class(annotation: Any) -> bool:
    # list[int] passes isinstance(..., type) on some interpreters.
    return isinstance(annotation, type) and get_origin(annotation) is None


def _is_model(annotation: Any) -> bool:
    return _is_class(annotation) and issubclass(annotation, BaseModel)


def _field_map(model_fields: dict[str, FieldInfo]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, info in model_fields.items():
        fields[name] = info.annotation
        for alias in (info.alias, info.validation_alias):
            if isinstance(alias, str):
                fields[alias] = info.annotation
    return fields


def _structured_fields(annotation: Any) -> Optional[dict[str, Any]]:
    """Declared keys of a model, dataclass or TypedDict; None for anything else."""
    if _is_model(annotation):
        return _field_map(annotation.model_fields)
    if _is_class(annotation) and dataclasses.is_dataclass(annotation):
        pydantic_fields = getattr(annotation, "__pydantic_fields__", None)
        if pydantic_fields:
            return _field_map(pydantic_fields)
        hints = get_type_hints(annotation)
        return {f.name: hints.get(f.name, Any) for f in dataclasses.fields(annotation)}
    if is_typeddict(annotation):
        return get_type_hints(annotation)
    return None


def _sets_extra(annotation: Any) -> bool:
    if _is_model(annotation):
        config = annotation.model_config
    else:
        config = getattr(annotation, "__pydantic_config__", None) or {}
    return config.get("extra") is not None


def find_unknown_key(value: Any, annotation: Any) -> Optional[str]:
    """Return the dotted path of the first key ``annotation`` does not declare.

    Models, dataclasses and TypedDicts are walked at every nesting level.
    Targets that set their own ``extra`` policy are left to pydantic. For
    unions a key only counts as unknown if no member declares it.
    """
    annotation = _unwrap(annotation)
    fields = _structured_fields(annotation)
    if fields is not None:
        if not isinstance(value, dict) or _sets_extra(annotation):
            return None
        for key, item in value.items():
            if key not in fields:
                return key
            nested = find_unknown_key(item, fields[key])
            if nested is not None:
                return f"{key}.{nested}"
        return None

    origin = get_origin(annotation)
    args = [a for a in get_args(annotation) if a is not type(None) and a is not Ellipsis]
    if not args:
        return None
    if origin is Union or origin is UnionType:
        hits = [find_unknown_key(value, a) for a in args]
        if all(h is not None for h in hits):
            return hits[0]
        return None
    if isinstance(value, list):
        for item in value:
            hit = find_unknown_key(item, args[0])
            if hit is not None:
                return hit
    elif isinstance(value, dict) and len(args) == 2:
        for item in value.values():
            hit = find_unknown_key(item, args[1])
            if hit is not None:
                return hit
    return None


def _classify_validation_error(exc: ValidationError, fmt: str, offset: Optional[int]) -> Exception:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    kind = err.get("type", "")
    if kind == "extra_forbidden":
        return UnknownFieldError(field)
    if not field:
        if offset is None:
            return FieldTypeError(f"body contains an invalid {fmt}")
        return FieldTypeError(f"body contains an invalid {fmt} (at character {offset})", offset=offset)
    if kind == "missing":
        return FieldTypeError(f'body is missing required {fmt} field "{field}"', field=field)
    return FieldTypeError(f'body contains incorrect {fmt} type for field "{field}"', field=field)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


_decoder = json.JSONDecoder(parse_constant=_reject_constant)


def _byte_offset(text: str, pos: int) -> int:
    return len(text[:pos].encode("utf-8"))


def decode_json(
    body: Any,
    target: Type[T],
    *,
    max_bytes: Optional[int] = None,
    allow_unknown_fields: bool = False,
) -> T:
    """Decode exactly one JSON document from ``body`` into ``target``.

    ``body`` may be bytes, str, or a binary stream. Values are validated in
    strict mode: ``"5"`` is not an int and ``"yes"`` is not a bool. Unknown
    object keys are rejected at every nesting level unless
    ``allow_unknown_fields`` is set.
    """
    limit = max_bytes or BUILTIN_MAX_JSON_BYTES
    adapter = _adapter(target, "JSON")
    data = _body_bytes(body, limit)

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedBodyError(f"body contains badly-formed JSON (at character {exc.start})", exc.start) from exc

    start = len(text) - len(text.lstrip(_JSON_WS))
    if start == len(text):
        raise EmptyBodyError()

    try:
        value, end = _decoder.raw_decode(text, start)
    except json.JSONDecodeError as exc:
        if exc.pos >= len(text.rstrip(_JSON_WS)) or exc.msg.startswith("Unterminated string"):
            raise MalformedBodyError("body contains badly-formed JSON") from exc
        offset = _byte_offset(text, exc.pos)
        raise MalformedBodyError(f"body contains badly-formed JSON (at character {offset})", offset) from exc
    except ValueError as exc:
        raise MalformedBodyError(f"body contains badly-formed JSON: {exc}") from exc

    if not allow_unknown_fields:
        unknown = find_unknown_key(value, target)
        if unknown is not None:
            raise UnknownFieldError(unknown)

    try:
        result = adapter.validate_json(text[start:end], strict=True)
    except ValidationError as exc:
        raise _classify_validation_error(exc, "JSON", _byte_offset(text, start)) from exc

    if text[end:].strip(_JSON_WS):
        raise MultipleValuesError("body must contain only one JSON value")
    return result


async def read_json(request: Request, target: Type[T], *, config: Optional[ToolsConfig] = None) -> T:
    """Read and decode a JSON request body into ``target``.

    A present, non-empty Content-Type header must name application/json.
    """
    cfg = resolve_config(config)
    content_type = request.headers.get("content-type")
    if content_type and media_type(content_type) != "application/json":
        raise ContentTypeError("Content-Type must be application/json")

    limit = cfg.json_limit()
    try:
        body = await read_body(request, limit)
        return decode_json(body, target, max_bytes=limit, allow_unknown_fields=cfg.allow_unknown_fields)
    except BodyDecodeError as exc:
        logger.debug("rejected JSON body for %s: %s", request.url.path, exc)
        raise


def _empty_element_as_text(path: Any, key: str, value: Any) -> tuple[str, Any]:
    # <x/> and <x></x> carry an empty string, not "no value".
    return key, ("" if value is None else value)


def _element_content(content: Any) -> Any:
    if content is None or content == "":
        return {}
    if isinstance(content, str):
        return {"#text": content}
    return content


def _xml_sequences(value: Any, annotation: Any) -> Any:
    """Wrap single child elements in a list where the target declares a sequence.

    xmltodict only yields a list once an element repeats.
    """
    annotation = _unwrap(annotation)
    origin = get_origin(annotation)
    if origin is Union or origin is UnionType:
        members = [a for a in get_args(annotation) if a is not type(None)]
        return _xml_sequences(value, members[0]) if len(members) == 1 else value
    if origin in _SEQUENCE_ORIGINS or annotation in _SEQUENCE_ORIGINS:
        items = value if isinstance(value, list) else [value]
        args = get_args(annotation)
        if not args:
            return items
        return [_xml_sequences(item, args[0]) for item in items]
    fields = _structured_fields(annotation)
    if fields is not None and isinstance(value, dict):
        return {k: _xml_sequences(v, fields[k]) if k in fields else v for k, v in value.items()}
    return value


def decode_xml(body: Any, target: Type[T], *, max_bytes: Optional[int] = None) -> T:
    """Decode exactly one XML document from ``body`` into ``target``.

    The root element's name is not checked; its child elements (and
    ``@attributes``) are matched against the target's fields. Elements the
    target does not declare are ignored. Empty elements decode as ``""``.
    """
    limit = max_bytes or BUILTIN_MAX_XML_BYTES
    adapter = _adapter(target, "XML")
    data = _body_bytes(body, limit).lstrip()
    if not data:
        raise EmptyBodyError()

    try:
        doc = xmltodict.parse(data, postprocessor=_empty_element_as_text)
    except ExpatError as exc:
        if exc.code in _TRAILING_DOCUMENT_CODES:
            raise MultipleValuesError("body must contain only one XML value") from exc
        raise MalformedBodyError(
            f"body contains badly-formed XML (line {exc.lineno}, column {exc.offset})"
        ) from exc

    (_, content), = doc.items()
    try:
        return adapter.validate_python(_xml_sequences(_element_content(content), target))
    except ValidationError as exc:
        raise _classify_validation_error(exc, "XML", None) from exc


async def read_xml(request: Request, target: Type[T], *, config: Optional[ToolsConfig] = None) -> T:
    """Read and decode an XML request body into ``target``."""
    cfg = resolve_config(config)
    limit = cfg.xml_limit()
    try:
        body = await read_body(request, limit)
        return decode_xml(body, target, max_bytes=limit)
    except BodyDecodeError as exc:
        logger.debug("rejected XML body for %s: %s", request.url.path, exc)
        raise
