from __future__ import annotations

import json
from dataclasses import is_dataclass
from pathlib import Path
from typing import Any, ClassVar, Generic, Mapping, Optional, TypeVar, Union

import xmltodict
from pydantic import BaseModel, model_serializer
from pydantic_core import PydanticSerializationError, to_jsonable_python
from starlette.responses import FileResponse, Response

from .errors import EncodeError
from .security import safe_join


DataT = TypeVar("DataT")

JSON_CONTENT_TYPE = "application/json"
XML_CONTENT_TYPE = "application/xml"
DEFAULT_XML_ROOT = "response"


class Envelope(BaseModel, Generic[DataT]):
    """Uniform wrapper for success and error bodies.

    ``data`` is left out of the serialized form when it is None.
    """

    xml_root: ClassVar[str] = DEFAULT_XML_ROOT

    error: bool = False
    message: str = ""
    data: Optional[DataT] = None

    @model_serializer(mode="wrap")
    def _omit_empty_data(self, handler: Any) -> Any:
        payload = handler(self)
        if isinstance(payload, dict) and payload.get("data") is None:
            payload.pop("data", None)
        return payload


def _jsonable(data: Any) -> Any:
    try:
        return to_jsonable_python(data)
    except PydanticSerializationError as exc:
        raise EncodeError(f"unable to serialize {type(data).__name__}: {exc}") from exc


def encode_json(data: Any) -> bytes:
    try:
        text = json.dumps(_jsonable(data), ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except ValueError as exc:
        # NaN and infinities have no JSON spelling.
        raise EncodeError(f"unable to serialize {type(data).__name__}: {exc}") from exc
    return text.encode("utf-8")


def _xml_value(value: Any) -> Any:
    # xmltodict renders str(value); keep booleans in XML Schema form.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict):
        return {str(k): _xml_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_xml_value(v) for v in value]
    if value is None:
        return None
    return str(value)


def _xml_root_for(data: Any) -> str:
    root = getattr(type(data), "xml_root", None)
    if isinstance(root, str) and root:
        return root
    if isinstance(data, BaseModel) or is_dataclass(data):
        return type(data).__name__
    return DEFAULT_XML_ROOT


def encode_xml(data: Any, *, root: Optional[str] = None) -> bytes:
    """Serialize ``data`` as one XML document with a leading declaration.

    The root element is ``root`` if given, else the value's ``xml_root``
    class attribute, else its class name (models and dataclasses), else the
    single key of a one-item mapping, else ``response``.
    """
    payload = _xml_value(_jsonable(data))
    if root is None and isinstance(data, Mapping) and len(payload) == 1:
        doc = payload
    else:
        if isinstance(payload, list):
            payload = {"item": payload}
        doc = {root or _xml_root_for(data): payload}

    try:
        out = xmltodict.unparse(doc, encoding="utf-8", full_document=True, short_empty_elements=True)
    except ValueError as exc:
        raise EncodeError(f"unable to serialize {type(data).__name__} as XML: {exc}") from exc
    return out.encode("utf-8")


def _build_response(
    status: int,
    body: bytes,
    headers: Optional[Mapping[str, str]],
    content_type: str,
) -> Response:
    response = Response(content=body, status_code=status)
    # Caller headers first, so they cannot override the content type.
    for key, value in (headers or {}).items():
        response.headers[key] = value
    response.headers["content-type"] = content_type
    return response


def write_json(status: int, data: Any, headers: Optional[Mapping[str, str]] = None) -> Response:
    """Serialize ``data`` to JSON and wrap it in a response.

    Serialization happens first: an unencodable value raises EncodeError
    before any response exists.
    """
    return _build_response(status, encode_json(data), headers, JSON_CONTENT_TYPE)


def write_xml(
    status: int,
    data: Any,
    headers: Optional[Mapping[str, str]] = None,
    *,
    root: Optional[str] = None,
) -> Response:
    return _build_response(status, encode_xml(data, root=root), headers, XML_CONTENT_TYPE)


def _error_envelope(err: Union[BaseException, str]) -> Envelope[Any]:
    return Envelope[Any](error=True, message=str(err))


def error_json(err: Union[BaseException, str], status: int = 400) -> Response:
    """Send ``{"error": true, "message": str(err)}`` with ``status`` (default 400)."""
    return write_json(status, _error_envelope(err))


def error_xml(err: Union[BaseException, str], status: int = 400) -> Response:
    return write_xml(status, _error_envelope(err))


def download_static_file(
    path: Union[str, Path],
    display_name: str,
    *,
    directory: Optional[Union[str, Path]] = None,
) -> FileResponse:
    """Stream a file with a "save as" disposition named ``display_name``.

    With ``directory``, ``path`` is resolved inside it and a path escaping
    the directory raises ValueError.
    """
    if directory is not None:
        path = safe_join(directory, str(path))
    headers = {"Content-Disposition": f'attachment; filename="{display_name}"'}
    return FileResponse(path, headers=headers)
