"""Exception types raised by the toolkit.

Library code stays HTTP-agnostic: each error carries the status code a host
would normally answer with, and hosts decide how (or whether) to use it.
Client-input problems map to 4xx codes, environment and programmer problems
to 5xx.
"""

from __future__ import annotations

from typing import Optional


class ToolkitError(Exception):
    """Base class for every error raised by webtoolkit."""

    status_code = 500


class UploadError(ToolkitError):
    """Raised when a multipart upload cannot be parsed or stored."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class FileTypeNotAllowedError(UploadError):
    """Raised when a part's sniffed content type is not on the allow-list."""

    def __init__(self, content_type: str) -> None:
        super().__init__(f"file type not allowed: {content_type}", status_code=415)
        self.content_type = content_type


class BodyDecodeError(ToolkitError):
    """Raised when a JSON or XML request body cannot be decoded."""

    status_code = 400


class ContentTypeError(BodyDecodeError):
    status_code = 415


class BodyTooLargeError(BodyDecodeError):
    status_code = 413

    def __init__(self, limit: int) -> None:
        super().__init__(f"body must not be larger than {limit} bytes")
        self.limit = limit


class EmptyBodyError(BodyDecodeError):
    def __init__(self) -> None:
        super().__init__("body must not be empty")


class MalformedBodyError(BodyDecodeError):
    """Syntax error or truncated document. ``offset`` is a byte offset when known."""

    def __init__(self, message: str, offset: Optional[int] = None) -> None:
        super().__init__(message)
        self.offset = offset


class FieldTypeError(BodyDecodeError):
    def __init__(self, message: str, field: Optional[str] = None, offset: Optional[int] = None) -> None:
        super().__init__(message)
        self.field = field
        self.offset = offset


class UnknownFieldError(BodyDecodeError):
    def __init__(self, field: str) -> None:
        super().__init__(f'body contains unknown key "{field}"')
        self.field = field


class MultipleValuesError(BodyDecodeError):
    pass


class InvalidTargetError(BodyDecodeError):
    """The decode target is not something pydantic can validate into."""

    status_code = 500


class EncodeError(ToolkitError):
    """Raised when a value cannot be serialized into a response body."""


class SlugError(ToolkitError, ValueError):
    status_code = 400
