"""Multipart upload pipeline.

Lifecycle of one call:
1. Ensure the destination directory exists.
2. Parse the multipart body from a byte-limited request stream. Parts are
   spooled by Starlette's parser, so memory stays bounded.
3. For each file part, in request order: sniff the first SNIFF_LEN bytes,
   check the allow-list, rewind, pick a name, stream the part to disk.
4. Return every file stored before the first failure, together with that
   failure (if any). Files already written are left on disk; cleanup is the
   caller's decision.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, BinaryIO, List, Optional, Union

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.requests import Request

from .config import RANDOM_NAME_LENGTH, SNIFF_LEN, ToolsConfig, resolve_config
from .errors import FileTypeNotAllowedError, UploadError
from .security import client_basename, create_dir_if_not_exist, is_safe_basename, random_string, safe_join
from .sniff import detect_content_type, is_allowed_type, media_type


logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1_048_576  # 1 MiB


@dataclass(frozen=True)
class UploadedFile:
    new_file_name: str
    original_file_name: str
    file_size: int


@dataclass
class UploadResult:
    """Files stored by one upload call, plus the error that stopped it.

    A non-None ``error`` means: stop, and the files listed here are already
    on disk.
    """

    files: List[UploadedFile] = field(default_factory=list)
    error: Optional[UploadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> List[UploadedFile]:
        if self.error is not None:
            raise self.error
        return self.files


async def _limited_stream(source: AsyncIterator[bytes], limit: int) -> AsyncIterator[bytes]:
    """Yield from ``source``, failing once more than ``limit`` bytes were seen."""
    seen = 0
    async for chunk in source:
        seen += len(chunk)
        if seen > limit:
            raise UploadError(
                f"error parsing multipart form: request body too large (limit {limit} bytes)",
                status_code=413,
            )
        yield chunk


async def _parse_form(request: Request, limit: int) -> FormData:
    if media_type(request.headers.get("content-type", "")) != "multipart/form-data":
        raise UploadError("error parsing multipart form: request Content-Type isn't multipart/form-data", status_code=400)

    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise UploadError(
            f"error parsing multipart form: request body too large (limit {limit} bytes)",
            status_code=413,
        )

    parser = MultiPartParser(request.headers, _limited_stream(request.stream(), limit))
    try:
        return await parser.parse()
    except MultiPartException as exc:
        raise UploadError(f"error parsing multipart form: {exc.message}", status_code=400) from exc


def _copy_stream(src: BinaryIO, dst: BinaryIO) -> int:
    written = 0
    while True:
        chunk = src.read(COPY_CHUNK_SIZE)
        if not chunk:
            break
        dst.write(chunk)
        written += len(chunk)
    return written


def _target_name(filename: str, rename: bool) -> str:
    original = client_basename(filename)
    if rename:
        _, ext = os.path.splitext(original)
        return f"{random_string(RANDOM_NAME_LENGTH)}{ext}"
    if not is_safe_basename(original):
        raise UploadError(f"invalid file name: {filename!r}", status_code=400)
    return original


def store_part(part: UploadFile, upload_dir: Path, *, rename: bool, allowed_types: List[str]) -> UploadedFile:
    """Validate one file part and stream it to ``upload_dir``. Blocking."""
    original = part.filename or ""
    src = part.file

    try:
        head = src.read(SNIFF_LEN)
    except OSError as exc:
        raise UploadError(f"error reading {original!r}: {exc}") from exc

    content_type = detect_content_type(head)
    if not is_allowed_type(content_type, allowed_types):
        logger.warning("rejected upload %r with content type %s", original, content_type)
        raise FileTypeNotAllowedError(content_type)

    try:
        src.seek(0)
    except OSError as exc:
        raise UploadError(f"error rewinding {original!r}: {exc}") from exc

    new_name = _target_name(original, rename)
    try:
        dest = safe_join(upload_dir, new_name)
    except ValueError as exc:
        raise UploadError(f"invalid file name: {original!r}", status_code=400) from exc

    try:
        with open(dest, "wb") as out:
            size = _copy_stream(src, out)
    except OSError as exc:
        raise UploadError(f"error saving {original!r}: {exc}") from exc

    logger.debug("stored upload %r as %s (%d bytes)", original, dest, size)
    return UploadedFile(new_file_name=new_name, original_file_name=original, file_size=size)


async def upload_files(
    request: Request,
    upload_dir: Union[str, Path],
    *,
    rename: bool = True,
    config: Optional[ToolsConfig] = None,
) -> UploadResult:
    """Store every file part of a multipart request under ``upload_dir``.

    With ``rename`` (the default) each file is stored as
    ``<25 random chars><original extension>``; otherwise under its original
    base name, and an existing file of that name is overwritten.

    Directory and parse failures raise UploadError: nothing was stored.
    Failures while handling individual parts are returned in the result next
    to the files stored before them.
    """
    cfg = resolve_config(config)
    allowed = list(cfg.allowed_file_types)

    try:
        target_dir = await run_in_threadpool(create_dir_if_not_exist, upload_dir)
    except OSError as exc:
        raise UploadError(f"error creating upload directory: {exc}") from exc

    form = await _parse_form(request, cfg.upload_limit())
    result = UploadResult()
    try:
        for _, value in form.multi_items():
            if not isinstance(value, UploadFile):
                continue
            try:
                stored = await run_in_threadpool(
                    store_part, value, target_dir, rename=rename, allowed_types=allowed
                )
            except UploadError as exc:
                result.error = exc
                break
            result.files.append(stored)
    finally:
        await form.close()
    return result


async def upload_one_file(
    request: Request,
    upload_dir: Union[str, Path],
    *,
    rename: bool = True,
    config: Optional[ToolsConfig] = None,
) -> UploadedFile:
    """Like upload_files, but returns the first stored file and raises on any error."""
    result = await upload_files(request, upload_dir, rename=rename, config=config)
    files = result.raise_for_error()
    if not files:
        raise UploadError("no file found in request", status_code=400)
    return files[0]
