"""Content-type sniffing from a byte prefix.

Implements the signature-matching part of the WHATWG MIME sniffing
algorithm: the declared type of an upload is never trusted, only the first
SNIFF_LEN bytes are. The result is always a valid MIME type; anything
unrecognized is ``application/octet-stream`` (binary) or
``text/plain; charset=utf-8`` (no binary bytes seen).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .config import SNIFF_LEN


OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain; charset=utf-8"

_WHITESPACE = b"\t\n\x0c\r "


@dataclass(frozen=True)
class _MaskedSig:
    mask: bytes
    pattern: bytes
    content_type: str
    skip_ws: bool = False

    def match(self, data: bytes, first_non_ws: int) -> Optional[str]:
        if self.skip_ws:
            data = data[first_non_ws:]
        if len(data) < len(self.pattern):
            return None
        for i, (m, p) in enumerate(zip(self.mask, self.pattern)):
            if data[i] & m != p:
                return None
        return self.content_type


@dataclass(frozen=True)
class _ExactSig:
    prefix: bytes
    content_type: str

    def match(self, data: bytes, first_non_ws: int) -> Optional[str]:
        return self.content_type if data.startswith(self.prefix) else None


@dataclass(frozen=True)
class _HTMLSig:
    tag: bytes

    def match(self, data: bytes, first_non_ws: int) -> Optional[str]:
        data = data[first_non_ws:]
        if len(data) < len(self.tag) + 1:
            return None
        for i, b in enumerate(self.tag):
            db = data[i]
            if ord("A") <= b <= ord("Z"):
                db &= 0xDF
            if b != db:
                return None
        # Next byte must be a tag-terminating byte.
        if data[len(self.tag)] not in b" >":
            return None
        return "text/html; charset=utf-8"


def _match_mp4(data: bytes, first_non_ws: int) -> Optional[str]:
    # https://mimesniff.spec.whatwg.org/#signature-for-mp4
    if len(data) < 12:
        return None
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0:
        return None
    if data[4:8] != b"ftyp":
        return None
    for start in range(8, box_size, 4):
        if start == 12:
            # Skip the minor version number.
            continue
        if data[start:start + 3] == b"mp4":
            return "video/mp4"
    return None


def _match_text(data: bytes, first_non_ws: int) -> Optional[str]:
    for b in data[first_non_ws:]:
        if b <= 0x08 or b == 0x0B or 0x0E <= b <= 0x1A or 0x1C <= b <= 0x1F:
            return None
    return TEXT_PLAIN


_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P", b"<!--",
)

_RIFF_MASK = b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF"

_SIGNATURES: tuple = (
    *(_HTMLSig(tag) for tag in _HTML_TAGS),
    _MaskedSig(b"\xFF\xFF\xFF\xFF\xFF", b"<?xml", "text/xml; charset=utf-8", skip_ws=True),
    _ExactSig(b"%PDF-", "application/pdf"),
    _ExactSig(b"%!PS-Adobe-", "application/postscript"),
    # UTF BOMs.
    _MaskedSig(b"\xFF\xFF", b"\xFE\xFF", "text/plain; charset=utf-16be"),
    _MaskedSig(b"\xFF\xFF", b"\xFF\xFE", "text/plain; charset=utf-16le"),
    _MaskedSig(b"\xFF\xFF\xFF", b"\xEF\xBB\xBF", "text/plain; charset=utf-8"),
    # Images.
    _ExactSig(b"\x00\x00\x01\x00", "image/x-icon"),
    _ExactSig(b"\x00\x00\x02\x00", "image/x-icon"),
    _ExactSig(b"BM", "image/bmp"),
    _ExactSig(b"GIF87a", "image/gif"),
    _ExactSig(b"GIF89a", "image/gif"),
    _MaskedSig(
        b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF\xFF\xFF",
        b"RIFF\x00\x00\x00\x00WEBPVP",
        "image/webp",
    ),
    _ExactSig(b"\x89PNG\x0D\x0A\x1A\x0A", "image/png"),
    _ExactSig(b"\xFF\xD8\xFF", "image/jpeg"),
    # Audio and video.
    _MaskedSig(_RIFF_MASK, b"FORM\x00\x00\x00\x00AIFF", "audio/aiff"),
    _ExactSig(b"ID3", "audio/mpeg"),
    _MaskedSig(b"\xFF\xFF\xFF\xFF\xFF", b"OggS\x00", "application/ogg"),
    _MaskedSig(b"\xFF\xFF\xFF\xFF\xFF\xFF\xFF\xFF", b"MThd\x00\x00\x00\x06", "audio/midi"),
    _MaskedSig(_RIFF_MASK, b"RIFF\x00\x00\x00\x00AVI ", "video/avi"),
    _MaskedSig(_RIFF_MASK, b"RIFF\x00\x00\x00\x00WAVE", "audio/wave"),
    _match_mp4,
    _ExactSig(b"\x1A\x45\xDF\xA3", "video/webm"),
    # Fonts.
    _ExactSig(b"\x00\x01\x00\x00", "font/ttf"),
    _ExactSig(b"OTTO", "font/otf"),
    _ExactSig(b"ttcf", "font/collection"),
    _ExactSig(b"wOFF", "font/woff"),
    _ExactSig(b"wOF2", "font/woff2"),
    # Archives.
    _ExactSig(b"\x1F\x8B\x08", "application/x-gzip"),
    _ExactSig(b"PK\x03\x04", "application/zip"),
    _ExactSig(b"Rar!\x1A\x07\x00", "application/x-rar-compressed"),
    _ExactSig(b"Rar!\x1A\x07\x01\x00", "application/x-rar-compressed"),
    _ExactSig(b"\x00\x61\x73\x6D", "application/wasm"),
    _match_text,
)


def detect_content_type(data: bytes) -> str:
    """Return the MIME type of ``data``, considering at most SNIFF_LEN bytes."""
    data = data[:SNIFF_LEN]
    first_non_ws = 0
    while first_non_ws < len(data) and data[first_non_ws] in _WHITESPACE:
        first_non_ws += 1

    for sig in _SIGNATURES:
        matcher: Callable[[bytes, int], Optional[str]] = sig if callable(sig) else sig.match
        ct = matcher(data, first_non_ws)
        if ct:
            return ct
    return OCTET_STREAM


def media_type(content_type: str) -> str:
    """``text/plain; charset=utf-8`` -> ``text/plain``."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_allowed_type(content_type: str, allowed: list[str]) -> bool:
    """An empty allow-list admits everything.

    Entries match the full sniffed type case-insensitively, or just its media
    type when the entry carries no parameters.
    """
    if not allowed:
        return True
    full = content_type.lower()
    bare = media_type(content_type)
    for entry in allowed:
        e = entry.strip().lower()
        if e == full or e == bare:
            return True
    return False
