from __future__ import annotations

import struct
import zlib
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

import server
from webtoolkit.config import ToolsConfig


def _png_chunk(tag: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(tag + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)


def make_png() -> bytes:
    """A valid 1x1 RGB PNG."""
    header = struct.pack(">IIBBBBB", 1, 1, 8, 2, 0, 0, 0)
    pixels = zlib.compress(b"\x00\xff\x00\x00")
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", pixels)
        + _png_chunk(b"IEND", b"")
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads" / "nested"


@pytest.fixture
def static_dir(tmp_path: Path) -> Path:
    path = tmp_path / "static"
    path.mkdir()
    return path


@pytest.fixture
def make_client(upload_dir: Path, static_dir: Path) -> Callable[..., TestClient]:
    def _make(**overrides) -> TestClient:
        config = ToolsConfig(**overrides)
        app = server.create_app(config=config, upload_dir=upload_dir, static_dir=static_dir)
        return TestClient(app)

    return _make
