from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Union


# 64 characters, so every generated character carries 6 bits of entropy.
RANDOM_STRING_SOURCE = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVXWYZ0123456789_+"

DIR_MODE = 0o755


def random_string(length: int) -> str:
    """Return ``length`` characters drawn uniformly from RANDOM_STRING_SOURCE.

    Generated names double as unguessable file identifiers, so this always
    uses the OS CSPRNG (``secrets``), never a seeded generator.
    """
    if length < 0:
        raise ValueError("length must not be negative")
    return "".join(secrets.choice(RANDOM_STRING_SOURCE) for _ in range(length))


def create_dir_if_not_exist(path: Union[str, Path], mode: int = DIR_MODE) -> Path:
    """Create ``path`` and any missing parents. Succeeds silently if it exists."""
    target = Path(path)
    target.mkdir(mode=mode, parents=True, exist_ok=True)
    return target


def client_basename(name: str) -> str:
    """Strip directory components from a client-supplied filename.

    Browsers on Windows may send ``C:\\dir\\file.png``; treat both separators
    as directory markers.
    """
    return os.path.basename((name or "").replace("\\", "/"))


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return True


def safe_join(base_dir: Union[str, Path], *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when storing or serving
    user-controlled names.
    """
    base_dir = Path(base_dir).resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
