from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(environ: Mapping[str, str], name: str) -> list[str]:
    raw = environ.get(name) or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


# Built-in limits; a config value of 0 falls back to these.
BUILTIN_MAX_UPLOAD_BYTES = 1024 * 1024 * 1024  # 1GiB
BUILTIN_MAX_JSON_BYTES = 10 * 1024 * 1024  # 10MiB
BUILTIN_MAX_XML_BYTES = 10 * 1024 * 1024  # 10MiB

# Process-wide defaults. Override with WEBTOOLKIT_* env vars.
MAX_UPLOAD_BYTES = _env_int(os.environ, "WEBTOOLKIT_MAX_UPLOAD_BYTES", BUILTIN_MAX_UPLOAD_BYTES)
MAX_JSON_BYTES = _env_int(os.environ, "WEBTOOLKIT_MAX_JSON_BYTES", BUILTIN_MAX_JSON_BYTES)
MAX_XML_BYTES = _env_int(os.environ, "WEBTOOLKIT_MAX_XML_BYTES", BUILTIN_MAX_XML_BYTES)
ALLOWED_FILE_TYPES = _env_list(os.environ, "WEBTOOLKIT_ALLOWED_FILE_TYPES")
ALLOW_UNKNOWN_FIELDS = _env_bool(os.environ, "WEBTOOLKIT_ALLOW_UNKNOWN_FIELDS", False)

# Directories used by the bundled demo host (server.py).
UPLOAD_DIR = os.environ.get("WEBTOOLKIT_UPLOAD_DIR", os.path.abspath("./uploads"))
STATIC_DIR = os.environ.get("WEBTOOLKIT_STATIC_DIR", os.path.abspath("./static"))

# Bytes inspected when sniffing an uploaded part's content type.
SNIFF_LEN = 512

# Length of the random stem given to renamed uploads.
RANDOM_NAME_LENGTH = 25


@dataclass
class ToolsConfig:
    """Limits and policies shared by every toolkit operation.

    Build one per application and pass it to the calls that need it. The
    object is only read while a call is running, so sharing it between
    concurrent requests is fine as long as nobody mutates it meanwhile.
    """

    max_upload_bytes: int = MAX_UPLOAD_BYTES
    allowed_file_types: list[str] = field(default_factory=lambda: list(ALLOWED_FILE_TYPES))
    max_json_bytes: int = MAX_JSON_BYTES
    max_xml_bytes: int = MAX_XML_BYTES
    allow_unknown_fields: bool = ALLOW_UNKNOWN_FIELDS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ToolsConfig:
        env = os.environ if environ is None else environ
        return cls(
            max_upload_bytes=_env_int(env, "WEBTOOLKIT_MAX_UPLOAD_BYTES", BUILTIN_MAX_UPLOAD_BYTES),
            allowed_file_types=_env_list(env, "WEBTOOLKIT_ALLOWED_FILE_TYPES"),
            max_json_bytes=_env_int(env, "WEBTOOLKIT_MAX_JSON_BYTES", BUILTIN_MAX_JSON_BYTES),
            max_xml_bytes=_env_int(env, "WEBTOOLKIT_MAX_XML_BYTES", BUILTIN_MAX_XML_BYTES),
            allow_unknown_fields=_env_bool(env, "WEBTOOLKIT_ALLOW_UNKNOWN_FIELDS", False),
        )

    # Effective limits are computed per call and never written back.
    def upload_limit(self) -> int:
        return self.max_upload_bytes or BUILTIN_MAX_UPLOAD_BYTES

    def json_limit(self) -> int:
        return self.max_json_bytes or BUILTIN_MAX_JSON_BYTES

    def xml_limit(self) -> int:
        return self.max_xml_bytes or BUILTIN_MAX_XML_BYTES


def resolve_config(config: Optional[ToolsConfig]) -> ToolsConfig:
    return config if config is not None else ToolsConfig()
