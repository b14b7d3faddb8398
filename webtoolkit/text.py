from __future__ import annotations

import re

from .errors import SlugError


# ASCII only: letters from other scripts collapse into separators.
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Turn free text into a URL-safe slug.

    "Hello World" -> "hello-world". Runs of anything outside [a-z0-9] (after
    lower-casing) become one hyphen; leading/trailing hyphens are dropped.
    """
    if not text:
        raise SlugError("empty string not permitted")

    slug = _NON_SLUG_RE.sub("-", text.lower()).strip("-")
    if not slug:
        raise SlugError("after removing characters, slug is zero length")
    return slug
