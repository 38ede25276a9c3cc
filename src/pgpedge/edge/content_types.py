"""MIME type inference for cached assets."""

from __future__ import annotations

from typing import Optional

TEXT_PLAIN = "text/plain; charset=utf-8"
OCTET_STREAM = "application/octet-stream"

_TEXT_SUFFIXES = ("policy", "host", ".txt")


def resolve_content_type(key: str, upstream: Optional[str] = None) -> str:
    """Pick the content type stored with ``key``.

    WKD ``policy`` files, ``host`` markers and ``.txt`` documents are always
    plain text. Otherwise the mirror's declared type wins unless it is HTML,
    which only ever comes from mirror error pages.
    """

    if key.lower().endswith(_TEXT_SUFFIXES):
        return TEXT_PLAIN
    if upstream and "text/html" not in upstream.lower():
        return upstream
    return OCTET_STREAM
