"""Request path canonicalisation into asset keys."""

from __future__ import annotations

from typing import Final, Union


class _RootSentinel:
    __slots__ = ()

    def __repr__(self) -> str:
        return "ROOT"


ROOT: Final = _RootSentinel()

_FORBIDDEN_SEGMENTS = frozenset({".", ".."})


class InvalidAssetPath(ValueError):
    """Raised when a request path can never name a cached asset."""

    def __init__(self, path: str) -> None:
        super().__init__(f"invalid asset path: {path!r}")
        self.path = path


def normalize_path(path: str) -> Union[str, _RootSentinel]:
    """Return the canonical asset key for ``path`` or :data:`ROOT` for the bare root.

    Repeated and trailing slashes collapse, surrounding whitespace is trimmed
    from every segment, and dot segments or embedded NUL bytes are rejected
    with :class:`InvalidAssetPath`. Normalising a key twice yields the same key.
    """

    if not path or path == "/":
        return ROOT

    segments = [segment.strip() for segment in path.split("/")]
    segments = [segment for segment in segments if segment]
    if not segments:
        return ROOT

    for segment in segments:
        if segment in _FORBIDDEN_SEGMENTS or "\x00" in segment:
            raise InvalidAssetPath(path)

    return "/" + "/".join(segments)
