"""
Dotted field-path addressing for record fields and payload envelopes.

``"meta.id"`` addresses ``record["meta"]["id"]``; integer segments such as
``"pages.0.items"`` address list positions.
"""

from dataclasses import dataclass
from typing import Any, Tuple, Union


_MISSING = object()

Segment = Union[str, int]


@dataclass(frozen=True)
class FieldPath:
    """A parsed dotted path."""
    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, path: Union[str, "FieldPath"]) -> "FieldPath":
        if isinstance(path, FieldPath):
            return path
        if not isinstance(path, str) or not path.strip():
            raise ValueError(f"Invalid field path: {path!r}")
        segments = []
        for part in path.split("."):
            if part == "":
                raise ValueError(f"Invalid field path: {path!r}")
            segments.append(int(part) if part.isdigit() else part)
        return cls(tuple(segments))

    def __str__(self) -> str:
        return ".".join(str(s) for s in self.segments)

    def get(self, obj: Any, default: Any = None) -> Any:
        current = obj
        for segment in self.segments:
            current = _step(current, segment)
            if current is _MISSING:
                return default
        return current

    def has(self, obj: Any) -> bool:
        return self.get(obj, _MISSING) is not _MISSING

    def set(self, obj: Any, value: Any) -> Any:
        """Set ``value`` at this path, creating intermediate dicts. Returns ``obj``."""
        current = obj
        for segment, following in zip(self.segments, self.segments[1:]):
            nxt = _step(current, segment)
            if nxt is _MISSING or not isinstance(nxt, (dict, list)):
                nxt = [] if isinstance(following, int) else {}
                _assign(current, segment, nxt)
            current = nxt
        _assign(current, self.segments[-1], value)
        return obj


def _step(container: Any, segment: Segment) -> Any:
    if isinstance(container, dict):
        if segment in container:
            return container[segment]
        # "0" keys in JSON objects
        return container.get(str(segment), _MISSING)
    if isinstance(container, list) and isinstance(segment, int):
        return container[segment] if 0 <= segment < len(container) else _MISSING
    return _MISSING


def _assign(container: Any, segment: Segment, value: Any) -> None:
    if isinstance(container, list) and isinstance(segment, int):
        while len(container) <= segment:
            container.append(None)
        container[segment] = value
    elif isinstance(container, dict):
        container[segment] = value
    else:
        raise TypeError(f"Cannot set '{segment}' on {type(container).__name__}")


__all__ = ['FieldPath']
