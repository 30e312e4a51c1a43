"""
Payload envelopes.

Some remotes nest the record array inside a response object, e.g.
``{"meta": {...}, "payload": {"items": [...]}}``. An :class:`Envelope` keeps
the shell of such a response (with the array emptied) together with the path
the array lives at, so reads can hand callers the same shape back.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import copy

from .paths import FieldPath


@dataclass(frozen=True)
class Envelope:
    """Shell of a wrapped payload plus the path of its record array."""
    path: FieldPath
    value: Any

    @classmethod
    def unwrap(cls, payload: Any, path: FieldPath) -> Tuple["Envelope", List[Dict[str, Any]]]:
        """Split a wrapped payload into its envelope and the nested records.

        The caller's payload is not modified.
        """
        shell = copy.deepcopy(payload)
        nested = path.get(shell)
        if nested is None:
            records: List[Dict[str, Any]] = []
        elif isinstance(nested, list):
            records = nested
        else:
            records = [nested]
        path.set(shell, [])
        return cls(path=path, value=shell), records

    def wrap(self, records: List[Dict[str, Any]]) -> Any:
        """A new payload with ``records`` placed back at the envelope path."""
        wrapped = copy.deepcopy(self.value)
        self.path.set(wrapped, copy.deepcopy(records))
        return wrapped

    def to_dict(self) -> Dict[str, Any]:
        return {"path": str(self.path), "value": copy.deepcopy(self.value)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Envelope"]:
        if not data:
            return None
        return cls(path=FieldPath.parse(data["path"]), value=data.get("value"))


def wrap_for_write(record: Dict[str, Any], path: Optional[FieldPath]) -> Dict[str, Any]:
    """Nest an outgoing record at ``path``; no path means the record is the body."""
    if path is None:
        return record
    return path.set({}, record)


__all__ = ['Envelope', 'wrap_for_write']
