"""Data types shared by the sync engine, the local collection and the remote client."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

Record = dict[str, Any]

# Per-field value converters, e.g. {"created": datetime.fromisoformat}
FieldTransforms = dict[str, Callable[[Any], Any]]


class EventKind(Enum):
    """Kind of change described by a realtime event."""

    CREATED = "create"
    MODIFIED = "update"
    REMOVED = "delete"

    @classmethod
    def from_action(cls, action: str) -> "EventKind":
        """Parse a wire action ("create", "update", "delete")."""
        try:
            return cls(action)
        except ValueError:
            raise ValueError(f"Unknown realtime action: {action!r}") from None


@dataclass
class RealtimeEvent:
    """A change notification delivered by the realtime stream."""

    kind: EventKind
    record: Record

    @property
    def record_id(self) -> str:
        return self.record["id"]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RealtimeEvent":
        """Create from a decoded realtime message ({"action", "record"})."""
        return cls(
            kind=EventKind.from_action(data["action"]),
            record=data["record"],
        )


class ApplyKind(Enum):
    """Operation applied to the local collection."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class ApplyOp:
    """One insert/update/delete written to the local collection."""

    kind: ApplyKind
    value: Record
    key_field: str = "id"

    @property
    def key(self) -> str:
        return self.value[self.key_field]


class MutationKind(Enum):
    """Kind of an optimistic mutation handed to a dispatcher."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Mutation:
    """An optimistic local mutation awaiting remote persistence.

    ``modified`` carries the full record for inserts, ``changes`` the partial
    payload for updates. Deletes carry only the key.
    """

    kind: MutationKind
    key: str
    modified: Record | None = None
    changes: Record | None = None


@dataclass
class FetchOptions:
    """Options for the initial bulk load."""

    sort: str | None = None
    filter: str | None = None
    expand: str | None = None

    def to_params(self) -> dict[str, str]:
        """Query parameters for the records list endpoint, skipping unset ones."""
        params = {}
        if self.sort:
            params["sort"] = self.sort
        if self.filter:
            params["filter"] = self.filter
        if self.expand:
            params["expand"] = self.expand
        return params


def convert(record: Record, transforms: FieldTransforms | None = None) -> Record:
    """Return a copy of ``record`` with field converters applied.

    Fields absent from the record are left alone, so the same transforms work
    for full records and partial update payloads.
    """
    result = dict(record)
    if not transforms:
        return result

    for field_name, converter in transforms.items():
        if field_name in result and callable(converter):
            result[field_name] = converter(result[field_name])
    return result
