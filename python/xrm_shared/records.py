"""xrm_shared.records: minimal Dataverse record types.

Record, RecordReference and RecordCollection mirror the host SDK shapes the
context resolvers consume. Records are attribute bags keyed by attribute
logical name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional


@dataclass
class OptionSetValue:
    value: int


@dataclass
class Money:
    value: Decimal


@dataclass
class RecordReference:
    """Reference-only record: logical name and id, no attributes."""

    logical_name: str
    id: Optional[str] = None
    name: Optional[str] = None

    def to_record(self) -> "Record":
        return Record(self.logical_name, self.id)


class Record:
    """Attribute bag identified by a logical name and an optional id."""

    def __init__(
        self,
        logical_name: str,
        id: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.logical_name = logical_name
        self.id = id
        self.attributes: Dict[str, Any] = dict(attributes or {})

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.attributes

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def to_reference(self) -> RecordReference:
        return RecordReference(self.logical_name, self.id)

    def copy(self) -> "Record":
        return Record(self.logical_name, self.id, self.attributes)

    def merge(self, other: Optional["Record"]) -> "Record":
        """Return a new record holding this record's attributes plus the missing ones from ``other``.

        This record is the base: on a conflicting key its value is kept.
        Neither operand is modified.
        """
        result = self.copy()
        if other is None:
            return result
        if result.id is None:
            result.id = other.id
        for key, value in other.attributes.items():
            if key not in result.attributes:
                result.attributes[key] = value
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return (
            self.logical_name == other.logical_name
            and self.id == other.id
            and self.attributes == other.attributes
        )

    def __repr__(self) -> str:
        return f"Record({self.logical_name!r}, {self.id!r}, {self.attributes!r})"


def merge(base: Optional[Record], other: Optional[Record]) -> Optional[Record]:
    """Null-tolerant ``Record.merge``; base wins on conflicting keys."""
    if base is None:
        return other.copy() if other is not None else None
    return base.merge(other)


@dataclass
class RecordCollection:
    """Ordered collection of records, as delivered in the ``Targets`` parameter."""

    entities: List[Record] = field(default_factory=list)
    logical_name: Optional[str] = None

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.entities)

    def __getitem__(self, index: int) -> Record:
        return self.entities[index]
