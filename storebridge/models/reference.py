"""Tagged reference values produced by the field transformer."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple, Union


class RelationKind(str, Enum):
    """Shape of a foreign-key field in the target document."""
    ONE = "one"  # scalar key
    MANY = "many"  # list of keys
    KEYED = "keyed"  # map of key -> label

    def empty(self) -> Any:
        """Placeholder stored while a reference is pending."""
        if self is RelationKind.MANY:
            return []
        if self is RelationKind.KEYED:
            return {}
        return None


@dataclass(frozen=True)
class Resolved:
    """Final value of a foreign-key field, already expressed in new keys."""
    value: Any


@dataclass(frozen=True)
class Pending:
    """Old keys awaiting the back-reference pass."""
    old_keys: Tuple[str, ...]
    values: Tuple[Any, ...] = ()  # labels for keyed maps, aligned with old_keys


Reference = Union[Resolved, Pending]


@dataclass(frozen=True)
class DeferredReference:
    """A pending relation bound to the written target record."""
    entity: str
    new_key: Any
    field: str
    referenced_entity: str
    kind: RelationKind
    old_keys: Tuple[str, ...]
    values: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity": self.entity,
            "new_key": str(self.new_key),
            "field": self.field,
            "referenced_entity": self.referenced_entity,
            "kind": self.kind.value,
            "old_keys": list(self.old_keys),
        }


@dataclass(frozen=True)
class BackLink:
    """A list on an already-written record that must also hold this record."""
    entity: str
    key: Any  # new key of the record owning the list
    field: str
    kind: RelationKind = RelationKind.MANY
