"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from .reference import BackLink, DeferredReference, Pending, RelationKind


@dataclass
class ValidationError:
    """A referential integrity problem found in the target store."""
    entity: str
    record_key: str
    field: str
    message: str
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity": self.entity,
            "record_key": self.record_key,
            "field": self.field,
            "message": self.message,
            "value": str(self.value) if self.value is not None else None,
        }


@dataclass
class SourceRecord:
    """A record read from the source store."""
    id: str
    source_entity: str
    data: Dict[str, Any]
    source_collection: str = ""
    extracted_at: datetime = field(default_factory=datetime.utcnow)
    source_type: str = "firestore"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "source_entity": self.source_entity,
            "source_collection": self.source_collection,
            "data": self.data,
            "extracted_at": self.extracted_at.isoformat(),
            "source_type": self.source_type,
            "metadata": self.metadata,
        }


@dataclass
class TransformedRecord:
    """A record reshaped for the target store, not yet written."""
    source_id: str
    entity: str
    collection: str
    data: Dict[str, Any]
    pending: Dict[str, Tuple[Pending, str, RelationKind]] = field(default_factory=dict)
    broken_references: List[Dict[str, Any]] = field(default_factory=list)
    enum_fallbacks: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    back_links: List[BackLink] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_id": self.source_id,
            "entity": self.entity,
            "collection": self.collection,
            "data": self.data,
            "pending": {
                path: {"referenced_entity": target, "old_keys": list(ref.old_keys)}
                for path, (ref, target, _kind) in self.pending.items()
            },
            "broken_references": self.broken_references,
            "enum_fallbacks": self.enum_fallbacks,
            "warnings": self.warnings,
            "back_links": [
                {"entity": link.entity, "key": str(link.key), "field": link.field}
                for link in self.back_links
            ],
        }

    def deferred_references(self, new_key: Any) -> List[DeferredReference]:
        """
        Bind pending relations to the key the record was written under.

        Back-links become references on the owning record whose only old
        key is this record's source id; the patcher merges them with the
        owner's own list.
        """
        deferred = []
        for path, (ref, target, kind) in self.pending.items():
            if not ref.old_keys:
                continue
            deferred.append(DeferredReference(
                entity=self.entity,
                new_key=new_key,
                field=path,
                referenced_entity=target,
                kind=kind,
                old_keys=ref.old_keys,
                values=ref.values,
            ))
        for link in self.back_links:
            deferred.append(DeferredReference(
                entity=link.entity,
                new_key=link.key,
                field=link.field,
                referenced_entity=self.entity,
                kind=link.kind,
                old_keys=(self.source_id,),
            ))
        return deferred

    def document(self) -> Dict[str, Any]:
        """Copy of the target document, safe to hand to a writer."""
        return dict(self.data)


@dataclass
class MigrationResult:
    """Result of attempting to write one record to the target."""
    record_id: str
    target_id: Optional[Any] = None  # key assigned by the target store
    success: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    loaded_at: Optional[datetime] = None
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record_id": self.record_id,
            "target_id": str(self.target_id) if self.target_id is not None else None,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
            "retry_count": self.retry_count,
        }
