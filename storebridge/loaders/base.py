"""Base writer interface for the target store."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple
from datetime import datetime
import logging

from ..exceptions import LoadError
from ..models.record import MigrationResult
from ..models.schema import IndexSpec

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Result of a batch insert; ``results`` follows the input order."""
    collection: str
    total_attempted: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    results: List[MigrationResult] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_ids: List[Any] = field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success_rate(self) -> float:
        if self.total_attempted == 0:
            return 0.0
        return self.total_succeeded / self.total_attempted

    def add(self, result: MigrationResult) -> None:
        self.results.append(result)
        self.total_attempted += 1
        if result.success:
            self.total_succeeded += 1
            self.created_ids.append(result.target_id)
        else:
            self.total_failed += 1
            self.errors.append({
                "record_id": result.record_id,
                "error": result.error,
                "error_code": result.error_code,
            })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "total_attempted": self.total_attempted,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "success_rate": self.success_rate,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "created_ids": [str(k) for k in self.created_ids],
            "errors": self.errors,
        }


class BaseLoader(ABC):
    """
    Base class for target store writers.

    Writers insert documents and hand back the key the store generated,
    replace individual fields of existing documents, and define indexes.
    They never delete and never change fields other than the key.
    """

    def __init__(self, target_service: str, batch_size: int = 50):
        """
        Initialize the writer.

        Args:
            target_service: Name of the target store
            batch_size: Preferred number of records per insert batch
        """
        self.target_service = target_service
        self.batch_size = batch_size

    @abstractmethod
    def insert_one(self, collection: str, document: Dict[str, Any]) -> Any:
        """
        Insert a document.

        Returns:
            The generated key

        Raises:
            LoadError: if the store rejects the document or times out
        """

    def insert_batch(
        self,
        collection: str,
        documents: List[Tuple[str, Dict[str, Any]]]
    ) -> LoadResult:
        """
        Insert a micro-batch of (record id, document) pairs.

        A failing record does not stop the others; the result reports each
        record's key or error, in input order.
        """
        result = LoadResult(collection=collection)
        result.started_at = datetime.utcnow()

        for record_id, document in documents:
            try:
                key = self.insert_one(collection, document)
                result.add(MigrationResult(
                    record_id=record_id,
                    target_id=key,
                    success=True,
                    loaded_at=datetime.utcnow(),
                ))
            except LoadError as e:
                result.add(MigrationResult(record_id=record_id, success=False, error=str(e)))
                logger.error(f"Failed to insert {collection} record {record_id}: {e}")

        result.completed_at = datetime.utcnow()
        return result

    @abstractmethod
    def update_fields(self, collection: str, key: Any, fields: Dict[str, Any]) -> None:
        """
        Replace the given fields of an existing document.

        Raises:
            LoadError: if the update fails or the document does not exist
        """

    @abstractmethod
    def ensure_index(self, spec: IndexSpec) -> bool:
        """
        Define an index unless one with the same name exists.

        Returns:
            True if the index was created, False if it already existed
        """

    @abstractmethod
    def find_keys(self, collection: str, keys: Iterable[Any]) -> Set[Any]:
        """Subset of ``keys`` that exist in ``collection``."""

    @abstractmethod
    def iter_documents(
        self,
        collection: str,
        fields: Optional[List[str]] = None
    ) -> Iterator[Dict[str, Any]]:
        """Iterate over every document of a collection."""

    def get_document(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        for document in self.iter_documents(collection):
            if document.get("_id") == key:
                return document
        return None

    def decode_key(self, text: str) -> Any:
        """Convert a key read back from the manifest to the store's key type."""
        return text

    def validate_connection(self) -> bool:
        """Validate the connection to the target store."""
        return True

    def close(self) -> None:
        """Release connections."""
