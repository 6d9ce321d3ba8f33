"""Base source reader interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional
import logging

from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class BaseExtractor(ABC):
    """
    Base class for all source readers.

    A reader produces the raw records of one collection as a lazy, finite
    iterator. Reading never changes the source, and a read started without
    a cursor always scans the collection from the beginning. Store errors
    are raised as ExtractionError; readers do not retry.
    """

    source_type = "unknown"

    def __init__(self, page_size: int = 300):
        """
        Initialize the reader.

        Args:
            page_size: Number of documents fetched per round trip
        """
        self.page_size = page_size
        self._read_count = 0

    @abstractmethod
    def read(
        self,
        collection: str,
        entity: str,
        cursor: Optional[str] = None
    ) -> Iterator[SourceRecord]:
        """
        Iterate over every record of a collection.

        Args:
            collection: Source collection name
            entity: Entity type the records belong to
            cursor: Resume position returned by ``cursor_for``; None for a full scan

        Yields:
            SourceRecord objects
        """

    def cursor_for(self, record: SourceRecord) -> Optional[str]:
        """Resume position just after ``record``."""
        return record.id

    def stream(
        self,
        collection: str,
        entity: str,
        batch_size: int,
        cursor: Optional[str] = None
    ) -> Iterator[List[SourceRecord]]:
        """
        Read records in batches.

        Args:
            collection: Source collection name
            entity: Entity type the records belong to
            batch_size: Size of each batch
            cursor: Optional resume position

        Yields:
            Batches of SourceRecord objects
        """
        batch: List[SourceRecord] = []
        for record in self.read(collection, entity, cursor):
            batch.append(record)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def create_record(
        self,
        id: str,
        collection: str,
        entity: str,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None
    ) -> SourceRecord:
        """Wrap a raw document as a SourceRecord."""
        self._read_count += 1
        return SourceRecord(
            id=str(id),
            source_entity=entity,
            source_collection=collection,
            data=data,
            source_type=self.source_type,
            metadata=metadata or {},
        )

    @property
    def read_count(self) -> int:
        return self._read_count

    def close(self) -> None:
        """Release connections."""
