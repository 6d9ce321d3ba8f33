"""Reader for JSON exports of a Firestore database."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .base import BaseExtractor
from ..exceptions import ExtractionError
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class JSONExportExtractor(BaseExtractor):
    """
    Reader for a directory of collection dumps.

    Each collection lives in ``<export_dir>/<collection>.json`` holding either
    an object keyed by document id or a list of documents carrying an ``id``
    field. Documents are served in id order so a cursor (the last id read)
    resumes deterministically. A missing file reads as an empty collection.
    """

    source_type = "json_export"

    def __init__(self, export_dir: str, id_field: str = "id", encoding: str = "utf-8"):
        """
        Initialize the export reader.

        Args:
            export_dir: Directory containing the collection files
            id_field: Field holding the document id in list-style files
            encoding: File encoding
        """
        super().__init__()
        self.export_dir = Path(export_dir)
        self.id_field = id_field
        self.encoding = encoding

    def _path(self, collection: str) -> Path:
        return self.export_dir / f"{collection}.json"

    def _load(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        path = self._path(collection)
        if not self.export_dir.is_dir():
            raise ExtractionError(f"Export directory not found: {self.export_dir}", collection)
        if not path.exists():
            logger.warning(f"No export file for {collection} at {path}")
            return []

        try:
            with open(path, "r", encoding=self.encoding) as f:
                content = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ExtractionError(f"Cannot read {path}: {e}", collection) from e

        documents: List[Tuple[str, Dict[str, Any]]] = []
        if isinstance(content, dict):
            for doc_id, data in content.items():
                documents.append((str(doc_id), dict(data or {})))
        elif isinstance(content, list):
            for index, data in enumerate(content):
                data = dict(data or {})
                doc_id = data.pop(self.id_field, None)
                if doc_id is None:
                    raise ExtractionError(
                        f"Document {index} in {path} has no '{self.id_field}' field", collection
                    )
                documents.append((str(doc_id), data))
        else:
            raise ExtractionError(f"Unsupported export layout in {path}", collection)

        documents.sort(key=lambda item: item[0])
        return documents

    def read(
        self,
        collection: str,
        entity: str,
        cursor: Optional[str] = None
    ) -> Iterator[SourceRecord]:
        """Iterate over the documents of one export file."""
        for doc_id, data in self._load(collection):
            if cursor is not None and doc_id <= cursor:
                continue
            yield self.create_record(
                doc_id, collection, entity, data,
                metadata={"file": str(self._path(collection))},
            )
