"""In-memory target store, used for dry runs and tests."""

import copy
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from bson import ObjectId

from .base import BaseLoader
from ..exceptions import LoadError
from ..models.schema import IndexSpec

logger = logging.getLogger(__name__)


class MemoryLoader(BaseLoader):
    """
    Writer that keeps collections in process memory.

    Keys are generated as ObjectIds, as the MongoDB server would, so the
    manifest and the patcher behave the same as against a real database.
    Stored documents are deep copies; callers never share state with them.
    """

    def __init__(self, batch_size: int = 50):
        super().__init__("memory", batch_size)
        self._lock = threading.Lock()
        self.collections: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.indexes: Dict[str, Dict[str, IndexSpec]] = {}
        self.insert_count = 0
        self.update_count = 0

    def insert_one(self, collection: str, document: Dict[str, Any]) -> Any:
        doc = copy.deepcopy(document)
        key = doc.get("_id") or ObjectId()
        doc["_id"] = key
        with self._lock:
            store = self.collections.setdefault(collection, {})
            if key in store:
                raise LoadError(f"Duplicate key {key} in {collection}")
            store[key] = doc
            self.insert_count += 1
        return key

    def update_fields(self, collection: str, key: Any, fields: Dict[str, Any]) -> None:
        with self._lock:
            doc = self.collections.get(collection, {}).get(key)
            if doc is None:
                raise LoadError(f"No {collection} document with key {key}")
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(value))
            self.update_count += 1

    def ensure_index(self, spec: IndexSpec) -> bool:
        with self._lock:
            existing = self.indexes.setdefault(spec.collection, {})
            if spec.name in existing:
                return False
            existing[spec.name] = spec
        return True

    def find_keys(self, collection: str, keys: Iterable[Any]) -> Set[Any]:
        store = self.collections.get(collection, {})
        return {key for key in keys if key in store}

    def iter_documents(
        self,
        collection: str,
        fields: Optional[List[str]] = None
    ) -> Iterator[Dict[str, Any]]:
        with self._lock:
            docs = list(self.collections.get(collection, {}).values())
        for doc in docs:
            if fields:
                projected = {"_id": doc["_id"]}
                projected.update({name: doc[name] for name in fields if name in doc})
                yield copy.deepcopy(projected)
            else:
                yield copy.deepcopy(doc)

    def get_document(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        doc = self.collections.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    def count(self, collection: str) -> int:
        return len(self.collections.get(collection, {}))

    def decode_key(self, text: str) -> Any:
        return ObjectId(text) if ObjectId.is_valid(text) else text


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value
