"""MongoDB writer."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import BulkWriteError, PyMongoError

from .base import BaseLoader, LoadResult
from ..exceptions import LoadError
from ..models.migration import TargetConfig
from ..models.record import MigrationResult
from ..models.schema import IndexSpec

logger = logging.getLogger(__name__)


class MongoLoader(BaseLoader):
    """
    Writer for a MongoDB database.

    Every operation runs under the client-side ``timeoutMS`` budget, so a
    slow server produces a per-record failure rather than a hang. Batch
    inserts are unordered; keys are assigned before sending so that a batch
    interrupted by a network error can be reconciled against the server.
    """

    def __init__(
        self,
        uri: str,
        database: str,
        timeout_ms: int = 30000,
        server_selection_timeout_ms: int = 10000,
        batch_size: int = 50,
        client: Optional[MongoClient] = None
    ):
        """
        Initialize the MongoDB writer.

        Args:
            uri: MongoDB connection string
            database: Database name
            timeout_ms: Per-operation timeout
            server_selection_timeout_ms: Timeout for finding a usable server
            batch_size: Preferred records per insert batch
            client: Pre-built client
        """
        super().__init__("mongodb", batch_size)
        self.uri = uri
        self.database_name = database
        self._client = client or MongoClient(
            uri,
            timeoutMS=timeout_ms,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
        )
        self.db = self._client[database]

    @classmethod
    def from_config(cls, config: TargetConfig, batch_size: int = 50) -> "MongoLoader":
        return cls(
            uri=config.uri,
            database=config.database,
            timeout_ms=config.timeout_ms,
            server_selection_timeout_ms=config.server_selection_timeout_ms,
            batch_size=batch_size,
        )

    def insert_one(self, collection: str, document: Dict[str, Any]) -> Any:
        doc = dict(document)
        try:
            result = self.db[collection].insert_one(doc)
        except PyMongoError as e:
            raise LoadError(f"Insert into {collection} failed: {e}") from e
        return result.inserted_id

    def insert_batch(
        self,
        collection: str,
        documents: List[Tuple[str, Dict[str, Any]]]
    ) -> LoadResult:
        """Unordered insert_many with per-record outcome."""
        result = LoadResult(collection=collection)
        result.started_at = datetime.utcnow()
        if not documents:
            result.completed_at = result.started_at
            return result

        docs = []
        for _, document in documents:
            doc = dict(document)
            doc["_id"] = ObjectId()
            docs.append(doc)

        failed: Dict[int, str] = {}
        try:
            self.db[collection].insert_many(docs, ordered=False)
        except BulkWriteError as e:
            for error in e.details.get("writeErrors", []):
                failed[error["index"]] = error.get("errmsg", "write error")
            if e.details.get("writeConcernErrors"):
                failed.update(self._reconcile(collection, docs, "write concern error"))
        except PyMongoError as e:
            logger.warning(f"Batch insert into {collection} interrupted: {e}; reconciling")
            failed = self._reconcile(collection, docs, str(e))

        now = datetime.utcnow()
        for index, (record_id, _) in enumerate(documents):
            if index in failed:
                result.add(MigrationResult(record_id=record_id, success=False, error=failed[index]))
            else:
                result.add(MigrationResult(
                    record_id=record_id,
                    target_id=docs[index]["_id"],
                    success=True,
                    loaded_at=now,
                ))

        result.completed_at = datetime.utcnow()
        return result

    def _reconcile(self, collection: str, docs: List[Dict[str, Any]], reason: str) -> Dict[int, str]:
        """Find which documents of an interrupted batch did not land."""
        try:
            present = self.find_keys(collection, [d["_id"] for d in docs])
        except LoadError:
            return {index: reason for index in range(len(docs))}
        return {
            index: reason
            for index, doc in enumerate(docs)
            if doc["_id"] not in present
        }

    def update_fields(self, collection: str, key: Any, fields: Dict[str, Any]) -> None:
        try:
            result = self.db[collection].update_one({"_id": key}, {"$set": fields})
        except PyMongoError as e:
            raise LoadError(f"Update of {collection} {key} failed: {e}") from e
        if result.matched_count == 0:
            raise LoadError(f"No {collection} document with key {key}")

    def ensure_index(self, spec: IndexSpec) -> bool:
        coll = self.db[spec.collection]
        try:
            if spec.name in coll.index_information():
                return False
            coll.create_index(list(spec.keys), name=spec.name, unique=spec.unique)
        except PyMongoError as e:
            raise LoadError(f"Index {spec.name} on {spec.collection} failed: {e}") from e
        return True

    def find_keys(self, collection: str, keys: Iterable[Any]) -> Set[Any]:
        keys = list(keys)
        if not keys:
            return set()
        try:
            cursor = self.db[collection].find({"_id": {"$in": keys}}, {"_id": 1})
            return {doc["_id"] for doc in cursor}
        except PyMongoError as e:
            raise LoadError(f"Key lookup in {collection} failed: {e}") from e

    def iter_documents(
        self,
        collection: str,
        fields: Optional[List[str]] = None
    ) -> Iterator[Dict[str, Any]]:
        projection = {name: 1 for name in fields} if fields else None
        try:
            yield from self.db[collection].find({}, projection)
        except PyMongoError as e:
            raise LoadError(f"Scan of {collection} failed: {e}") from e

    def get_document(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        try:
            return self.db[collection].find_one({"_id": key})
        except PyMongoError as e:
            raise LoadError(f"Lookup in {collection} failed: {e}") from e

    def decode_key(self, text: str) -> Any:
        return ObjectId(text) if ObjectId.is_valid(text) else text

    def validate_connection(self) -> bool:
        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"Cannot reach MongoDB: {e}")
            return False

    def close(self) -> None:
        self._client.close()
