"""Firestore reader over the REST API (production endpoint or emulator)."""

import base64
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests
from dateutil import parser as date_parser

from .base import BaseExtractor
from ..exceptions import ExtractionError
from ..models.migration import SourceConfig
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)

FIRESTORE_API = "https://firestore.googleapis.com/v1"


def decode_value(value: Dict[str, Any]) -> Any:
    """Convert a Firestore REST typed value into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return date_parser.isoparse(value["timestampValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "bytesValue" in value:
        return base64.b64decode(value["bytesValue"])
    if "referenceValue" in value:
        # keep only the document id, which is what other documents store
        return value["referenceValue"].rsplit("/", 1)[-1]
    if "geoPointValue" in value:
        point = value["geoPointValue"]
        return {"latitude": point.get("latitude", 0.0), "longitude": point.get("longitude", 0.0)}
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise ValueError(f"Unknown Firestore value type: {sorted(value.keys())}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {name: decode_value(v) for name, v in fields.items()}


class FirestoreRESTExtractor(BaseExtractor):
    """
    Reader for Firestore through ``documents:runQuery``.

    Uses a bearer access token against the public endpoint, or no auth
    against a local emulator. Documents are ordered by name and the cursor
    is the last document id, matching the SDK reader. The session has no
    retry adapter; retries belong to the orchestrator.
    """

    source_type = "firestore_rest"

    def __init__(
        self,
        project_id: str,
        access_token: Optional[str] = None,
        emulator_host: Optional[str] = None,
        database: str = "(default)",
        page_size: int = 300,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the REST reader.

        Args:
            project_id: Firebase project id
            access_token: OAuth2 access token for the public endpoint
            emulator_host: host:port of a Firestore emulator
            database: Firestore database id
            page_size: Documents per query page
            timeout: Per-request timeout in seconds
            session: Custom requests session
        """
        super().__init__(page_size)
        self.project_id = project_id
        self.access_token = access_token
        self.emulator_host = emulator_host
        self.database = database
        self.timeout = timeout
        self._session = session or self._create_session()

    @classmethod
    def from_config(cls, config: SourceConfig) -> "FirestoreRESTExtractor":
        return cls(
            project_id=config.project_id or "",
            access_token=config.access_token,
            emulator_host=config.emulator_host,
            page_size=config.page_size,
            timeout=config.timeout,
        )

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication."""
        session = requests.Session()
        if self.access_token and not self.emulator_host:
            session.headers["Authorization"] = f"Bearer {self.access_token}"
        session.headers["Content-Type"] = "application/json"
        return session

    @property
    def base_url(self) -> str:
        if self.emulator_host:
            return f"http://{self.emulator_host}/v1"
        return FIRESTORE_API

    @property
    def documents_path(self) -> str:
        return f"projects/{self.project_id}/databases/{self.database}/documents"

    def _query(self, collection: str, last_id: Optional[str]) -> Dict[str, Any]:
        structured: Dict[str, Any] = {
            "from": [{"collectionId": collection}],
            "orderBy": [{"field": {"fieldPath": "__name__"}, "direction": "ASCENDING"}],
            "limit": self.page_size,
        }
        if last_id is not None:
            structured["startAt"] = {
                "values": [{"referenceValue": f"{self.documents_path}/{collection}/{last_id}"}],
                "before": False,
            }
        return {"structuredQuery": structured}

    def _fetch_page(self, collection: str, last_id: Optional[str]) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/{self.documents_path}:runQuery"
        try:
            response = self._session.post(url, json=self._query(collection, last_id), timeout=self.timeout)
        except requests.RequestException as e:
            raise ExtractionError(f"Failed to read {collection}: {e}", collection) from e

        if response.status_code in (401, 403):
            raise ExtractionError(
                f"Not authorized to read {collection} (HTTP {response.status_code})", collection
            )
        if response.status_code >= 400:
            raise ExtractionError(
                f"Failed to read {collection}: HTTP {response.status_code} {response.text[:200]}",
                collection,
            )

        try:
            rows = response.json()
        except ValueError as e:
            raise ExtractionError(f"Invalid response reading {collection}: {e}", collection) from e

        return [row["document"] for row in rows if isinstance(row, dict) and "document" in row]

    def read(
        self,
        collection: str,
        entity: str,
        cursor: Optional[str] = None
    ) -> Iterator[SourceRecord]:
        """Page through a collection in document-name order."""
        last_id = cursor

        while True:
            documents = self._fetch_page(collection, last_id)

            for document in documents:
                doc_id = document["name"].rsplit("/", 1)[-1]
                try:
                    data = decode_fields(document.get("fields", {}))
                except ValueError as e:
                    raise ExtractionError(f"Cannot decode {collection}/{doc_id}: {e}", collection) from e
                yield self.create_record(
                    doc_id, collection, entity, data,
                    metadata={"update_time": document.get("updateTime")},
                )

            if len(documents) < self.page_size:
                break
            last_id = documents[-1]["name"].rsplit("/", 1)[-1]

    def close(self) -> None:
        self._session.close()
