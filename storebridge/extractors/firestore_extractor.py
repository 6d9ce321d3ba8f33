"""Firestore reader using the firebase-admin SDK."""

import logging
import uuid
from typing import Any, Dict, Iterator, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions

from .base import BaseExtractor
from ..exceptions import ExtractionError
from ..models.migration import SourceConfig
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)

DOCUMENT_ID = "__name__"


class FirestoreExtractor(BaseExtractor):
    """
    Reader for a Firestore database through the Admin SDK.

    Collections are paged in document-id order; the cursor is the id of the
    last document read. Calls are made with ``retry=None`` and an explicit
    timeout so that failures surface immediately to the orchestrator.
    """

    source_type = "firestore"

    def __init__(
        self,
        project_id: Optional[str] = None,
        client_email: Optional[str] = None,
        private_key: Optional[str] = None,
        credentials_file: Optional[str] = None,
        page_size: int = 300,
        timeout: float = 60.0,
        client: Optional[Any] = None
    ):
        """
        Initialize the Firestore reader.

        Args:
            project_id: Firebase project id
            client_email: Service account email
            private_key: Service account private key (PEM)
            credentials_file: Path to a service account JSON file, used instead
                of the individual fields when given
            page_size: Documents per query page
            timeout: Per-call timeout in seconds
            client: Pre-built Firestore client
        """
        super().__init__(page_size)
        self.project_id = project_id
        self.client_email = client_email
        self.private_key = private_key
        self.credentials_file = credentials_file
        self.timeout = timeout
        self._client = client
        self._app = None

    @classmethod
    def from_config(cls, config: SourceConfig) -> "FirestoreExtractor":
        return cls(
            project_id=config.project_id,
            client_email=config.client_email,
            private_key=config.private_key,
            credentials_file=config.credentials_file,
            page_size=config.page_size,
            timeout=config.timeout,
        )

    def _certificate(self) -> credentials.Certificate:
        if self.credentials_file:
            return credentials.Certificate(self.credentials_file)
        return credentials.Certificate({
            "type": "service_account",
            "project_id": self.project_id,
            "client_email": self.client_email,
            "private_key": self.private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        })

    @property
    def client(self):
        """Get or create the Firestore client."""
        if self._client is None:
            try:
                options: Dict[str, Any] = {}
                if self.project_id:
                    options["projectId"] = self.project_id
                self._app = firebase_admin.initialize_app(
                    self._certificate(), options, name=f"storebridge-{uuid.uuid4().hex[:8]}"
                )
                self._client = firestore.client(self._app)
            except (ValueError, IOError) as e:
                raise ExtractionError(f"Cannot initialise Firebase Admin: {e}") from e
            logger.info(f"Connected to Firestore project {self.project_id}")
        return self._client

    def read(
        self,
        collection: str,
        entity: str,
        cursor: Optional[str] = None
    ) -> Iterator[SourceRecord]:
        """Page through a collection in document-id order."""
        ref = self.client.collection(collection)
        last_id = cursor

        while True:
            query = ref.order_by(DOCUMENT_ID).limit(self.page_size)
            if last_id is not None:
                query = query.start_after({DOCUMENT_ID: ref.document(last_id)})

            try:
                snapshots = list(query.stream(retry=None, timeout=self.timeout))
            except (google_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
                raise ExtractionError(f"Failed to read {collection}: {e}", collection) from e

            for snapshot in snapshots:
                yield self.create_record(
                    snapshot.id, collection, entity, snapshot.to_dict() or {},
                    metadata={"path": snapshot.reference.path},
                )

            if len(snapshots) < self.page_size:
                break
            last_id = snapshots[-1].id

    def close(self) -> None:
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None
            self._client = None
