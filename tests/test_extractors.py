"""Tests for the source readers."""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests
from google.api_core import exceptions as google_exceptions

from storebridge.exceptions import ExtractionError
from storebridge.extractors.firestore_extractor import FirestoreExtractor
from storebridge.extractors.json_extractor import JSONExportExtractor
from storebridge.extractors.rest_extractor import FirestoreRESTExtractor, decode_value


class TestJSONExportExtractor:
    def test_reads_in_id_order(self, export_dir):
        extractor = JSONExportExtractor(str(export_dir))
        records = list(extractor.read("userProfiles", "users"))

        assert [r.id for r in records] == ["u1", "u2"]
        assert records[0].source_entity == "users"
        assert records[0].source_collection == "userProfiles"
        assert records[0].data["email"] == "owner@example.com"

    def test_cursor_resumes_after_last_id(self, export_dir):
        extractor = JSONExportExtractor(str(export_dir))
        records = list(extractor.read("userProfiles", "users", cursor="u1"))
        assert [r.id for r in records] == ["u2"]

    def test_reiterable_from_start(self, export_dir):
        extractor = JSONExportExtractor(str(export_dir))
        first = [r.id for r in extractor.read("userProfiles", "users")]
        second = [r.id for r in extractor.read("userProfiles", "users")]
        assert first == second

    def test_list_layout_uses_id_field(self, tmp_path):
        with open(tmp_path / "projects.json", "w") as f:
            json.dump([{"id": "b", "title": "B"}, {"id": "a", "title": "A"}], f)

        records = list(JSONExportExtractor(str(tmp_path)).read("projects", "projects"))
        assert [(r.id, r.data) for r in records] == [("a", {"title": "A"}), ("b", {"title": "B"})]

    def test_missing_file_is_empty_collection(self, tmp_path):
        assert list(JSONExportExtractor(str(tmp_path)).read("reviews", "reviews")) == []

    def test_missing_directory_raises(self, tmp_path):
        extractor = JSONExportExtractor(str(tmp_path / "nope"))
        with pytest.raises(ExtractionError):
            list(extractor.read("reviews", "reviews"))

    def test_invalid_json_raises(self, tmp_path):
        (tmp_path / "files.json").write_text("{not json")
        with pytest.raises(ExtractionError) as excinfo:
            list(JSONExportExtractor(str(tmp_path)).read("files", "documents"))
        assert excinfo.value.collection == "files"

    def test_stream_batches(self, export_dir):
        extractor = JSONExportExtractor(str(export_dir))
        batches = list(extractor.stream("userProfiles", "users", batch_size=1))
        assert [[r.id for r in batch] for batch in batches] == [["u1"], ["u2"]]
        assert extractor.read_count == 2


def _rest_document(doc_id, fields):
    return {
        "document": {
            "name": f"projects/demo/databases/(default)/documents/files/{doc_id}",
            "fields": fields,
            "updateTime": "2024-03-01T10:00:00Z",
        }
    }


class TestFirestoreRESTExtractor:
    def test_decode_value_types(self):
        assert decode_value({"nullValue": None}) is None
        assert decode_value({"integerValue": "42"}) == 42
        assert decode_value({"doubleValue": 1.5}) == 1.5
        assert decode_value({"booleanValue": True}) is True
        assert decode_value({"stringValue": "hi"}) == "hi"
        assert decode_value({"timestampValue": "2024-03-01T10:00:00Z"}) == datetime(
            2024, 3, 1, 10, 0, tzinfo=timezone.utc
        )
        assert decode_value({"referenceValue": "projects/x/databases/(default)/documents/users/u1"}) == "u1"
        assert decode_value({"arrayValue": {"values": [{"stringValue": "a"}, {"integerValue": "1"}]}}) == ["a", 1]
        assert decode_value({"arrayValue": {}}) == []
        assert decode_value({"mapValue": {"fields": {"f1": {"stringValue": "intro.md"}}}}) == {"f1": "intro.md"}

    def test_decode_unknown_type(self):
        with pytest.raises(ValueError):
            decode_value({"mysteryValue": 1})

    def test_pages_until_short_page(self):
        session = MagicMock()
        first = MagicMock(status_code=200)
        first.json.return_value = [
            _rest_document("f1", {"fileName": {"stringValue": "a.md"}}),
            _rest_document("f2", {"fileName": {"stringValue": "b.md"}}),
        ]
        second = MagicMock(status_code=200)
        second.json.return_value = [
            _rest_document("f3", {"fileName": {"stringValue": "c.md"}}),
        ]
        session.post.side_effect = [first, second]

        extractor = FirestoreRESTExtractor("demo", emulator_host="localhost:8080", page_size=2, session=session)
        records = list(extractor.read("files", "documents"))

        assert [r.id for r in records] == ["f1", "f2", "f3"]
        assert records[2].data == {"fileName": "c.md"}

        url = session.post.call_args_list[0].args[0]
        assert url == "http://localhost:8080/v1/projects/demo/databases/(default)/documents:runQuery"
        second_query = session.post.call_args_list[1].kwargs["json"]["structuredQuery"]
        assert second_query["startAt"]["values"][0]["referenceValue"].endswith("/files/f2")
        assert second_query["startAt"]["before"] is False

    def test_unauthorized_raises(self):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=403)

        extractor = FirestoreRESTExtractor("demo", access_token="t", session=session)
        with pytest.raises(ExtractionError, match="Not authorized"):
            list(extractor.read("files", "documents"))

    def test_network_error_raises(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")

        extractor = FirestoreRESTExtractor("demo", emulator_host="localhost:8080", session=session)
        with pytest.raises(ExtractionError):
            list(extractor.read("files", "documents"))

    def test_bearer_token_header(self):
        extractor = FirestoreRESTExtractor("demo", access_token="secret")
        assert extractor._session.headers["Authorization"] == "Bearer secret"
        assert extractor.base_url == "https://firestore.googleapis.com/v1"
        extractor.close()


def _snapshot(doc_id, data):
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.to_dict.return_value = data
    snapshot.reference.path = f"projects/{doc_id}"
    return snapshot


class TestFirestoreExtractor:
    def _client(self, pages):
        client = MagicMock()
        collection = client.collection.return_value
        query = collection.order_by.return_value.limit.return_value
        query.start_after.return_value = query
        query.stream.side_effect = pages
        return client, collection, query

    def test_pages_by_document_id(self):
        client, collection, query = self._client([
            [_snapshot("p1", {"title": "A"}), _snapshot("p2", {"title": "B"})],
            [],
        ])
        extractor = FirestoreExtractor(page_size=2, client=client)
        records = list(extractor.read("projects", "projects"))

        assert [r.id for r in records] == ["p1", "p2"]
        client.collection.assert_called_with("projects")
        collection.document.assert_called_with("p2")
        assert query.stream.call_args.kwargs["retry"] is None

    def test_cursor_starts_after_document(self):
        client, collection, query = self._client([[_snapshot("p3", {"title": "C"})]])
        extractor = FirestoreExtractor(page_size=2, client=client)

        records = list(extractor.read("projects", "projects", cursor="p2"))

        assert [r.id for r in records] == ["p3"]
        collection.document.assert_called_with("p2")
        query.start_after.assert_called_once()

    def test_api_error_becomes_extraction_error(self):
        client, _, query = self._client([google_exceptions.PermissionDenied("denied")])
        extractor = FirestoreExtractor(client=client)

        with pytest.raises(ExtractionError):
            list(extractor.read("projects", "projects"))
