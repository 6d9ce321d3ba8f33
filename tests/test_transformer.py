"""Tests for the field transformer and the per-entity rules."""

from datetime import datetime, timezone

import pytest

from storebridge.exceptions import TransformError
from storebridge.models.record import TransformedRecord
from storebridge.models.reference import BackLink, Pending, RelationKind, Resolved
from storebridge.services.transformer import (
    RecordScope,
    TransformEngine,
    count_words,
    parse_timestamp,
    to_number,
)

from conftest import make_record


@pytest.fixture
def engine(catalog):
    return TransformEngine(catalog)


class TestHelpers:
    def test_parse_timestamp_formats(self):
        iso = parse_timestamp("2024-03-01T10:00:00Z")
        assert iso == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

        millis = parse_timestamp(1709287200000)
        assert millis == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

        exported = parse_timestamp({"_seconds": 1709287200, "_nanoseconds": 0})
        assert exported == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_timestamp_unreadable(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(True) is None

    def test_to_number(self):
        assert to_number("12") == 12
        assert to_number("1.5") == 1.5
        assert to_number("many") == 0
        assert to_number(None, default=None) is None
        assert to_number(0, default=0.8) == 0

    def test_count_words(self):
        assert count_words("one  two\nthree") == 3
        assert count_words(None) == 0


class TestUserRule:
    def test_enum_defaulting_records_fallback(self, engine, context, catalog):
        record = make_record("users", "u2", {"email": "a@b.c", "role": "translator"}, catalog)
        result = engine.transform_record(record, context)

        assert result.data["role"] == "contributor"
        assert result.enum_fallbacks == [
            {"field": "role", "value": "translator", "fallback": "contributor"}
        ]

    def test_missing_email_raises(self, engine, context, catalog):
        record = make_record("users", "u3", {"name": "No mail"}, catalog)
        with pytest.raises(TransformError) as excinfo:
            engine.transform_record(record, context)

        assert excinfo.value.field == "email"
        assert excinfo.value.record_id == "u3"

    def test_deferred_relations_are_pending_with_placeholders(self, engine, context, catalog):
        record = make_record("users", "u1", {
            "email": "a@b.c",
            "certificates": ["c1", "c1", "c2"],
            "contributedFiles": {"f1": "intro.md"},
        }, catalog)
        result = engine.transform_record(record, context)

        assert result.data["certificates"] == []
        assert result.data["currentFiles"] == {}
        assert result.data["contributedFiles"] == {}

        pending, target, kind = result.pending["certificates"]
        assert pending == Pending(old_keys=("c1", "c2"))
        assert (target, kind) == ("certificates", RelationKind.MANY)

        refs = result.deferred_references("M1")
        assert {(r.field, r.old_keys) for r in refs} == {
            ("certificates", ("c1", "c2")),
            ("contributedFiles", ("f1",)),
        }

    def test_statistics_and_timestamps_default(self, engine, context, catalog):
        record = make_record("users", "u1", {
            "email": "a@b.c",
            "updatedAt": "2024-01-02T00:00:00Z",
        }, catalog)
        data = engine.transform_record(record, context).data

        assert data["statistics"]["totalCredits"] == 0
        assert data["expertiseAreas"] == []
        assert data["createdAt"] == data["updatedAt"]
        assert data["createdAt"].year == 2024

    def test_created_at_falls_back_to_run_start(self, engine, context, catalog):
        record = make_record("users", "u1", {"email": "a@b.c"}, catalog)
        data = engine.transform_record(record, context).data

        assert data["createdAt"] == context.started_at
        assert data["updatedAt"] == context.started_at


class TestDocumentRule:
    def test_references_resolve_through_identifier_map(self, engine, context, catalog):
        context.id_map.put("users", "u1", "M1")
        context.id_map.put("users", "u2", "M2")
        context.id_map.put("projects", "p1", "P1")

        record = make_record("documents", "f1", {
            "fileName": "intro.md",
            "projectId": "p1",
            "uId": "u1",
            "assignedTranslatorId": "u2",
            "translations": [{"text": "hi", "userId": "u2", "status": "submitted"}],
        }, catalog)
        result = engine.transform_record(record, context)

        assert result.data["projectId"] == "P1"
        assert result.data["userId"] == "M1"
        assert result.data["assignedTranslatorId"] == "M2"
        assert result.data["reviewerId"] is None
        assert result.data["translations"][0]["userId"] == "M2"
        assert result.data["translations"][0]["status"] == "submitted"
        assert result.broken_references == []
        assert result.pending == {}

    def test_unmapped_reference_is_null_and_counted(self, engine, context, catalog):
        record = make_record("documents", "f1", {"fileName": "a.md", "projectId": "gone"}, catalog)
        result = engine.transform_record(record, context)

        assert result.data["projectId"] is None
        assert result.broken_references == [
            {"field": "projectId", "old_key": "gone", "referenced_entity": "projects"}
        ]
        assert result.back_links == []
        assert result.deferred_references("D1") == []

    def test_resolved_project_links_document_back(self, engine, context, catalog):
        context.id_map.put("projects", "p1", "P1")
        record = make_record("documents", "f7", {"fileName": "a.md", "projectId": "p1"}, catalog)
        result = engine.transform_record(record, context)

        assert result.back_links == [BackLink(entity="projects", key="P1", field="files")]
        (ref,) = result.deferred_references("D7")
        assert (ref.entity, ref.new_key, ref.field) == ("projects", "P1", "files")
        assert (ref.referenced_entity, ref.kind, ref.old_keys) == ("documents", RelationKind.MANY, ("f7",))

    def test_word_count_derivation(self, engine, context, catalog):
        counted = make_record("documents", "f1", {"fileName": "a.md", "originalText": "a b c d"}, catalog)
        given = make_record("documents", "f2", {"fileName": "b.md", "wordCount": "7"}, catalog)

        assert engine.transform_record(counted, context).data["metadata"]["wordCount"] == 4
        assert engine.transform_record(given, context).data["metadata"]["wordCount"] == 7

    def test_storage_type_mapping(self, engine, context, catalog):
        record = make_record("documents", "f1", {"fileName": "a.md", "storageType": "github_raw"}, catalog)
        assert engine.transform_record(record, context).data["metadata"]["storageType"] == "filesystem"

    def test_malformed_translation_entries_dropped(self, engine, context, catalog):
        record = make_record("documents", "f1", {
            "fileName": "a.md",
            "translations": ["oops", {"text": "ok"}],
        }, catalog)
        result = engine.transform_record(record, context)

        assert len(result.data["translations"]) == 1
        assert result.warnings


class TestOtherRules:
    def test_certificate_pdf_path_and_tier(self, engine, context, catalog):
        record = make_record("certificates", "c1", {"verificationCode": "ARM-7", "type": "mythic"}, catalog)
        data = engine.transform_record(record, context).data

        assert data["pdfPath"] == "/certificates/ARM-7.pdf"
        assert data["type"] == "bronze"
        assert data["certificateType"] == "translation"

    def test_review_status_alias(self, engine, context, catalog):
        record = make_record("reviews", "r1", {"fileId": "f1", "status": "in_progress"}, catalog)
        data = engine.transform_record(record, context).data

        assert data["status"] == "in-progress"
        assert data["priority"] == "medium"

    def test_memory_confidence_defaults_but_keeps_zero(self, engine, context, catalog):
        default = make_record("translation_memory", "t1", {"originalText": "x"}, catalog)
        zero = make_record("translation_memory", "t2", {"originalText": "x", "confidence": 0}, catalog)

        assert engine.transform_record(default, context).data["confidence"] == 0.8
        assert engine.transform_record(zero, context).data["confidence"] == 0


class TestEngine:
    def test_validate_reports_missing_rules(self, catalog):
        engine = TransformEngine(catalog, rules={})
        assert len(engine.validate()) == len(catalog.entities)

    def test_custom_rule_errors_become_transform_errors(self, engine, context, catalog):
        def broken(data, scope):
            return {"size": int(data["size"])}

        engine.register_rule("projects", broken)
        record = make_record("projects", "p1", {"size": "big"}, catalog)

        with pytest.raises(TransformError) as excinfo:
            engine.transform_record(record, context)
        assert excinfo.value.record_id == "p1"

    def test_resolve_returns_tagged_values(self, context, catalog):
        context.id_map.put("users", "u1", "M1")
        record = make_record("projects", "p1", {}, catalog)
        result = TransformedRecord("p1", "projects", "projects", {})
        scope = RecordScope(catalog.get_entity("projects"), record, context, result)

        assert scope.resolve("userId", "u1") == Resolved("M1")
        assert isinstance(scope.resolve("files", ["f1"]), Pending)
