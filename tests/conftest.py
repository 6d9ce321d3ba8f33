"""Shared fixtures for the storebridge test suite."""

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from storebridge.catalog import build_catalog
from storebridge.loaders.memory_loader import MemoryLoader
from storebridge.models.migration import MigrationConfig, SourceType, TargetType
from storebridge.models.record import SourceRecord
from storebridge.services.context import MigrationContext
from storebridge.services.identifier_map import IdentifierMap
from storebridge.services.planner import StagePlanner


SAMPLE_EXPORT: Dict[str, Dict[str, Any]] = {
    "userProfiles": {
        "u1": {
            "email": "owner@example.com",
            "name": "Owner",
            "role": "administrator",
            "certificates": ["c1"],
            "contributedFiles": {"f1": "intro.md"},
            "createdAt": "2024-03-01T10:00:00Z",
        },
        "u2": {
            "email": "translator@example.com",
            "name": "Translator",
            "role": "translator",
            "currentFiles": {"f1": "intro.md"},
        },
    },
    "projects": {
        "p1": {
            "uId": "u1",
            "title": "Kubernetes docs",
            "status": "in progress",
            "files": ["f1"],
        },
    },
    "files": {
        "f1": {
            "projectId": "p1",
            "uId": "u1",
            "fileName": "intro.md",
            "assignedTranslatorId": "u2",
            "status": "in progress",
            "originalText": "one two three",
        },
    },
    "certificates": {
        "c1": {
            "userId": "u1",
            "projectId": "p1",
            "fileId": "f1",
            "verificationCode": "ARM-0001",
            "type": "gold",
        },
    },
    "reviews": {
        "r1": {
            "fileId": "f1",
            "reviewerId": "u1",
            "uId": "u2",
            "status": "in_progress",
        },
    },
    "translationMemory": {
        "tm1": {
            "uId": "u2",
            "originalText": "open source",
            "translatedText": "open source (hy)",
            "projectId": "p1",
            "confidence": 0,
        },
    },
}


def write_export(directory: Path, export: Dict[str, Dict[str, Any]]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for collection, documents in export.items():
        with open(directory / f"{collection}.json", "w", encoding="utf-8") as f:
            json.dump(documents, f)
    return directory


@pytest.fixture
def catalog():
    return build_catalog()


@pytest.fixture
def plan(catalog):
    return StagePlanner(catalog).plan()


@pytest.fixture
def context(catalog, plan):
    return MigrationContext(
        catalog=catalog,
        plan=plan,
        id_map=IdentifierMap(catalog.entities.keys()),
    )


@pytest.fixture
def memory_loader():
    return MemoryLoader()


@pytest.fixture
def export_dir(tmp_path):
    return write_export(tmp_path / "export", SAMPLE_EXPORT)


@pytest.fixture
def config(tmp_path, export_dir):
    """Run configuration against the sample export and the in-memory target."""
    config = MigrationConfig(
        name="test-run",
        manifest_path=str(tmp_path / "manifest.json"),
        output_dir=str(tmp_path / "out"),
        read_batch_size=2,
        write_batch_size=1,
        parallel_workers=2,
        retry_backoff=0.0,
    )
    config.source.type = SourceType.JSON_EXPORT
    config.source.export_dir = str(export_dir)
    config.target.type = TargetType.MEMORY
    return config


def make_record(entity: str, record_id: str, data: Dict[str, Any], catalog=None) -> SourceRecord:
    catalog = catalog or build_catalog()
    definition = catalog.get_entity(entity)
    return SourceRecord(
        id=record_id,
        source_entity=entity,
        source_collection=definition.source_collection,
        data=data,
    )
