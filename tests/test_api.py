"""Tests for the run-control HTTP API."""

import pytest
from fastapi.testclient import TestClient

from storebridge.api.main import app
from storebridge.api.models import MigrationCreate
from storebridge.api.storage import migration_storage
from storebridge.loaders.memory_loader import MemoryLoader
from storebridge.orchestrator import MigrationOrchestrator


@pytest.fixture
def client(tmp_path):
    loaders = []

    def factory(config):
        config.output_dir = str(tmp_path / "out")
        loader = MemoryLoader()
        loaders.append(loader)
        return MigrationOrchestrator(config, loader=loader)

    migration_storage.clear()
    migration_storage.orchestrator_factory = factory
    yield TestClient(app), loaders
    migration_storage.clear()
    migration_storage.orchestrator_factory = MigrationOrchestrator


def start_payload(export_dir, tmp_path, **overrides):
    payload = {
        "name": "api-run",
        "source_type": "json_export",
        "export_dir": str(export_dir) if export_dir else None,
        "target_type": "memory",
        "dry_run": False,
        "manifest_path": str(tmp_path / "manifest.json"),
    }
    payload.update(overrides)
    return payload


class TestMigrationsAPI:
    def test_health(self, client):
        http, _ = client
        response = http.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_plan(self, client):
        http, _ = client
        response = http.get("/api/migrations/plan")

        assert response.status_code == 200
        data = response.json()
        assert data["stages"][0] == ["users"]
        assert "projects.files" in data["deferred"]

    def test_start_runs_in_background(self, client, export_dir, tmp_path):
        http, loaders = client
        response = http.post("/api/migrations", json=start_payload(export_dir, tmp_path))

        assert response.status_code == 202
        migration_id = response.json()["id"]

        # TestClient runs background tasks before returning
        detail = http.get(f"/api/migrations/{migration_id}").json()
        assert detail["status"] == "completed"
        assert detail["summary"]["users"]["migrated"] == 2
        assert loaders[0].count("documents") == 1

        listing = http.get("/api/migrations").json()
        assert listing["total"] == 1

    def test_manifest_endpoint(self, client, export_dir, tmp_path):
        http, _ = client
        migration_id = http.post("/api/migrations", json=start_payload(export_dir, tmp_path)).json()["id"]

        response = http.get(f"/api/migrations/{migration_id}/manifest")

        assert response.status_code == 200
        assert response.json()["complete"] is True
        assert response.json()["counts"]["users"] == 2

    def test_dry_run_has_no_manifest(self, client, export_dir, tmp_path):
        http, _ = client
        payload = start_payload(export_dir, tmp_path, dry_run=True)
        migration_id = http.post("/api/migrations", json=payload).json()["id"]

        assert http.get(f"/api/migrations/{migration_id}/manifest").status_code == 404

    def test_invalid_configuration_is_rejected(self, client, tmp_path):
        http, _ = client
        payload = start_payload(None, tmp_path)

        response = http.post("/api/migrations", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"]["problems"]
        assert http.get("/api/migrations").json()["total"] == 0

    def test_unknown_migration(self, client):
        http, _ = client
        assert http.get("/api/migrations/nope").status_code == 404
        assert http.post("/api/migrations/nope/cancel").status_code == 404

    def test_cannot_cancel_finished_run(self, client, export_dir, tmp_path):
        http, _ = client
        migration_id = http.post("/api/migrations", json=start_payload(export_dir, tmp_path)).json()["id"]

        response = http.post(f"/api/migrations/{migration_id}/cancel")
        assert response.status_code == 400

    def test_second_run_conflicts_while_one_is_active(self, client, export_dir, tmp_path):
        http, _ = client
        entry = migration_storage.create(MigrationCreate(**start_payload(export_dir, tmp_path)))
        entry.scheduled = True

        response = http.post("/api/migrations", json=start_payload(export_dir, tmp_path))
        assert response.status_code == 409

