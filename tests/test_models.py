"""Tests for configuration and run bookkeeping models."""

from storebridge.models.migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStatus,
    SourceType,
    TargetType,
)


class TestMigrationConfig:
    def test_round_trip_keeps_options(self):
        config = MigrationConfig(parallel_workers=8, start_after={"files": "f9"})
        config.source.type = SourceType.FIRESTORE_REST
        config.target.type = TargetType.MEMORY

        restored = MigrationConfig.from_dict(config.to_dict())

        assert restored.parallel_workers == 8
        assert restored.start_after == {"files": "f9"}
        assert restored.source.type == SourceType.FIRESTORE_REST
        assert restored.target.type == TargetType.MEMORY

    def test_environment_overlay(self, monkeypatch):
        monkeypatch.setenv("FIREBASE_PROJECT_ID", "demo")
        monkeypatch.setenv("FIREBASE_CLIENT_EMAIL", "svc@demo.iam")
        monkeypatch.setenv("FIREBASE_PRIVATE_KEY", "-----BEGIN-----\\nabc\\n-----END-----")
        monkeypatch.setenv("MONGODB_URI", "mongodb://db:27017/docs")
        monkeypatch.setenv("MONGODB_DATABASE", "docs")

        config = MigrationConfig().apply_environment()

        assert config.source.project_id == "demo"
        assert config.source.private_key == "-----BEGIN-----\nabc\n-----END-----"
        assert config.target.uri == "mongodb://db:27017/docs"
        assert config.target.database == "docs"
        assert config.validate() == []

    def test_validate_reports_missing_credentials(self, monkeypatch):
        for name in ("FIREBASE_PROJECT_ID", "FIREBASE_CLIENT_EMAIL", "FIREBASE_PRIVATE_KEY"):
            monkeypatch.delenv(name, raising=False)

        problems = MigrationConfig().apply_environment().validate()

        assert len(problems) == 1
        assert "FIREBASE_PRIVATE_KEY" in problems[0]

    def test_rest_source_needs_token_or_emulator(self):
        config = MigrationConfig()
        config.source.type = SourceType.FIRESTORE_REST
        config.source.project_id = "demo"
        assert config.validate() == ["FIRESTORE_ACCESS_TOKEN or FIRESTORE_EMULATOR_HOST is required"]

        config.source.emulator_host = "localhost:8080"
        assert config.validate() == []


class TestMigrationRun:
    def test_summary_and_error_status(self):
        run = MigrationRun(name="r")
        step = run.add_step("Migrate userProfiles to users", entity="users", stage=0)
        step.records_processed = 5
        step.records_succeeded = 2
        step.records_resumed = 1
        step.records_skipped = 1
        step.records_failed = 1
        run.add_step("Patch back-references")
        run.update_totals()

        assert step.is_balanced
        assert run.summary() == {
            "users": {"total": 5, "migrated": 3, "resumed": 1, "skipped": 1, "errored": 1}
        }
        assert run.total_records_processed == 5
        assert run.has_unrecoverable_errors

    def test_cancelled_run_has_errors(self):
        run = MigrationRun(status=MigrationStatus.CANCELLED)
        assert run.has_unrecoverable_errors

    def test_record_error_caps_samples(self):
        step = MigrationRun().add_step("s")
        for i in range(5):
            step.record_error({"n": i}, max_samples=2)
        assert step.error_count == 5
        assert len(step.errors) == 2
