"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import os
import uuid


class MigrationStatus(str, Enum):
    """Status of a migration run or step."""
    PENDING = "pending"
    PLANNING = "planning"
    MIGRATING = "migrating"
    PATCHING = "patching"
    INDEXING = "indexing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SourceType(str, Enum):
    """Supported source store readers."""
    FIRESTORE = "firestore"  # firebase-admin SDK
    FIRESTORE_REST = "firestore_rest"  # Firestore REST API or emulator
    JSON_EXPORT = "json_export"  # directory of <collection>.json dumps


class TargetType(str, Enum):
    """Supported target store writers."""
    MONGODB = "mongodb"
    MEMORY = "memory"


@dataclass
class SourceConfig:
    """Connection settings for the source store."""
    type: SourceType = SourceType.FIRESTORE
    project_id: Optional[str] = None
    client_email: Optional[str] = None
    private_key: Optional[str] = None
    credentials_file: Optional[str] = None
    access_token: Optional[str] = None
    emulator_host: Optional[str] = None
    export_dir: Optional[str] = None
    page_size: int = 300
    timeout: float = 60.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (credentials omitted)."""
        return {
            "type": self.type.value,
            "project_id": self.project_id,
            "client_email": self.client_email,
            "credentials_file": self.credentials_file,
            "emulator_host": self.emulator_host,
            "export_dir": self.export_dir,
            "page_size": self.page_size,
            "timeout": self.timeout,
        }


@dataclass
class TargetConfig:
    """Connection settings for the target store."""
    type: TargetType = TargetType.MONGODB
    uri: str = "mongodb://localhost:27017/armenian-docs"
    database: str = "armenian-docs"
    timeout_ms: int = 30000
    server_selection_timeout_ms: int = 10000

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": self.type.value,
            "database": self.database,
            "timeout_ms": self.timeout_ms,
            "server_selection_timeout_ms": self.server_selection_timeout_ms,
        }


@dataclass
class MigrationStep:
    """Progress and outcome of one entity type, or of a post-load phase."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    stage: Optional[int] = None
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_succeeded: int = 0
    records_resumed: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    broken_references: int = 0
    enum_fallbacks: int = 0
    error_count: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)  # capped samples
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "stage": self.stage,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "records_processed": self.records_processed,
            "records_succeeded": self.records_succeeded,
            "records_resumed": self.records_resumed,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "broken_references": self.broken_references,
            "enum_fallbacks": self.enum_fallbacks,
            "error_count": self.error_count,
            "errors": self.errors,
            "warnings": self.warnings,
            "details": self.details,
        }

    def record_error(self, error: Dict[str, Any], max_samples: int) -> None:
        """Count an error and keep it as a sample while under the cap."""
        self.error_count += 1
        if len(self.errors) < max_samples:
            self.errors.append(error)

    @property
    def records_migrated(self) -> int:
        """Records present in the target, written now or by a previous run."""
        return self.records_succeeded + self.records_resumed

    @property
    def is_balanced(self) -> bool:
        """Every processed record is accounted for exactly once."""
        return self.records_processed == (
            self.records_migrated + self.records_skipped + self.records_failed
        )

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False
    resumed: bool = False

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Progress
    stages: List[List[str]] = field(default_factory=list)
    deferred_relations: List[str] = field(default_factory=list)
    steps: List[MigrationStep] = field(default_factory=list)
    current_step: Optional[str] = None

    # Statistics
    total_records_processed: int = 0
    total_records_succeeded: int = 0
    total_records_resumed: int = 0
    total_records_failed: int = 0
    total_records_skipped: int = 0

    errors: List[Dict[str, Any]] = field(default_factory=list)
    manifest_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "resumed": self.resumed,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "stages": self.stages,
            "deferred_relations": self.deferred_relations,
            "steps": [s.to_dict() for s in self.steps],
            "current_step": self.current_step,
            "total_records_processed": self.total_records_processed,
            "total_records_succeeded": self.total_records_succeeded,
            "total_records_resumed": self.total_records_resumed,
            "total_records_failed": self.total_records_failed,
            "total_records_skipped": self.total_records_skipped,
            "summary": self.summary(),
            "errors": self.errors,
            "manifest_path": self.manifest_path,
            "metadata": self.metadata,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_step(self, name: str, entity: str = "", stage: Optional[int] = None) -> MigrationStep:
        """Add a new step to the migration."""
        step = MigrationStep(name=name, entity=entity, stage=stage)
        self.steps.append(step)
        return step

    def get_step(self, step_id: str) -> Optional[MigrationStep]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def entity_steps(self) -> List[MigrationStep]:
        """Steps that migrated an entity type."""
        return [s for s in self.steps if s.stage is not None]

    def update_totals(self) -> None:
        """Update total statistics from entity steps."""
        steps = self.entity_steps()
        self.total_records_processed = sum(s.records_processed for s in steps)
        self.total_records_succeeded = sum(s.records_succeeded for s in steps)
        self.total_records_resumed = sum(s.records_resumed for s in steps)
        self.total_records_failed = sum(s.records_failed for s in steps)
        self.total_records_skipped = sum(s.records_skipped for s in steps)

    def summary(self) -> Dict[str, Dict[str, int]]:
        """Per-type counts: migrated / skipped / errored."""
        return {
            s.entity: {
                "total": s.records_processed,
                "migrated": s.records_migrated,
                "resumed": s.records_resumed,
                "skipped": s.records_skipped,
                "errored": s.records_failed,
            }
            for s in self.entity_steps()
        }

    @property
    def has_unrecoverable_errors(self) -> bool:
        """True when the run failed, was cancelled, or left records or patches unwritten."""
        if self.status in (MigrationStatus.FAILED, MigrationStatus.CANCELLED):
            return True
        return any(
            s.status == MigrationStatus.FAILED or s.records_failed > 0
            for s in self.steps
        )


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    return value if value else default


@dataclass
class MigrationConfig:
    """Configuration for a migration."""
    name: str = "firestore-to-mongodb"

    source: SourceConfig = field(default_factory=SourceConfig)
    target: TargetConfig = field(default_factory=TargetConfig)

    # Execution options
    dry_run: bool = False
    read_batch_size: int = 500
    write_batch_size: int = 50
    parallel_workers: int = 4
    max_retries: int = 3
    retry_backoff: float = 0.5  # seconds, doubled per attempt
    max_error_samples: int = 20
    start_after: Dict[str, str] = field(default_factory=dict)  # source collection -> cursor

    # Resume and output
    manifest_path: str = "./data/migration-manifest.json"
    resume: bool = False
    manifest_flush_batches: int = 0  # also flush every N read batches; 0 = per stage only
    output_dir: str = "./data"
    save_report: bool = True
    build_indexes: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "dry_run": self.dry_run,
            "read_batch_size": self.read_batch_size,
            "write_batch_size": self.write_batch_size,
            "parallel_workers": self.parallel_workers,
            "max_retries": self.max_retries,
            "retry_backoff": self.retry_backoff,
            "max_error_samples": self.max_error_samples,
            "start_after": self.start_after,
            "manifest_path": self.manifest_path,
            "resume": self.resume,
            "manifest_flush_batches": self.manifest_flush_batches,
            "output_dir": self.output_dir,
            "save_report": self.save_report,
            "build_indexes": self.build_indexes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        source_data = data.get("source", {})
        source = SourceConfig(
            type=SourceType(source_data.get("type", "firestore")),
            project_id=source_data.get("project_id"),
            client_email=source_data.get("client_email"),
            private_key=source_data.get("private_key"),
            credentials_file=source_data.get("credentials_file"),
            access_token=source_data.get("access_token"),
            emulator_host=source_data.get("emulator_host"),
            export_dir=source_data.get("export_dir"),
            page_size=source_data.get("page_size", 300),
            timeout=source_data.get("timeout", 60.0),
        )

        target_data = data.get("target", {})
        target = TargetConfig(
            type=TargetType(target_data.get("type", "mongodb")),
            uri=target_data.get("uri", "mongodb://localhost:27017/armenian-docs"),
            database=target_data.get("database", "armenian-docs"),
            timeout_ms=target_data.get("timeout_ms", 30000),
            server_selection_timeout_ms=target_data.get("server_selection_timeout_ms", 10000),
        )

        return cls(
            name=data.get("name", "firestore-to-mongodb"),
            source=source,
            target=target,
            dry_run=data.get("dry_run", False),
            read_batch_size=data.get("read_batch_size", 500),
            write_batch_size=data.get("write_batch_size", 50),
            parallel_workers=data.get("parallel_workers", 4),
            max_retries=data.get("max_retries", 3),
            retry_backoff=data.get("retry_backoff", 0.5),
            max_error_samples=data.get("max_error_samples", 20),
            start_after=data.get("start_after", {}),
            manifest_path=data.get("manifest_path", "./data/migration-manifest.json"),
            resume=data.get("resume", False),
            manifest_flush_batches=data.get("manifest_flush_batches", 0),
            output_dir=data.get("output_dir", "./data"),
            save_report=data.get("save_report", True),
            build_indexes=data.get("build_indexes", True),
        )

    def apply_environment(self) -> "MigrationConfig":
        """Overlay connection credentials from environment variables."""
        src = self.source
        src.project_id = _env("FIREBASE_PROJECT_ID", src.project_id)
        src.client_email = _env("FIREBASE_CLIENT_EMAIL", src.client_email)
        private_key = _env("FIREBASE_PRIVATE_KEY", src.private_key)
        src.private_key = private_key.replace("\\n", "\n") if private_key else None
        src.access_token = _env("FIRESTORE_ACCESS_TOKEN", src.access_token)
        src.emulator_host = _env("FIRESTORE_EMULATOR_HOST", src.emulator_host)

        self.target.uri = _env("MONGODB_URI", self.target.uri)
        self.target.database = _env("MONGODB_DATABASE", self.target.database)
        return self

    def validate(self) -> List[str]:
        """
        Check option values and required credentials.

        Returns:
            List of problem descriptions
        """
        problems = []

        if self.read_batch_size < 1 or self.write_batch_size < 1:
            problems.append("Batch sizes must be positive")
        if self.parallel_workers < 1:
            problems.append("parallel_workers must be at least 1")
        if self.max_retries < 0:
            problems.append("max_retries must not be negative")

        src = self.source
        if src.type == SourceType.FIRESTORE and not src.credentials_file:
            missing = [
                name for name, value in (
                    ("FIREBASE_PROJECT_ID", src.project_id),
                    ("FIREBASE_CLIENT_EMAIL", src.client_email),
                    ("FIREBASE_PRIVATE_KEY", src.private_key),
                ) if not value
            ]
            if missing:
                problems.append(f"Missing Firebase Admin credentials: {', '.join(missing)}")
        elif src.type == SourceType.FIRESTORE_REST:
            if not src.project_id:
                problems.append("FIREBASE_PROJECT_ID is required for the REST reader")
            if not src.access_token and not src.emulator_host:
                problems.append("FIRESTORE_ACCESS_TOKEN or FIRESTORE_EMULATOR_HOST is required")
        elif src.type == SourceType.JSON_EXPORT and not src.export_dir:
            problems.append("source.export_dir is required for json_export sources")

        if self.target.type == TargetType.MONGODB and not self.dry_run and not self.target.uri:
            problems.append("MONGODB_URI is required")

        return problems
