"""In-process registry of migration runs started through the API."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models.migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStatus,
    SourceType,
    TargetType,
)
from ..orchestrator import MigrationOrchestrator
from .models import (
    EntitySummary,
    MigrationCreate,
    MigrationResponse,
    MigrationStatusEnum,
    MigrationStepResponse,
)

ACTIVE_STATUSES = (
    MigrationStatus.PENDING,
    MigrationStatus.PLANNING,
    MigrationStatus.MIGRATING,
    MigrationStatus.PATCHING,
    MigrationStatus.INDEXING,
)


def build_config(data: MigrationCreate) -> MigrationConfig:
    """Convert an API request into a run configuration."""
    config = MigrationConfig(
        name=data.name,
        dry_run=data.dry_run,
        resume=data.resume,
        read_batch_size=data.read_batch_size,
        write_batch_size=data.write_batch_size,
        parallel_workers=data.parallel_workers,
        max_retries=data.max_retries,
        build_indexes=data.build_indexes,
        start_after=dict(data.start_after),
    )
    config.source.type = SourceType(data.source_type.value)
    config.source.project_id = data.project_id
    config.source.emulator_host = data.emulator_host
    config.source.export_dir = data.export_dir
    config.target.type = TargetType(data.target_type.value)
    if data.manifest_path:
        config.manifest_path = data.manifest_path
    config.apply_environment()
    if data.database:
        config.target.database = data.database
    return config


@dataclass
class MigrationEntry:
    id: str
    request: MigrationCreate
    orchestrator: MigrationOrchestrator
    created_at: datetime = field(default_factory=datetime.utcnow)
    scheduled: bool = False

    @property
    def run(self) -> Optional[MigrationRun]:
        return self.orchestrator.run

    @property
    def status(self) -> MigrationStatus:
        return self.run.status if self.run else MigrationStatus.PENDING

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class MigrationStorage:
    """
    Keeps the orchestrator of every run started in this process.

    ``orchestrator_factory`` builds the orchestrator for a configuration and
    can be replaced, e.g. to inject readers and writers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, MigrationEntry] = {}
        self.orchestrator_factory: Callable[[MigrationConfig], MigrationOrchestrator] = MigrationOrchestrator

    def create(self, data: MigrationCreate) -> MigrationEntry:
        config = build_config(data)
        entry = MigrationEntry(
            id=str(uuid.uuid4()),
            request=data,
            orchestrator=self.orchestrator_factory(config),
        )
        with self._lock:
            self._entries[entry.id] = entry
        return entry

    def get(self, migration_id: str) -> Optional[MigrationEntry]:
        return self._entries.get(migration_id)

    def list_all(self) -> List[MigrationEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.created_at, reverse=True)

    def active(self) -> Optional[MigrationEntry]:
        """The run currently writing to the target, if any."""
        for entry in self.list_all():
            if entry.scheduled and entry.is_active:
                return entry
        return None

    def discard(self, migration_id: str) -> None:
        with self._lock:
            self._entries.pop(migration_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def to_response(self, entry: MigrationEntry) -> MigrationResponse:
        run = entry.run
        if run is None:
            return MigrationResponse(
                id=entry.id,
                name=entry.request.name,
                status=MigrationStatusEnum.PENDING,
                dry_run=entry.request.dry_run,
                created_at=entry.created_at,
            )

        return MigrationResponse(
            id=entry.id,
            run_id=run.id,
            name=run.name,
            status=MigrationStatusEnum(run.status.value),
            dry_run=run.dry_run,
            resumed=run.resumed,
            created_at=entry.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
            stages=run.stages,
            deferred_relations=run.deferred_relations,
            steps=[
                MigrationStepResponse(
                    id=step.id,
                    name=step.name,
                    entity=step.entity,
                    stage=step.stage,
                    status=step.status.value,
                    started_at=step.started_at,
                    completed_at=step.completed_at,
                    records_processed=step.records_processed,
                    records_succeeded=step.records_succeeded,
                    records_resumed=step.records_resumed,
                    records_failed=step.records_failed,
                    records_skipped=step.records_skipped,
                    broken_references=step.broken_references,
                    enum_fallbacks=step.enum_fallbacks,
                    error_count=step.error_count,
                    errors=step.errors,
                )
                for step in run.steps
            ],
            summary={name: EntitySummary(**counts) for name, counts in run.summary().items()},
            total_records_processed=run.total_records_processed,
            total_records_succeeded=run.total_records_succeeded,
            total_records_resumed=run.total_records_resumed,
            total_records_failed=run.total_records_failed,
            total_records_skipped=run.total_records_skipped,
            errors=run.errors,
            manifest_path=run.manifest_path,
        )


migration_storage = MigrationStorage()
