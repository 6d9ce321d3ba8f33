"""Migration run-control endpoints."""

import logging
from fastapi import APIRouter, HTTPException, BackgroundTasks

from ...catalog import DEFAULT_CATALOG
from ...exceptions import ConfigurationError
from ...services.planner import StagePlanner
from ..models import (
    ManifestResponse,
    MigrationCreate,
    MigrationListResponse,
    MigrationResponse,
    PlanResponse,
)
from ..storage import migration_storage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=MigrationResponse, status_code=202)
async def start_migration(data: MigrationCreate, background_tasks: BackgroundTasks):
    """Validate the configuration and start a migration run in the background."""
    active = migration_storage.active()
    if active:
        raise HTTPException(
            status_code=409,
            detail=f"Migration {active.id} is still running"
        )

    entry = migration_storage.create(data)
    try:
        entry.orchestrator.plan()
    except ConfigurationError as e:
        migration_storage.discard(entry.id)
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "problems": e.problems},
        )

    entry.scheduled = True
    background_tasks.add_task(run_migration_task, entry.id)
    return migration_storage.to_response(entry)


@router.get("", response_model=MigrationListResponse)
async def list_migrations():
    """List all migrations."""
    migrations = [migration_storage.to_response(e) for e in migration_storage.list_all()]
    return MigrationListResponse(migrations=migrations, total=len(migrations))


@router.get("/plan", response_model=PlanResponse)
async def get_plan():
    """Stages and deferred relations of the entity catalog."""
    plan = StagePlanner(DEFAULT_CATALOG).plan().to_dict()
    return PlanResponse(stages=plan["stages"], deferred=plan["deferred"])


@router.get("/{migration_id}", response_model=MigrationResponse)
async def get_migration(migration_id: str):
    """Get a specific migration."""
    entry = migration_storage.get(migration_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Migration not found")
    return migration_storage.to_response(entry)


@router.get("/{migration_id}/manifest", response_model=ManifestResponse)
async def get_manifest(migration_id: str):
    """Summary of the manifest written by a migration."""
    entry = migration_storage.get(migration_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Migration not found")

    writer = entry.orchestrator.manifest
    if entry.request.dry_run or not writer.exists():
        raise HTTPException(status_code=404, detail="No manifest written for this migration")

    try:
        manifest = writer.load()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return ManifestResponse(
        path=writer.path,
        run_id=manifest.run_id,
        status=manifest.status,
        complete=manifest.complete,
        written_at=manifest.written_at,
        legacy=manifest.legacy,
        counts=manifest.counts,
        total=manifest.total,
    )


@router.post("/{migration_id}/cancel")
async def cancel_migration(migration_id: str):
    """Cancel a running migration; it stops at the next batch boundary."""
    entry = migration_storage.get(migration_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Migration not found")

    if not entry.is_active:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot cancel migration in status: {entry.status.value}"
        )

    entry.orchestrator.cancel()
    return {"status": "cancelling", "migration_id": migration_id}


def run_migration_task(migration_id: str):
    """Background task running the migration to completion."""
    entry = migration_storage.get(migration_id)
    if not entry:
        return

    try:
        run = entry.orchestrator.run_migration()
        logger.info(f"Migration {migration_id} finished with status {run.status.value}")
    finally:
        entry.orchestrator.close()
