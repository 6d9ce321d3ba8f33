"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


class SourceTypeEnum(str, Enum):
    FIRESTORE = "firestore"
    FIRESTORE_REST = "firestore_rest"
    JSON_EXPORT = "json_export"


class TargetTypeEnum(str, Enum):
    MONGODB = "mongodb"
    MEMORY = "memory"


class MigrationStatusEnum(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    MIGRATING = "migrating"
    PATCHING = "patching"
    INDEXING = "indexing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Request Models
class MigrationCreate(BaseModel):
    """Run settings; store credentials come from the server environment."""
    name: str = "firestore-to-mongodb"
    source_type: SourceTypeEnum = SourceTypeEnum.FIRESTORE
    project_id: Optional[str] = None
    emulator_host: Optional[str] = None
    export_dir: Optional[str] = None
    target_type: TargetTypeEnum = TargetTypeEnum.MONGODB
    database: Optional[str] = None
    dry_run: bool = True
    resume: bool = False
    read_batch_size: int = Field(500, ge=1)
    write_batch_size: int = Field(50, ge=1)
    parallel_workers: int = Field(4, ge=1)
    max_retries: int = Field(3, ge=0)
    build_indexes: bool = True
    manifest_path: Optional[str] = None
    start_after: Dict[str, str] = Field(default_factory=dict)


# Response Models
class MigrationStepResponse(BaseModel):
    id: str
    name: str
    entity: str
    stage: Optional[int] = None
    status: str
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
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class EntitySummary(BaseModel):
    total: int = 0
    migrated: int = 0
    resumed: int = 0
    skipped: int = 0
    errored: int = 0


class MigrationResponse(BaseModel):
    id: str
    run_id: Optional[str] = None
    name: str
    status: MigrationStatusEnum
    dry_run: bool
    resumed: bool = False
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stages: List[List[str]] = Field(default_factory=list)
    deferred_relations: List[str] = Field(default_factory=list)
    steps: List[MigrationStepResponse] = Field(default_factory=list)
    summary: Dict[str, EntitySummary] = Field(default_factory=dict)
    total_records_processed: int = 0
    total_records_succeeded: int = 0
    total_records_resumed: int = 0
    total_records_failed: int = 0
    total_records_skipped: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    manifest_path: Optional[str] = None


class MigrationListResponse(BaseModel):
    migrations: List[MigrationResponse]
    total: int


class PlanResponse(BaseModel):
    stages: List[List[str]]
    deferred: List[str]


class ManifestResponse(BaseModel):
    path: str
    run_id: Optional[str] = None
    status: Optional[str] = None
    complete: bool = False
    written_at: Optional[str] = None
    legacy: bool = False
    counts: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
