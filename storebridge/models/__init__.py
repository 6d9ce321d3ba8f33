"""Data models for the migration engine."""

from .schema import (
    EnumTable,
    Relation,
    EntityDefinition,
    IndexSpec,
    Catalog,
)
from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStep,
    MigrationStatus,
    SourceConfig,
    SourceType,
    TargetConfig,
    TargetType,
)
from .record import (
    SourceRecord,
    TransformedRecord,
    MigrationResult,
    ValidationError,
)
from .reference import (
    RelationKind,
    Resolved,
    Pending,
    Reference,
    BackLink,
    DeferredReference,
)

__all__ = [
    "EnumTable",
    "Relation",
    "EntityDefinition",
    "IndexSpec",
    "Catalog",
    "MigrationConfig",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "SourceConfig",
    "SourceType",
    "TargetConfig",
    "TargetType",
    "SourceRecord",
    "TransformedRecord",
    "MigrationResult",
    "ValidationError",
    "RelationKind",
    "Resolved",
    "Pending",
    "Reference",
    "BackLink",
    "DeferredReference",
]
