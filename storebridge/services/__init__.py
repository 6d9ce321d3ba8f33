"""Service layer for the migration engine."""

from .identifier_map import IdentifierMap
from .planner import MigrationPlan, StagePlanner
from .context import MigrationContext
from .transformer import RecordScope, TransformEngine
from .retry import RetryPolicy
from .patcher import BackReferencePatcher, PatchReport
from .index_builder import IndexBuilder, IndexReport
from .manifest import Manifest, ManifestWriter
from .validator import ReferenceValidator, ValidationReport

__all__ = [
    "IdentifierMap",
    "MigrationPlan",
    "StagePlanner",
    "MigrationContext",
    "RecordScope",
    "TransformEngine",
    "RetryPolicy",
    "BackReferencePatcher",
    "PatchReport",
    "IndexBuilder",
    "IndexReport",
    "Manifest",
    "ManifestWriter",
    "ReferenceValidator",
    "ValidationReport",
]
