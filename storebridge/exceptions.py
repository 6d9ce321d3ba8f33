"""Exception hierarchy for the migration engine."""

from typing import Any, Dict, List, Optional


class MigrationError(Exception):
    """Base class for all migration errors."""


class ConfigurationError(MigrationError):
    """Invalid catalog or run configuration, detected before any I/O."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []


class ExtractionError(MigrationError):
    """The source store could not be read (unreachable, unauthorized, timeout)."""

    def __init__(self, message: str, collection: Optional[str] = None):
        super().__init__(message)
        self.collection = collection


class TransformError(MigrationError):
    """A raw record could not be reshaped into the target schema."""

    def __init__(self, message: str, field: Optional[str] = None, record_id: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.record_id = record_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "field": self.field,
            "error": str(self),
        }


class LoadError(MigrationError):
    """The target store rejected a write."""


class PatchError(MigrationError):
    """A back-reference update failed."""


class DuplicateMappingError(MigrationError):
    """An identifier map entry was written twice."""

    def __init__(self, entity: str, old_key: Any = None, new_key: Any = None):
        if old_key is not None:
            message = f"Identifier for {entity} old key {old_key!r} is already mapped"
        else:
            message = f"Identifier for {entity} new key {new_key!r} is already mapped"
        super().__init__(message)
        self.entity = entity
        self.old_key = old_key
        self.new_key = new_key


class MigrationCancelled(MigrationError):
    """The run was aborted by the operator."""
