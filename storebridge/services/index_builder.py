"""Secondary index creation after data load."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..exceptions import LoadError
from ..loaders.base import BaseLoader
from ..models.schema import Catalog, IndexSpec
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class IndexReport:
    """Outcome of applying the index list."""
    version: int
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "version": self.version,
            "created": self.created,
            "existing": self.existing,
            "failed": self.failed,
        }


class IndexBuilder:
    """Applies a fixed, versioned index list with define-if-absent semantics."""

    def __init__(
        self,
        loader: BaseLoader,
        indexes: List[IndexSpec],
        version: int = 1,
        retry: Optional[RetryPolicy] = None
    ):
        self.loader = loader
        self.indexes = list(indexes)
        self.version = version
        self.retry = retry or RetryPolicy()

    @classmethod
    def from_catalog(
        cls,
        loader: BaseLoader,
        catalog: Catalog,
        retry: Optional[RetryPolicy] = None
    ) -> "IndexBuilder":
        return cls(loader, catalog.indexes, catalog.index_version, retry)

    def build(self) -> IndexReport:
        """
        Define every index that does not exist yet.

        Running it again is a no-op: existing indexes are reported as such.
        """
        report = IndexReport(version=self.version)
        logger.info(f"Applying index list v{self.version} ({len(self.indexes)} indexes)")

        for spec in self.indexes:
            label = f"{spec.collection}.{spec.name}"
            try:
                created, _ = self.retry.call(
                    self.loader.ensure_index, spec, description=f"Index {label}"
                )
            except LoadError as e:
                report.failed.append({"index": label, "error": str(e)})
                logger.error(f"Failed to create index {label}: {e}")
                continue

            if created:
                report.created.append(label)
                logger.debug(f"Created index {label}")
            else:
                report.existing.append(label)

        logger.info(
            f"Indexes: {len(report.created)} created, {len(report.existing)} already present, "
            f"{len(report.failed)} failed"
        )
        return report
