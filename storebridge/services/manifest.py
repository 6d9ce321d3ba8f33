"""Manifest: the persisted identifier maps of a run, for audit and resume."""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError
from .identifier_map import IdentifierMap

logger = logging.getLogger(__name__)

MANIFEST_FORMAT = "storebridge-manifest"
MANIFEST_VERSION = 1

# Map names used by the original migration-mappings.json file
LEGACY_MAPS = {
    "userIdMap": "users",
    "projectIdMap": "projects",
    "fileIdMap": "documents",
    "certificateIdMap": "certificates",
}


@dataclass
class Manifest:
    """Identifier map pairs per entity type, with run metadata."""
    mappings: Dict[str, List[Tuple[str, str]]] = field(default_factory=dict)
    run_id: Optional[str] = None
    catalog: Optional[str] = None
    status: Optional[str] = None
    complete: bool = False
    index_version: Optional[int] = None
    written_at: Optional[str] = None
    legacy: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def counts(self) -> Dict[str, int]:
        return {entity: len(pairs) for entity, pairs in self.mappings.items()}

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "format": MANIFEST_FORMAT,
            "version": MANIFEST_VERSION,
            "run_id": self.run_id,
            "catalog": self.catalog,
            "status": self.status,
            "complete": self.complete,
            "index_version": self.index_version,
            "written_at": self.written_at,
            "counts": self.counts,
            "mappings": {
                entity: [[old, new] for old, new in pairs]
                for entity, pairs in self.mappings.items()
            },
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """
        Create from a manifest document.

        Accepts this tool's format and the legacy mappings file, which holds
        one ``<name>IdMap`` list of [old, new] pairs per entity type.
        """
        if data.get("format") == MANIFEST_FORMAT:
            return cls(
                mappings={
                    entity: [(str(old), str(new)) for old, new in pairs]
                    for entity, pairs in data.get("mappings", {}).items()
                },
                run_id=data.get("run_id"),
                catalog=data.get("catalog"),
                status=data.get("status"),
                complete=data.get("complete", False),
                index_version=data.get("index_version"),
                written_at=data.get("written_at"),
                metadata=data.get("metadata", {}),
            )

        legacy = {name: data[name] for name in LEGACY_MAPS if name in data}
        if not legacy:
            raise ConfigurationError("Unrecognised manifest format")

        return cls(
            mappings={
                LEGACY_MAPS[name]: [(str(old), _legacy_key(new)) for old, new in pairs]
                for name, pairs in legacy.items()
            },
            legacy=True,
        )

    def decoded(self, decode_key: Callable[[str], Any]) -> Dict[str, List[Tuple[str, Any]]]:
        """Pairs with new keys converted to the target store's key type."""
        return {
            entity: [(old, decode_key(new)) for old, new in pairs]
            for entity, pairs in self.mappings.items()
        }


def _legacy_key(value: Any) -> str:
    # ObjectIds were serialised either as plain hex or as {"$oid": hex}
    if isinstance(value, dict) and "$oid" in value:
        return str(value["$oid"])
    return str(value)


class ManifestWriter:
    """
    Writes and reads the manifest file.

    Writes replace the file atomically (temporary file in the same
    directory, then rename), so a crash never leaves a truncated manifest.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self.writes = 0

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def write(
        self,
        id_map: IdentifierMap,
        run_id: Optional[str] = None,
        catalog: Optional[str] = None,
        status: Optional[str] = None,
        complete: bool = False,
        index_version: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Manifest:
        """
        Flush the identifier map.

        Returns:
            The manifest that was written
        """
        manifest = Manifest(
            mappings={
                entity: [(old, str(new)) for old, new in pairs]
                for entity, pairs in id_map.snapshot().items()
            },
            run_id=run_id,
            catalog=catalog,
            status=status,
            complete=complete,
            index_version=index_version,
            written_at=datetime.now(timezone.utc).isoformat(),
            metadata=metadata or {},
        )

        with self._lock:
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".manifest-", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(manifest.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
            self.writes += 1

        logger.info(f"Manifest written to {self.path} ({manifest.total} entries)")
        return manifest

    def load(self) -> Manifest:
        """
        Read the manifest file.

        Raises:
            FileNotFoundError: if there is no manifest
            ConfigurationError: if the file is not a manifest
        """
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Manifest {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Manifest {self.path} is not a JSON object")

        manifest = Manifest.from_dict(data)
        if manifest.legacy:
            logger.info(f"Loaded legacy mappings file {self.path}")
        return manifest
