"""Per-entity-type bidirectional old-key to new-key table."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..exceptions import DuplicateMappingError

logger = logging.getLogger(__name__)


class IdentifierMap:
    """
    Old-key to new-key table for every entity type in a run.

    Entries are written exactly once, when a record lands in the target
    store, and are never changed or removed afterwards. ``put`` is safe to
    call from worker threads.
    """

    def __init__(self, entities: Optional[Iterable[str]] = None):
        self._lock = threading.Lock()
        self._forward: Dict[str, Dict[str, Any]] = {}
        self._reverse: Dict[str, Dict[Any, str]] = {}
        for entity in entities or []:
            self._ensure(entity)

    def _ensure(self, entity: str) -> None:
        if entity not in self._forward:
            self._forward[entity] = {}
            self._reverse[entity] = {}

    def put(self, entity: str, old_key: str, new_key: Any) -> None:
        """
        Record that ``old_key`` of ``entity`` now lives at ``new_key``.

        Raises:
            DuplicateMappingError: if either key is already mapped
        """
        if new_key is None:
            raise ValueError(f"Cannot map {entity} {old_key!r} to an empty key")

        with self._lock:
            self._ensure(entity)
            if old_key in self._forward[entity]:
                raise DuplicateMappingError(entity, old_key=old_key)
            if new_key in self._reverse[entity]:
                raise DuplicateMappingError(entity, new_key=new_key)
            self._forward[entity][old_key] = new_key
            self._reverse[entity][new_key] = old_key

    def get(self, entity: str, old_key: Optional[str]) -> Optional[Any]:
        """Get the new key for an old key, or None if not migrated."""
        if old_key is None:
            return None
        table = self._forward.get(entity)
        if table is None:
            return None
        return table.get(str(old_key))

    def get_old(self, entity: str, new_key: Any) -> Optional[str]:
        """Get the old key for a new key."""
        table = self._reverse.get(entity)
        if table is None:
            return None
        return table.get(new_key)

    def contains(self, entity: str, old_key: str) -> bool:
        return self.get(entity, old_key) is not None

    def count(self, entity: str) -> int:
        return len(self._forward.get(entity, {}))

    def snapshot(self) -> Dict[str, List[Tuple[str, Any]]]:
        """Consistent copy of every table, for the manifest."""
        with self._lock:
            return {
                entity: list(table.items())
                for entity, table in self._forward.items()
            }

    def seed(self, mappings: Dict[str, Iterable[Tuple[str, Any]]]) -> int:
        """
        Pre-load entries from a previous run's manifest.

        Returns:
            Number of entries loaded
        """
        loaded = 0
        for entity, pairs in mappings.items():
            for old_key, new_key in pairs:
                self.put(entity, old_key, new_key)
                loaded += 1
        logger.info(f"Seeded identifier map with {loaded} entries")
        return loaded

    def __len__(self) -> int:
        return sum(len(table) for table in self._forward.values())
