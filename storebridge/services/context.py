"""Explicit run state threaded through every stage and record call."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List

from ..exceptions import MigrationCancelled
from ..models.reference import DeferredReference
from ..models.schema import Catalog
from .identifier_map import IdentifierMap
from .planner import MigrationPlan


@dataclass
class MigrationContext:
    """State shared by the transformer, the writers and the patcher for one run."""
    catalog: Catalog
    plan: MigrationPlan
    id_map: IdentifierMap
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancel_event: threading.Event = field(default_factory=threading.Event)
    deferred: List[DeferredReference] = field(default_factory=list)
    _deferred_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add_deferred(self, references: Iterable[DeferredReference]) -> None:
        with self._deferred_lock:
            self.deferred.extend(references)

    def take_deferred(self) -> List[DeferredReference]:
        """Hand over every deferred reference recorded so far, exactly once."""
        with self._deferred_lock:
            taken, self.deferred = self.deferred, []
        return taken

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise MigrationCancelled("Migration aborted by operator")
