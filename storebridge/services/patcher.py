"""Back-reference patcher: second pass resolving deferred relations."""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..exceptions import LoadError, PatchError
from ..loaders.base import BaseLoader
from ..models.reference import DeferredReference, RelationKind
from ..models.schema import Catalog
from .identifier_map import IdentifierMap
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class PatchReport:
    """Outcome of one patch pass."""
    records_patched: int = 0
    records_failed: int = 0
    references_resolved: int = 0
    broken_references: int = 0
    fields: Dict[str, Dict[str, int]] = field(default_factory=dict)  # "entity.field" -> counts
    failures: List[Dict[str, Any]] = field(default_factory=list)
    broken: List[Dict[str, Any]] = field(default_factory=list)  # capped samples

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "records_patched": self.records_patched,
            "records_failed": self.records_failed,
            "references_resolved": self.references_resolved,
            "broken_references": self.broken_references,
            "fields": self.fields,
            "failures": self.failures,
            "broken": self.broken,
        }


def group_by_field(
    references: Iterable[DeferredReference]
) -> "OrderedDict[Tuple[str, str], List[DeferredReference]]":
    """Group deferred references by (entity type, field path), keeping arrival order."""
    groups: "OrderedDict[Tuple[str, str], List[DeferredReference]]" = OrderedDict()
    for ref in references:
        groups.setdefault((ref.entity, ref.field), []).append(ref)
    return groups


def merge_references(references: Iterable[DeferredReference]) -> List[DeferredReference]:
    """
    Combine references aimed at the same record field into one.

    Old keys are concatenated in arrival order with repeats dropped, so a
    project's own ``files`` list comes first and documents linking back to
    it follow.
    """
    merged: "OrderedDict[Any, List[DeferredReference]]" = OrderedDict()
    for ref in references:
        merged.setdefault(ref.new_key, []).append(ref)

    combined = []
    for refs in merged.values():
        if len(refs) == 1:
            combined.append(refs[0])
            continue
        keyed = any(ref.values for ref in refs)
        old_keys: List[str] = []
        values: List[Any] = []
        for ref in refs:
            for index, old_key in enumerate(ref.old_keys):
                if old_key in old_keys:
                    continue
                old_keys.append(old_key)
                if keyed:
                    values.append(ref.values[index] if index < len(ref.values) else None)
        combined.append(replace(refs[0], old_keys=tuple(old_keys), values=tuple(values)))
    return combined


def resolve_reference(ref: DeferredReference, id_map: IdentifierMap) -> Tuple[Any, List[str]]:
    """
    Compute the final value of a deferred field from its pending old keys.

    Returns:
        Tuple of (field value in new keys, old keys that had no mapping)
    """
    resolved: List[Tuple[Any, Any]] = []
    broken: List[str] = []
    seen = set()

    for index, old_key in enumerate(ref.old_keys):
        new_key = id_map.get(ref.referenced_entity, old_key)
        if new_key is None:
            broken.append(old_key)
            continue
        if new_key in seen:
            continue
        seen.add(new_key)
        label = ref.values[index] if index < len(ref.values) else None
        resolved.append((new_key, label))

    if ref.kind is RelationKind.MANY:
        return [key for key, _ in resolved], broken
    if ref.kind is RelationKind.KEYED:
        return {str(key): label for key, label in resolved}, broken
    return (resolved[0][0] if resolved else None), broken


class BackReferencePatcher:
    """
    Applies deferred references once every referenced record exists.

    Each target record gets one update that replaces all of its deferred
    fields with values recomputed from the pending old keys. Replacement
    rather than append makes a repeated pass converge to the same result.
    Records are patched in parallel; a record's fields are always written
    together by a single worker.
    """

    def __init__(
        self,
        loader: BaseLoader,
        catalog: Catalog,
        retry: Optional[RetryPolicy] = None,
        max_workers: int = 4,
        max_error_samples: int = 20
    ):
        """
        Initialize the patcher.

        Args:
            loader: Target store writer
            catalog: Entity catalog (for target collections)
            retry: Retry policy for failed updates
            max_workers: Records patched concurrently
            max_error_samples: Broken-reference samples kept in the report
        """
        self.loader = loader
        self.catalog = catalog
        self.retry = retry or RetryPolicy()
        self.max_workers = max(1, max_workers)
        self.max_error_samples = max_error_samples

    def build_updates(
        self,
        references: Iterable[DeferredReference],
        id_map: IdentifierMap,
        report: PatchReport
    ) -> "OrderedDict[Tuple[str, Any], Dict[str, Any]]":
        """Resolve every group and merge the results into one update per record."""
        updates: "OrderedDict[Tuple[str, Any], Dict[str, Any]]" = OrderedDict()

        for (entity, path), refs in group_by_field(references).items():
            counts = report.fields.setdefault(
                f"{entity}.{path}", {"records": 0, "resolved": 0, "broken": 0}
            )
            refs = merge_references(refs)
            logger.info(f"Resolving {len(refs)} deferred {entity}.{path} references")

            for ref in refs:
                value, broken = resolve_reference(ref, id_map)
                resolved_count = len(ref.old_keys) - len(broken)
                counts["records"] += 1
                counts["resolved"] += resolved_count
                counts["broken"] += len(broken)
                report.references_resolved += resolved_count
                report.broken_references += len(broken)

                for old_key in broken:
                    if len(report.broken) < self.max_error_samples:
                        report.broken.append({
                            "entity": entity,
                            "key": str(ref.new_key),
                            "field": path,
                            "old_key": old_key,
                            "referenced_entity": ref.referenced_entity,
                        })

                updates.setdefault((entity, ref.new_key), {})[path] = value

        return updates

    def _apply(
        self,
        entity: str,
        key: Any,
        fields: Dict[str, Any],
        cancel_event: Optional[threading.Event]
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise PatchError("Patch skipped: run cancelled")
        collection = self.catalog.get_entity(entity).target_collection
        try:
            self.retry.call(
                self.loader.update_fields, collection, key, fields,
                description=f"Patch of {entity} {key}",
                cancel_event=cancel_event,
            )
        except LoadError as e:
            raise PatchError(str(e)) from e

    def patch(
        self,
        references: Iterable[DeferredReference],
        id_map: IdentifierMap,
        cancel_event: Optional[threading.Event] = None
    ) -> PatchReport:
        """
        Resolve and write every deferred reference.

        Args:
            references: Deferred references from the forward pass
            id_map: The complete identifier map
            cancel_event: Set to stop before remaining records are patched

        Returns:
            Patch report; records that could not be updated keep their
            pre-patch field values and are listed in ``failures``
        """
        report = PatchReport()
        updates = self.build_updates(references, id_map, report)
        if not updates:
            logger.info("No deferred references to patch")
            return report

        logger.info(f"Patching {len(updates)} records with {self.max_workers} workers")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._apply, entity, key, fields, cancel_event): (entity, key, fields)
                for (entity, key), fields in updates.items()
            }
            for future in as_completed(futures):
                entity, key, fields = futures[future]
                try:
                    future.result()
                    report.records_patched += 1
                except PatchError as e:
                    report.records_failed += 1
                    report.failures.append({
                        "entity": entity,
                        "key": str(key),
                        "fields": sorted(fields.keys()),
                        "error": str(e),
                    })
                    logger.error(f"Failed to patch {entity} {key}: {e}")

        logger.info(
            f"Patched {report.records_patched} records "
            f"({report.records_failed} failed, {report.broken_references} broken references)"
        )
        return report
