"""Transformation engine for converting source records to the target schema."""

import re
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime, timezone
from dateutil import parser as date_parser

from ..exceptions import TransformError
from ..models.schema import Catalog, EntityDefinition
from ..models.record import SourceRecord, TransformedRecord
from ..models.reference import BackLink, Pending, Reference, RelationKind, Resolved
from .context import MigrationContext

logger = logging.getLogger(__name__)

Rule = Callable[[Dict[str, Any], "RecordScope"], Dict[str, Any]]

_WORD = re.compile(r"\S+")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert a source timestamp to a datetime.

    Accepts datetimes, epoch milliseconds, ISO strings and Firestore export
    objects ({"_seconds": ..., "_nanoseconds": ...}). Returns None for
    anything that cannot be read.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, dict):
        seconds = value.get("_seconds", value.get("seconds"))
        nanos = value.get("_nanoseconds", value.get("nanos", 0)) or 0
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        return None
    try:
        return date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None


def to_number(value: Any, default: Any = 0) -> Any:
    """Numeric value or the default; numeric strings are converted."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                return default
    return default


def to_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def count_words(text: Any) -> int:
    if not isinstance(text, str):
        return 0
    return len(_WORD.findall(text))


class RecordScope:
    """
    Helper handed to an entity rule while it builds one target document.

    Keeps the rule itself free of identifier-map and plan lookups: foreign
    keys go through ``ref``, enumerated values through ``enum``.
    """

    def __init__(
        self,
        entity: EntityDefinition,
        record: SourceRecord,
        context: MigrationContext,
        result: TransformedRecord
    ):
        self.entity = entity
        self.record = record
        self.context = context
        self.result = result

    @property
    def source_id(self) -> str:
        return self.record.id

    @property
    def run_started_at(self) -> datetime:
        return self.context.started_at

    def require(self, field_name: str) -> Any:
        """Get a source field that has no default."""
        value = self.record.data.get(field_name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise TransformError(
                f"Missing required field '{field_name}'",
                field=field_name,
                record_id=self.record.id,
            )
        return value

    def warn(self, message: str) -> None:
        self.result.warnings.append(message)

    def enum(self, field_path: str, value: Any) -> str:
        """Map a value through the closed enum table bound to ``field_path``."""
        table = self.context.catalog.enum_table(self.entity.name, field_path)
        if table is None:
            raise TransformError(
                f"No enum table bound to {self.entity.name}.{field_path}",
                field=field_path,
                record_id=self.record.id,
            )
        mapped, fell_back = table.lookup(value)
        if fell_back:
            self.result.enum_fallbacks.append({
                "field": field_path,
                "value": str(value),
                "fallback": mapped,
            })
            logger.debug(
                f"{self.entity.name} {self.record.id}: unknown {field_path} {value!r}, using {mapped!r}"
            )
        return mapped

    def timestamp(self, value: Any) -> Optional[datetime]:
        parsed = parse_timestamp(value)
        if parsed is None and value not in (None, ""):
            self.warn(f"Unreadable timestamp {value!r}")
        return parsed

    def timestamps(self, created_field: str = "createdAt",
                   updated_field: str = "updatedAt") -> Tuple[datetime, datetime]:
        """
        Creation and update timestamps with defaulting.

        createdAt falls back to updatedAt, then to the run start; updatedAt
        falls back to the resolved createdAt.
        """
        data = self.record.data
        created = self.timestamp(data.get(created_field))
        updated = self.timestamp(data.get(updated_field))
        if created is None:
            created = updated or self.run_started_at
        if updated is None:
            updated = created
        return created, updated

    def resolve(self, field_path: str, old: Any) -> Reference:
        """
        Resolve a foreign-key field through the identifier map.

        Deferred relations return Pending and register it on the record;
        every other relation returns Resolved with the final value, where
        unmapped keys become null (or are dropped from lists and maps) and
        are counted as broken references. A resolved single reference that
        is the inverse of a deferred list also records a back-link.
        """
        relation = self.entity.relation(field_path)
        if relation is None:
            raise TransformError(
                f"No relation declared for {self.entity.name}.{field_path}",
                field=field_path,
                record_id=self.record.id,
            )

        old_keys, values = self._old_keys(relation.kind, old)

        if self.context.plan.is_deferred(self.entity.name, field_path):
            pending = Pending(old_keys=old_keys, values=values)
            self.result.pending[field_path] = (pending, relation.target, relation.kind)
            return pending

        id_map = self.context.id_map
        resolved = []
        for index, old_key in enumerate(old_keys):
            new_key = id_map.get(relation.target, old_key)
            if new_key is None:
                self.result.broken_references.append({
                    "field": field_path,
                    "old_key": old_key,
                    "referenced_entity": relation.target,
                })
                continue
            resolved.append((new_key, values[index] if values else None))

        if relation.kind is RelationKind.MANY:
            return Resolved([key for key, _ in resolved])
        if relation.kind is RelationKind.KEYED:
            return Resolved({str(key): label for key, label in resolved})
        if resolved:
            self._link_back(field_path, resolved[0][0])
        return Resolved(resolved[0][0] if resolved else None)

    def _link_back(self, field_path: str, owner_key: Any) -> None:
        for owner, relation in self.context.catalog.back_links(self.entity.name, field_path):
            if self.context.plan.is_deferred(owner, relation.field):
                self.result.back_links.append(
                    BackLink(entity=owner, key=owner_key, field=relation.field, kind=relation.kind)
                )

    def ref(self, field_path: str, old: Any) -> Any:
        """Value to store now: the resolved value, or an empty placeholder if pending."""
        reference = self.resolve(field_path, old)
        if isinstance(reference, Resolved):
            return reference.value
        return self.entity.relation(field_path).kind.empty()

    @staticmethod
    def _old_keys(kind: RelationKind, old: Any) -> Tuple[Tuple[str, ...], Tuple[Any, ...]]:
        if kind is RelationKind.KEYED:
            if not isinstance(old, dict):
                return (), ()
            keys = tuple(str(k) for k in old.keys() if k not in (None, ""))
            return keys, tuple(old[k] for k in old.keys() if k not in (None, ""))

        if kind is RelationKind.MANY:
            keys: List[str] = []
            for item in to_list(old):
                if item in (None, ""):
                    continue
                key = str(item)
                if key not in keys:
                    keys.append(key)
            return tuple(keys), ()

        if old in (None, ""):
            return (), ()
        return (str(old),), ()


class TransformEngine:
    """
    Engine for transforming source records to the target schema.

    Each entity type has one rule: a pure function from the raw document
    and a RecordScope to the target document. Rules are looked up by entity
    name; custom rules can replace the built-in ones.
    """

    def __init__(self, catalog: Catalog, rules: Optional[Dict[str, Rule]] = None):
        """
        Initialize the transform engine.

        Args:
            catalog: Entity catalog the rules belong to
            rules: Rules by entity name (defaults to the built-in rules)
        """
        from .rules import ENTITY_RULES

        self.catalog = catalog
        self._rules: Dict[str, Rule] = dict(ENTITY_RULES if rules is None else rules)

    def register_rule(self, entity: str, func: Rule) -> None:
        """Register or replace the rule for an entity type."""
        self._rules[entity] = func

    def validate(self) -> List[str]:
        """Problems that would stop a run before any I/O."""
        return [
            f"No transform rule registered for entity '{name}'"
            for name in self.catalog.entities
            if name not in self._rules
        ]

    def transform_record(
        self,
        record: SourceRecord,
        context: MigrationContext
    ) -> TransformedRecord:
        """
        Transform one source record.

        Args:
            record: Raw record read from the source store
            context: Run context (identifier map, plan, run start)

        Returns:
            Transformed record with its pending references

        Raises:
            TransformError: if the record is malformed and cannot be defaulted
        """
        entity = self.catalog.get_entity(record.source_entity)
        rule = self._rules.get(entity.name)
        if rule is None:
            raise TransformError(f"No transform rule for {entity.name}", record_id=record.id)

        result = TransformedRecord(
            source_id=record.id,
            entity=entity.name,
            collection=entity.target_collection,
            data={},
        )
        scope = RecordScope(entity, record, context, result)

        try:
            result.data = rule(record.data, scope)
        except TransformError as e:
            e.record_id = e.record_id or record.id
            raise
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            raise TransformError(
                f"Malformed {entity.name} record: {e}",
                record_id=record.id,
            ) from e

        if result.broken_references:
            logger.debug(
                f"{entity.name} {record.id}: {len(result.broken_references)} unresolved references"
            )
        return result
