"""Referential integrity checks against the target store."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from ..loaders.base import BaseLoader
from ..models.record import ValidationError
from ..models.reference import RelationKind
from ..models.schema import Catalog, EntityDefinition, Relation

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Result of a referential integrity check."""
    documents_checked: int = 0
    references_checked: int = 0
    dangling: int = 0
    by_field: Dict[str, int] = field(default_factory=dict)
    errors: List[ValidationError] = field(default_factory=list)  # capped samples

    @property
    def valid(self) -> bool:
        return self.dangling == 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "valid": self.valid,
            "documents_checked": self.documents_checked,
            "references_checked": self.references_checked,
            "dangling": self.dangling,
            "by_field": self.by_field,
            "errors": [e.to_dict() for e in self.errors],
        }


def field_values(document: Dict[str, Any], path: str) -> Iterator[Any]:
    """
    Yield every value at a dot-notation path.

    Lists along the path are walked element by element, so
    ``translations.userId`` yields the userId of each embedded translation.
    """
    parts = path.split(".")

    def walk(value: Any, index: int) -> Iterator[Any]:
        if index == len(parts):
            yield value
            return
        if isinstance(value, list):
            for item in value:
                yield from walk(item, index)
        elif isinstance(value, dict) and parts[index] in value:
            yield from walk(value[parts[index]], index + 1)

    yield from walk(document, 0)


class ReferenceValidator:
    """
    Checks that every populated foreign key in the target store points at an
    existing record of the referenced type.

    Null values and empty lists or maps are valid. Anything else that is not
    a key of the referenced collection, including a leftover source key, is
    reported as dangling.
    """

    def __init__(self, loader: BaseLoader, catalog: Catalog, max_error_samples: int = 50):
        """
        Initialize the validator.

        Args:
            loader: Target store writer used to read documents back
            catalog: Entity catalog declaring the relations to check
            max_error_samples: Dangling references kept in the report
        """
        self.loader = loader
        self.catalog = catalog
        self.max_error_samples = max_error_samples
        self._keys: Dict[str, Set[Any]] = {}

    def _collection_keys(self, entity: str) -> Set[Any]:
        if entity not in self._keys:
            collection = self.catalog.get_entity(entity).target_collection
            self._keys[entity] = {
                doc["_id"] for doc in self.loader.iter_documents(collection, ["_id"])
            }
        return self._keys[entity]

    def _references(self, relation: Relation, value: Any) -> List[Any]:
        if value is None:
            return []
        if relation.kind is RelationKind.MANY:
            return list(value) if isinstance(value, list) else [value]
        if relation.kind is RelationKind.KEYED:
            if not isinstance(value, dict):
                return [value]
            return [self.loader.decode_key(k) for k in value.keys()]
        return [value]

    def validate_entity(self, entity: EntityDefinition, report: ValidationReport) -> None:
        """Check every relation of one entity type."""
        if not entity.relations:
            return

        for document in self.loader.iter_documents(entity.target_collection):
            report.documents_checked += 1
            for relation in entity.relations:
                keys = self._collection_keys(relation.target)
                for value in field_values(document, relation.field):
                    for ref in self._references(relation, value):
                        report.references_checked += 1
                        if ref in keys:
                            continue
                        label = f"{entity.name}.{relation.field}"
                        report.dangling += 1
                        report.by_field[label] = report.by_field.get(label, 0) + 1
                        if len(report.errors) < self.max_error_samples:
                            report.errors.append(ValidationError(
                                entity=entity.name,
                                record_key=str(document.get("_id")),
                                field=relation.field,
                                message=f"No {relation.target} record with key {ref!r}",
                                value=ref,
                            ))

    def validate(self, entities: Optional[List[str]] = None) -> ValidationReport:
        """
        Check referential integrity across the catalog.

        Args:
            entities: Limit the check to these entity types

        Returns:
            Validation report
        """
        report = ValidationReport()
        self._keys = {}

        for name, entity in self.catalog.entities.items():
            if entities and name not in entities:
                continue
            self.validate_entity(entity, report)

        if report.valid:
            logger.info(
                f"Referential integrity OK: {report.references_checked} references "
                f"in {report.documents_checked} documents"
            )
        else:
            logger.warning(
                f"Found {report.dangling} dangling references: "
                + ", ".join(f"{k}={v}" for k, v in sorted(report.by_field.items()))
            )
        return report
