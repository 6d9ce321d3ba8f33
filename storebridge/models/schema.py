"""Entity catalog models: entity types, relations, enum tables and indexes."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .reference import RelationKind


@dataclass
class EnumTable:
    """Closed lookup table for an enumerated field.

    Every accepted source value is listed explicitly, including values that
    map to themselves. Anything else falls back to ``default``.
    """
    name: str
    values: Dict[str, str]
    default: str

    def lookup(self, value: Any) -> Tuple[str, bool]:
        """Map a source value.

        Returns:
            Tuple of (target value, whether the fallback was used for a
            non-empty unknown value)
        """
        if value is None or value == "":
            return self.default, False

        key = str(value).strip()
        if key in self.values:
            return self.values[key], False

        lowered = key.lower()
        if lowered in self.values:
            return self.values[lowered], False

        return self.default, True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"name": self.name, "values": self.values, "default": self.default}

    @classmethod
    def identity(cls, name: str, values: List[str], default: str,
                 aliases: Optional[Dict[str, str]] = None) -> "EnumTable":
        """Build a table where each allowed value maps to itself."""
        table = {v: v for v in values}
        table.update(aliases or {})
        return cls(name=name, values=table, default=default)


@dataclass(frozen=True)
class Relation:
    """A foreign-key field pointing at another entity type."""
    field: str  # target field path, dot notation for embedded lists
    target: str  # referenced entity type
    kind: RelationKind = RelationKind.ONE
    deferrable: bool = False
    inverse: Optional[str] = None  # field on the target entity pointing back here

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "target": self.target,
            "kind": self.kind.value,
            "deferrable": self.deferrable,
            "inverse": self.inverse,
        }


@dataclass
class EntityDefinition:
    """A migrated entity type."""
    name: str
    source_collection: str
    target_collection: str
    description: str = ""
    relations: List[Relation] = field(default_factory=list)
    enums: Dict[str, str] = field(default_factory=dict)  # target field -> enum table name
    required_fields: List[str] = field(default_factory=list)

    def relation(self, field_path: str) -> Optional[Relation]:
        """Get the relation declared for a field path."""
        for relation in self.relations:
            if relation.field == field_path:
                return relation
        return None

    @property
    def dependencies(self) -> List[str]:
        """Entity types referenced by this one, in declaration order."""
        seen: List[str] = []
        for relation in self.relations:
            if relation.target not in seen:
                seen.append(relation.target)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "source_collection": self.source_collection,
            "target_collection": self.target_collection,
            "description": self.description,
            "relations": [r.to_dict() for r in self.relations],
            "enums": self.enums,
            "required_fields": self.required_fields,
        }


IndexKey = Tuple[str, Union[int, str]]


@dataclass(frozen=True)
class IndexSpec:
    """A secondary index to define on a target collection."""
    collection: str
    keys: Tuple[IndexKey, ...]
    unique: bool = False

    @property
    def name(self) -> str:
        """Index name, using MongoDB's default naming convention."""
        return "_".join(f"{path}_{direction}" for path, direction in self.keys)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "collection": self.collection,
            "name": self.name,
            "keys": [list(k) for k in self.keys],
            "unique": self.unique,
        }


@dataclass
class Catalog:
    """The fixed set of entity types, enum tables and indexes for a migration."""
    name: str
    entities: Dict[str, EntityDefinition] = field(default_factory=dict)
    enum_tables: Dict[str, EnumTable] = field(default_factory=dict)
    indexes: List[IndexSpec] = field(default_factory=list)
    index_version: int = 1

    def get_entity(self, name: str) -> EntityDefinition:
        """Get an entity definition by name."""
        try:
            return self.entities[name]
        except KeyError:
            raise KeyError(f"Unknown entity type: {name}") from None

    def enum_table(self, entity: str, field_path: str) -> Optional[EnumTable]:
        """Get the enum table bound to an entity field."""
        table_name = self.entities[entity].enums.get(field_path)
        if table_name is None:
            return None
        return self.enum_tables.get(table_name)

    def back_links(self, entity: str, field_path: str) -> List[Tuple[str, Relation]]:
        """
        List relations that collect records of ``entity`` through ``field_path``.

        A project's ``files`` list is the inverse of each document's
        ``projectId``: writing a document with a resolved ``projectId`` adds
        the document to that project's list.

        Returns:
            (owner entity name, owner relation) pairs
        """
        links = []
        for owner in self.entities.values():
            for relation in owner.relations:
                if relation.target == entity and relation.inverse == field_path:
                    links.append((owner.name, relation))
        return links

    def validate(self) -> List[str]:
        """
        Check the catalog for configuration problems.

        Returns:
            List of problem descriptions (empty when valid)
        """
        problems = []
        collections = set()

        for name, entity in self.entities.items():
            if entity.name != name:
                problems.append(f"Entity registered as '{name}' is named '{entity.name}'")

            if entity.target_collection in collections:
                problems.append(f"Target collection '{entity.target_collection}' used twice")
            collections.add(entity.target_collection)

            seen_fields = set()
            for relation in entity.relations:
                if relation.target not in self.entities:
                    problems.append(
                        f"{name}.{relation.field} references unknown entity '{relation.target}'"
                    )
                if relation.field in seen_fields:
                    problems.append(f"{name}.{relation.field} declared twice")
                seen_fields.add(relation.field)
                if relation.inverse is not None and relation.target in self.entities:
                    problems.extend(self._inverse_problems(name, relation))

            for field_path, table_name in entity.enums.items():
                if table_name not in self.enum_tables:
                    problems.append(
                        f"{name}.{field_path} uses missing enum table '{table_name}'"
                    )

        for table in self.enum_tables.values():
            if table.default not in table.values.values():
                problems.append(f"Enum table '{table.name}' default '{table.default}' is not a valid value")

        for spec in self.indexes:
            if spec.collection not in collections:
                problems.append(f"Index {spec.name} targets unknown collection '{spec.collection}'")

        return problems

    def _inverse_problems(self, name: str, relation: Relation) -> List[str]:
        label = f"{name}.{relation.field}"
        if relation.kind is not RelationKind.MANY or not relation.deferrable:
            return [f"{label} has an inverse but is not a deferrable list"]
        back = self.entities[relation.target].relation(relation.inverse)
        if back is None or back.target != name or back.kind is not RelationKind.ONE:
            return [
                f"{label} inverse '{relation.target}.{relation.inverse}' "
                f"is not a single reference to '{name}'"
            ]
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "entities": {k: v.to_dict() for k, v in self.entities.items()},
            "enum_tables": {k: v.to_dict() for k, v in self.enum_tables.items()},
            "indexes": [i.to_dict() for i in self.indexes],
            "index_version": self.index_version,
        }
