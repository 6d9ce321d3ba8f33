"""Tests for the identifier map, the stage planner and the catalog."""

import threading

import pytest

from storebridge.exceptions import ConfigurationError, DuplicateMappingError
from storebridge.models.reference import RelationKind
from storebridge.models.schema import Catalog, EntityDefinition, EnumTable, IndexSpec, Relation
from storebridge.services.identifier_map import IdentifierMap
from storebridge.services.planner import StagePlanner


class TestIdentifierMap:
    def test_put_and_lookup_both_ways(self):
        id_map = IdentifierMap(["users"])
        id_map.put("users", "u1", "M1")

        assert id_map.get("users", "u1") == "M1"
        assert id_map.get_old("users", "M1") == "u1"
        assert id_map.contains("users", "u1")
        assert id_map.get("users", "u2") is None
        assert id_map.get("projects", "u1") is None

    def test_duplicate_old_key_raises(self):
        id_map = IdentifierMap()
        id_map.put("users", "u1", "M1")
        with pytest.raises(DuplicateMappingError):
            id_map.put("users", "u1", "M2")

    def test_duplicate_new_key_raises(self):
        id_map = IdentifierMap()
        id_map.put("users", "u1", "M1")
        with pytest.raises(DuplicateMappingError):
            id_map.put("users", "u2", "M1")

    def test_same_keys_in_different_types_are_independent(self):
        id_map = IdentifierMap()
        id_map.put("users", "x", "M1")
        id_map.put("projects", "x", "M1")
        assert len(id_map) == 2

    def test_empty_new_key_rejected(self):
        with pytest.raises(ValueError):
            IdentifierMap().put("users", "u1", None)

    def test_seed_and_snapshot(self):
        id_map = IdentifierMap()
        loaded = id_map.seed({"users": [("u1", "M1"), ("u2", "M2")], "projects": [("p1", "P1")]})

        assert loaded == 3
        assert id_map.count("users") == 2
        assert dict(id_map.snapshot()["users"]) == {"u1": "M1", "u2": "M2"}

    def test_concurrent_puts_keep_every_entry(self):
        id_map = IdentifierMap(["documents"])

        def worker(offset):
            for i in range(200):
                id_map.put("documents", f"d{offset}-{i}", f"N{offset}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert id_map.count("documents") == 800


class TestStagePlanner:
    def test_default_catalog_stages(self, catalog):
        plan = StagePlanner(catalog).plan()

        assert plan.stages == (
            ("users",),
            ("projects",),
            ("documents",),
            ("certificates", "reviews", "translation_memory"),
        )

    def test_default_catalog_deferred_relations(self, catalog):
        plan = StagePlanner(catalog).plan()

        assert plan.deferred == frozenset({
            ("users", "certificates"),
            ("users", "currentFiles"),
            ("users", "contributedFiles"),
            ("projects", "files"),
        })
        assert plan.to_dict()["deferred"] == [
            "projects.files",
            "users.certificates",
            "users.contributedFiles",
            "users.currentFiles",
        ]

    def test_every_dependency_in_earlier_stage(self, catalog, plan):
        for entity in catalog.entities.values():
            for relation in entity.relations:
                if plan.is_deferred(entity.name, relation.field):
                    continue
                assert plan.stage_of(relation.target) < plan.stage_of(entity.name)

    def test_deferrable_relation_without_cycle_blocks(self):
        catalog = Catalog(
            name="t",
            entities={
                "a": EntityDefinition("a", "a", "a"),
                "b": EntityDefinition("b", "b", "b", relations=[
                    Relation("aIds", "a", RelationKind.MANY, deferrable=True),
                ]),
            },
        )
        plan = StagePlanner(catalog).plan()
        assert plan.stages == (("a",), ("b",))
        assert not plan.deferred

    def test_deferrable_self_reference_is_deferred(self):
        catalog = Catalog(
            name="t",
            entities={
                "node": EntityDefinition("node", "nodes", "nodes", relations=[
                    Relation("parentId", "node", deferrable=True),
                ]),
            },
        )
        plan = StagePlanner(catalog).plan()
        assert plan.stages == (("node",),)
        assert plan.is_deferred("node", "parentId")

    def test_mandatory_cycle_is_configuration_error(self):
        catalog = Catalog(
            name="t",
            entities={
                "a": EntityDefinition("a", "a", "a", relations=[Relation("bId", "b")]),
                "b": EntityDefinition("b", "b", "b", relations=[Relation("aId", "a")]),
            },
        )
        with pytest.raises(ConfigurationError, match="cycle"):
            StagePlanner(catalog).plan()

    def test_mandatory_self_reference_is_configuration_error(self):
        catalog = Catalog(
            name="t",
            entities={"a": EntityDefinition("a", "a", "a", relations=[Relation("aId", "a")])},
        )
        with pytest.raises(ConfigurationError):
            StagePlanner(catalog).plan()

    def test_invalid_catalog_lists_problems(self):
        catalog = Catalog(
            name="t",
            entities={
                "a": EntityDefinition("a", "a", "a", relations=[Relation("zId", "z")],
                                      enums={"kind": "missing"}),
            },
            indexes=[IndexSpec("nowhere", (("x", 1),))],
        )
        with pytest.raises(ConfigurationError) as excinfo:
            StagePlanner(catalog).plan()

        problems = excinfo.value.problems
        assert any("unknown entity 'z'" in p for p in problems)
        assert any("missing enum table" in p for p in problems)
        assert any("unknown collection 'nowhere'" in p for p in problems)


class TestCatalog:
    def test_default_catalog_is_valid(self, catalog):
        assert catalog.validate() == []

    def test_back_links_follow_declared_inverse(self, catalog):
        links = catalog.back_links("documents", "projectId")
        assert [(owner, relation.field) for owner, relation in links] == [("projects", "files")]
        assert catalog.back_links("certificates", "projectId") == []

    def test_bad_inverse_is_reported(self):
        catalog = Catalog(name="bad", entities={
            "folders": EntityDefinition("folders", "folders", "folders", relations=[
                Relation("items", "items", RelationKind.MANY, deferrable=True, inverse="folderId"),
                Relation("owner", "items", inverse="ownerId"),
            ]),
            "items": EntityDefinition("items", "items", "items", relations=[
                Relation("folderId", "owners"),
            ]),
            "owners": EntityDefinition("owners", "owners", "owners"),
        })

        problems = catalog.validate()

        assert "folders.items inverse 'items.folderId' is not a single reference to 'folders'" in problems
        assert "folders.owner has an inverse but is not a deferrable list" in problems

    def test_enum_lookup(self):
        table = EnumTable.identity("status", ["open", "closed"], default="open",
                                   aliases={"shut": "closed"})
        assert table.lookup("closed") == ("closed", False)
        assert table.lookup("CLOSED") == ("closed", False)
        assert table.lookup("shut") == ("closed", False)
        assert table.lookup(None) == ("open", False)
        assert table.lookup("archived") == ("open", True)

    def test_index_names_follow_mongodb_convention(self):
        spec = IndexSpec("users", (("role", 1), ("lastActive", -1)))
        assert spec.name == "role_1_lastActive_-1"
