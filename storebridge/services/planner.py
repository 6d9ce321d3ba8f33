"""Stage planner: orders entity types and decides which relations are deferred."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from ..exceptions import ConfigurationError
from ..models.schema import Catalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationPlan:
    """Ordered stages plus the relations left to the back-reference pass."""
    stages: Tuple[Tuple[str, ...], ...]
    deferred: FrozenSet[Tuple[str, str]]  # (entity, field path)

    def is_deferred(self, entity: str, field_path: str) -> bool:
        return (entity, field_path) in self.deferred

    def stage_of(self, entity: str) -> Optional[int]:
        for index, stage in enumerate(self.stages):
            if entity in stage:
                return index
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "stages": [list(stage) for stage in self.stages],
            "deferred": sorted(f"{entity}.{path}" for entity, path in self.deferred),
        }


@dataclass
class _Graph:
    nodes: List[str]
    edges: Dict[str, List[str]] = field(default_factory=dict)  # entity -> entities it needs first

    def add(self, source: str, target: str) -> None:
        needs = self.edges.setdefault(source, [])
        if target not in needs:
            needs.append(target)

    def reaches(self, start: str, goal: str) -> bool:
        """True if ``goal`` is reachable from ``start`` by following dependencies."""
        stack = [start]
        visited: Set[str] = set()
        while stack:
            node = stack.pop()
            if node == goal:
                return True
            if node in visited:
                continue
            visited.add(node)
            stack.extend(self.edges.get(node, []))
        return False

    def find_cycle(self) -> Optional[List[str]]:
        """Return one dependency cycle, or None when the graph is acyclic."""
        white, grey, black = 0, 1, 2
        color = {node: white for node in self.nodes}
        path: List[str] = []

        def visit(node: str) -> Optional[List[str]]:
            color[node] = grey
            path.append(node)
            for dep in self.edges.get(node, []):
                if color[dep] == grey:
                    return path[path.index(dep):] + [dep]
                if color[dep] == white:
                    found = visit(dep)
                    if found:
                        return found
            path.pop()
            color[node] = black
            return None

        for node in self.nodes:
            if color[node] == white:
                found = visit(node)
                if found:
                    return found
        return None


class StagePlanner:
    """
    Builds a MigrationPlan from a catalog's relation graph.

    Mandatory relations always block: the referenced type must be migrated
    in an earlier stage. Deferrable relations block too unless, in catalog
    declaration order, adding them would close a cycle (including a
    self-reference); those are deferred to the back-reference pass instead.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def plan(self) -> MigrationPlan:
        """
        Compute the stage order.

        Raises:
            ConfigurationError: on an invalid catalog or a cycle made only
                of mandatory relations
        """
        problems = self.catalog.validate()
        if problems:
            raise ConfigurationError("Invalid entity catalog", problems)

        names = list(self.catalog.entities.keys())
        graph = _Graph(nodes=names)

        for entity in self.catalog.entities.values():
            for relation in entity.relations:
                if not relation.deferrable:
                    if relation.target == entity.name:
                        raise ConfigurationError(
                            f"Mandatory self-reference {entity.name}.{relation.field} cannot be ordered"
                        )
                    graph.add(entity.name, relation.target)

        cycle = graph.find_cycle()
        if cycle:
            raise ConfigurationError(
                "Unbreakable dependency cycle between mandatory references: "
                + " -> ".join(cycle)
            )

        deferred: Set[Tuple[str, str]] = set()
        for entity in self.catalog.entities.values():
            for relation in entity.relations:
                if not relation.deferrable:
                    continue
                if relation.target == entity.name or graph.reaches(relation.target, entity.name):
                    deferred.add((entity.name, relation.field))
                    logger.debug(f"Deferring {entity.name}.{relation.field} -> {relation.target}")
                else:
                    graph.add(entity.name, relation.target)

        stages = self._layer(graph, names)
        plan = MigrationPlan(
            stages=tuple(tuple(stage) for stage in stages),
            deferred=frozenset(deferred),
        )
        logger.info(
            f"Planned {len(plan.stages)} stages: "
            + " | ".join(", ".join(stage) for stage in plan.stages)
        )
        return plan

    @staticmethod
    def _layer(graph: _Graph, names: List[str]) -> List[List[str]]:
        """Group nodes into ASAP layers, keeping declaration order inside a layer."""
        depth: Dict[str, int] = {}

        def resolve(node: str) -> int:
            if node not in depth:
                deps = graph.edges.get(node, [])
                depth[node] = 1 + max((resolve(dep) for dep in deps), default=-1)
            return depth[node]

        for name in names:
            resolve(name)

        layers: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for name in names:
            layers[depth[name]].append(name)
        return layers
