"""
Pack dependency graph.

Nodes are pack names, edges point from a pack to the packs it depends on.
The graph is validated before planning: every edge must point at a known
pack and the graph must be acyclic. Packs are then layered by dependency
depth; a pack's level is one more than the deepest of its dependencies.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from crdwise.errors import DependencyCycleError, UnknownDependencyError

if TYPE_CHECKING:
    from crdwise.pack.loader import Pack


@dataclass
class DependencyGraph:
    """
    Packs and their depends_on edges.

    Attributes:
        packs: Loaded packs by name (may be empty for graphs built by hand)
        edges: Pack name -> names it depends on, in declaration order
    """

    packs: dict[str, "Pack"] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_pack(cls, root: "Pack") -> "DependencyGraph":
        """Build the graph of a loaded pack and all of its dependencies."""
        graph = cls()
        for pack in root.walk():
            graph.add(pack.name, list(pack.manifest.dependencies), pack=pack)
        return graph

    def add(self, name: str, depends_on: list[str] | None = None, pack: "Pack | None" = None) -> None:
        self.edges[name] = list(depends_on or [])
        if pack is not None:
            self.packs[name] = pack

    def dependencies_of(self, name: str) -> list[str]:
        return list(self.edges.get(name, []))

    def validate(self) -> None:
        """
        Check edges and acyclicity.

        Raises:
            UnknownDependencyError: If an edge points at a pack not in the graph
            DependencyCycleError: If the graph has a cycle (names the cycle)
        """
        for name in sorted(self.edges):
            for dependency in self.dependencies_of(name):
                if dependency not in self.edges:
                    raise UnknownDependencyError(pack=name, dependency=dependency)

        cycle = self.find_cycle()
        if cycle:
            raise DependencyCycleError(cycle=cycle)

    def find_cycle(self) -> list[str] | None:
        """
        Return one cycle as a closed path (e.g., ["a", "b", "a"]), or None.

        Nodes are visited in sorted order so the reported cycle is stable.
        """
        visiting: list[str] = []
        done: set[str] = set()

        def visit(node: str) -> list[str] | None:
            if node in done:
                return None
            if node in visiting:
                return visiting[visiting.index(node):] + [node]
            visiting.append(node)
            for dependency in self.dependencies_of(node):
                cycle = visit(dependency)
                if cycle:
                    return cycle
            visiting.pop()
            done.add(node)
            return None

        for name in sorted(self.edges):
            cycle = visit(name)
            if cycle:
                return cycle
        return None

    def levels(self) -> list[list[str]]:
        """
        Packs grouped by dependency depth, leaves first.

        Level 0 holds packs with no dependencies. Names within a level are
        sorted. Call validate() first; a cyclic graph raises.
        """
        self.validate()
        depth: dict[str, int] = {}

        def level_of(node: str) -> int:
            if node not in depth:
                depth[node] = 1 + max((level_of(d) for d in self.dependencies_of(node)), default=-1)
            return depth[node]

        for name in self.edges:
            level_of(name)

        grouped: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for name, level in depth.items():
            grouped[level].append(name)
        return [sorted(names) for names in grouped]
