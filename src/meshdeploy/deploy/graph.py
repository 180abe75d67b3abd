"""Dependency graph and execution plan.

``DependencyGraph`` maps each unit to the units it depends on.
``topological_order`` returns a sequence in which every unit appears after
all of its dependencies, using an iterative depth-first traversal with
three colours (unvisited, visiting, done) and post-order append. Meeting a
"visiting" unit again means a cycle, reported as
``CircularDependencyError`` before anything is deployed.

Ordering is deterministic: roots are visited in declaration order and each
unit's dependencies in their declared order.

Example::

    graph = DependencyGraph.from_mapping({
        "postgresql": [],
        "dapr-control-plane": ["postgresql"],
        "content-api": ["dapr-control-plane", "postgresql"],
    })
    graph.topological_order()
    # ['postgresql', 'dapr-control-plane', 'content-api']
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from meshdeploy.core.errors import CircularDependencyError, UnknownDependencyError

_VISITING = 1
_DONE = 2


@dataclass(frozen=True)
class DependencyGraph:
    """Unit name -> ordered tuple of the unit names it depends on."""

    edges: Mapping[str, tuple[str, ...]]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> DependencyGraph:
        """Build a graph, rejecting dependencies on undeclared units."""
        edges = {name: tuple(dict.fromkeys(deps)) for name, deps in mapping.items()}
        for name, deps in edges.items():
            for dep in deps:
                if dep not in edges:
                    raise UnknownDependencyError(name, dep)
        return cls(edges=edges)

    @property
    def nodes(self) -> list[str]:
        return list(self.edges)

    def dependencies_of(self, name: str) -> tuple[str, ...]:
        return self.edges.get(name, ())

    def topological_order(self) -> list[str]:
        """Dependencies-first order of every unit.

        Raises
        ------
        CircularDependencyError
            The graph has a cycle; ``unit`` is on it and ``path`` spells it out.
        """
        state: dict[str, int] = {}
        order: list[str] = []
        for root in self.nodes:
            if root in state:
                continue
            state[root] = _VISITING
            stack = [(root, iter(self.dependencies_of(root)))]
            while stack:
                node, pending = stack[-1]
                for dep in pending:
                    mark = state.get(dep)
                    if mark is None:
                        state[dep] = _VISITING
                        stack.append((dep, iter(self.dependencies_of(dep))))
                        break
                    if mark == _VISITING:
                        path = [name for name, _ in stack]
                        raise CircularDependencyError(dep, path[path.index(dep):] + [dep])
                else:
                    stack.pop()
                    state[node] = _DONE
                    order.append(node)
        return order


@dataclass(frozen=True)
class ExecutionPlan:
    """Topologically sorted units plus per-tier subsets (in plan order)."""

    order: tuple[str, ...]
    tiers: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.order)

    def __iter__(self):
        return iter(self.order)

    def units_in(self, tier: str) -> tuple[str, ...]:
        return self.tiers.get(getattr(tier, "value", tier), ())

    def tier_of(self, name: str) -> str | None:
        for tier, names in self.tiers.items():
            if name in names:
                return tier
        return None


__all__ = ["DependencyGraph", "ExecutionPlan"]
