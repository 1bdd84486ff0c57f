"""
Dependency graph of declared side effects.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class EffectNode:
    """A declared side effect and its ordering edges."""

    name: str
    effect: Any
    dependencies: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)


class EffectGraph:
    """
    Directed graph of side effects ordered by "after" constraints.

    Data dependencies between effects already flow through deferred values;
    this graph only carries explicit ordering ("publish after the website is
    enabled") so it can be validated before anything is wired up.
    """

    def __init__(self):
        self.nodes: Dict[str, EffectNode] = {}
        self._adjacency: Dict[str, List[str]] = defaultdict(list)

    def add_node(self, name: str, effect: Any) -> None:
        if name in self.nodes:
            raise ValueError(f"Effect '{name}' is already declared")
        self.nodes[name] = EffectNode(name=name, effect=effect)

    def add_edge(self, before: str, after: str) -> None:
        """
        Order 'after' behind 'before'.

        Raises:
            ValueError: If either node is missing
        """
        missing = [n for n in (before, after) if n not in self.nodes]
        if missing:
            raise ValueError(f"Unknown effect(s): {', '.join(missing)}")

        self._adjacency[before].append(after)
        self.nodes[after].dependencies.append(before)
        self.nodes[before].dependents.append(after)

    def get_dependencies(self, name: str) -> List[str]:
        return self.nodes[name].dependencies if name in self.nodes else []

    def topological_sort(self) -> List[str]:
        """
        Order effects so every effect follows the ones it waits for.

        Ties keep declaration order.

        Raises:
            ValueError: If the graph contains a cycle
        """
        in_degree = {name: len(node.dependencies) for name, node in self.nodes.items()}
        queue = deque(name for name, degree in in_degree.items() if degree == 0)
        ordered = []

        while queue:
            name = queue.popleft()
            ordered.append(name)
            for dependent in self._adjacency[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(ordered) != len(self.nodes):
            cycle = self.detect_cycle()
            raise ValueError(f"Effects form a cycle: {' -> '.join(cycle or [])}")

        return ordered

    def detect_cycle(self) -> Optional[List[str]]:
        """Return one cycle path if the graph has any."""
        visited = set()
        on_stack = set()
        path: List[str] = []

        def dfs(name: str) -> Optional[List[str]]:
            visited.add(name)
            on_stack.add(name)
            path.append(name)

            for neighbor in self._adjacency[name]:
                if neighbor not in visited:
                    cycle = dfs(neighbor)
                    if cycle:
                        return cycle
                elif neighbor in on_stack:
                    start = path.index(neighbor)
                    return path[start:] + [neighbor]

            path.pop()
            on_stack.remove(name)
            return None

        for name in self.nodes:
            if name not in visited:
                cycle = dfs(name)
                if cycle:
                    return cycle
        return None

    def get_execution_levels(self) -> List[List[str]]:
        """
        Group effects into levels; effects in one level have no ordering
        constraint between them.
        """
        levels: List[List[str]] = []
        level_of: Dict[str, int] = {}

        for name in self.topological_sort():
            level = max((level_of[d] + 1 for d in self.get_dependencies(name)), default=0)
            level_of[name] = level
            while len(levels) <= level:
                levels.append([])
            levels[level].append(name)

        return levels

    def __repr__(self) -> str:
        edges = sum(len(targets) for targets in self._adjacency.values())
        return f"EffectGraph(nodes={len(self.nodes)}, edges={edges})"
