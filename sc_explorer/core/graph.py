from __future__ import annotations

from graphlib import CycleError, TopologicalSorter
from typing import Dict, Iterable, List, Mapping, Sequence, Set, Tuple


class DependencyGraph:
    """
    Explicit dependency declaration between raw inputs and derived nodes.

    - inputs have no dependencies and are set from outside
    - every derived node lists the inputs / nodes it reads
    - `order` is a deterministic topological order of the derived nodes, so a node
      is always recomputed after everything it depends on

    Raises ValueError at construction for unknown names or cycles.
    """

    def __init__(self, inputs: Iterable[str], nodes: Mapping[str, Sequence[str]]) -> None:
        self.inputs: Tuple[str, ...] = tuple(inputs)
        self.deps: Dict[str, Tuple[str, ...]] = {name: tuple(d) for name, d in nodes.items()}

        overlap = set(self.inputs) & set(self.deps)
        if overlap:
            raise ValueError(f"Names declared as both input and node: {sorted(overlap)}")

        known = set(self.inputs) | set(self.deps)
        for name, deps in self.deps.items():
            unknown = [d for d in deps if d not in known]
            if unknown:
                raise ValueError(f"Node '{name}' depends on unknown names: {unknown}")

        sorter = TopologicalSorter({name: [d for d in deps if d in self.deps] for name, deps in self.deps.items()})
        try:
            ordered = list(sorter.static_order())
        except CycleError as e:
            raise ValueError(f"Dependency cycle: {e.args[1]}") from e

        # static_order is deterministic for a given declaration order
        self.order: Tuple[str, ...] = tuple(ordered)
        self._position = {name: i for i, name in enumerate(self.order)}

        self._dependents: Dict[str, Set[str]] = {name: set() for name in known}
        for name, deps in self.deps.items():
            for dep in deps:
                self._dependents[dep].add(name)

    def __contains__(self, name: object) -> bool:
        return name in self.deps or name in self.inputs

    def is_input(self, name: str) -> bool:
        return name in self.inputs

    def ancestors(self, name: str) -> Set[str]:
        """All derived nodes `name` transitively depends on (inputs excluded)."""
        seen: Set[str] = set()
        stack = [d for d in self.deps.get(name, ()) if d in self.deps]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(d for d in self.deps[current] if d in self.deps)
        return seen

    def descendants(self, name: str) -> Set[str]:
        """All derived nodes that transitively read `name`."""
        seen: Set[str] = set()
        stack = list(self._dependents.get(name, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents.get(current, ()))
        return seen

    def plan(self, target: str) -> List[str]:
        """Nodes to visit, in order, to bring `target` up to date."""
        needed = self.ancestors(target) | {target}
        return sorted(needed, key=self._position.__getitem__)
