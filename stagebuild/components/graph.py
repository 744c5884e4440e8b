"""Dependency ordering for component lists.

By default the manifest order *is* the build order and nothing is
checked. With enforcement enabled, each component's ``requires`` list
is validated against the component set, cycles are rejected and the
list is topologically sorted. The sort is stable: among components
whose requirements are satisfied, the one declared first goes first,
so an already-correct list comes back unchanged.
"""

from __future__ import annotations

import graphlib
import heapq
import logging
from collections.abc import Sequence

from stagebuild.components.schema import ComponentSpec

logger = logging.getLogger(__name__)


class DependencyGraphError(Exception):
    """Raised when declared requirements cannot be satisfied."""

    def __init__(
        self,
        message: str,
        code: str = "dependency_error",
        names: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.names = names or []


def check_requirements(components: Sequence[ComponentSpec]) -> None:
    """Validate that every required name is declared in the set.

    Raises:
        DependencyGraphError: If a component requires an unknown name.
    """
    known = {c.name for c in components}
    missing = sorted(
        {f"{c.name} -> {req}" for c in components for req in c.requires if req not in known}
    )
    if missing:
        raise DependencyGraphError(
            f"Unknown required components: {', '.join(missing)}",
            code="unknown_requirement",
            names=missing,
        )


def check_acyclic(components: Sequence[ComponentSpec]) -> None:
    """Reject dependency cycles.

    Raises:
        DependencyGraphError: If the requirements form a cycle.
    """
    sorter = graphlib.TopologicalSorter({c.name: set(c.requires) for c in components})
    try:
        sorter.prepare()
    except graphlib.CycleError as e:
        cycle = list(e.args[1]) if len(e.args) > 1 else []
        raise DependencyGraphError(
            f"Dependency cycle: {' -> '.join(cycle)}",
            code="dependency_cycle",
            names=cycle,
        ) from e


def topological_order(components: Sequence[ComponentSpec]) -> list[ComponentSpec]:
    """Sort components so each comes after everything it requires.

    Args:
        components: Components in declaration order.

    Returns:
        Components in a dependency-respecting order, stable with
        respect to declaration order.

    Raises:
        DependencyGraphError: If a requirement is unknown or cyclic.
    """
    check_requirements(components)
    check_acyclic(components)

    position = {c.name: i for i, c in enumerate(components)}
    by_name = {c.name: c for c in components}
    pending = {c.name: set(c.requires) for c in components}
    dependents: dict[str, list[str]] = {c.name: [] for c in components}
    for c in components:
        for req in c.requires:
            dependents[req].append(c.name)

    ready = [position[name] for name, reqs in pending.items() if not reqs]
    heapq.heapify(ready)
    ordered: list[ComponentSpec] = []

    while ready:
        component = components[heapq.heappop(ready)]
        ordered.append(component)
        for dependent in dependents[component.name]:
            pending[dependent].discard(component.name)
            if not pending[dependent]:
                heapq.heappush(ready, position[dependent])

    moved = [
        c.name for i, c in enumerate(ordered) if by_name[c.name] is not components[i]
    ]
    if moved:
        logger.info("Reordered components to satisfy requirements: %s", ", ".join(moved))
    return ordered


def order_components(
    components: Sequence[ComponentSpec],
    enforce: bool = False,
) -> list[ComponentSpec]:
    """Return the build order for a component list.

    Args:
        components: Components in declaration order.
        enforce: Validate and sort by ``requires``; otherwise the list
            order is used as is.

    Returns:
        Ordered list of components.
    """
    if not enforce:
        return list(components)
    return topological_order(components)


__all__ = [
    "DependencyGraphError",
    "check_acyclic",
    "check_requirements",
    "order_components",
    "topological_order",
]
