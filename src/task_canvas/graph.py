"""Cycle policies over relationship edges.

Two policies share the same edge model but never each other's semantics:

* ``StrictAcyclicPolicy`` runs at write time against the repository and raises
  ``ValidationError`` when a ``depends_on``/``blocks`` edge would close a cycle.
* ``FirstParentPolicy`` runs while building display trees in memory; it keeps
  the first parent seen for every child and silently drops links that would
  close a cycle.
"""

from __future__ import annotations

import asyncio
import logging

from .models import Relationship, RelationshipType, ValidationError
from .repository import RelationshipQuery, RelationshipRepository, collect_pages

logger = logging.getLogger(__name__)

PAGE_SIZE = 500


class StrictAcyclicPolicy:
    def __init__(self, relationships: RelationshipRepository, *, page_size: int = PAGE_SIZE) -> None:
        self.relationships = relationships
        self.page_size = page_size

    async def ensure_acyclic(self, from_id: str, to_id: str, rel_type: RelationshipType) -> None:
        """Raise when adding ``from_id -> to_id`` of ``rel_type`` would close a cycle."""
        if not rel_type.is_acyclic:
            return
        path = await self.find_path(to_id, from_id, rel_type)
        if path is None:
            return
        logger.info(
            "relationship.cycle_rejected from=%s to=%s type=%s path=%s",
            from_id,
            to_id,
            rel_type.value,
            " -> ".join(path),
        )
        raise ValidationError(
            "Relationship would create a cycle",
            reason="cycle",
            context={
                "from_id": from_id,
                "to_id": to_id,
                "type": rel_type.value,
                "path": [from_id, *path],
            },
        )

    async def find_path(self, start: str, target: str, rel_type: RelationshipType) -> list[str] | None:
        """Breadth-first search along ``rel_type`` edges; returns the id path or None.

        Every frontier is expanded with one concurrent fan-out of repository
        lookups. Visited ids are tracked so stored data that already contains a
        cycle cannot make the search loop.
        """
        previous: dict[str, str | None] = {start: None}
        frontier = [start]
        while frontier:
            batches = await asyncio.gather(*(self._outgoing(node, rel_type) for node in frontier))
            next_frontier: list[str] = []
            for node, edges in zip(frontier, batches):
                for edge in edges:
                    if edge.to_id in previous:
                        continue
                    previous[edge.to_id] = node
                    if edge.to_id == target:
                        return _unwind(previous, target)
                    next_frontier.append(edge.to_id)
            frontier = next_frontier
        logger.debug(
            "relationship.cycle_check start=%s target=%s type=%s visited=%d",
            start,
            target,
            rel_type.value,
            len(previous),
        )
        return None

    async def _outgoing(self, node: str, rel_type: RelationshipType) -> list[Relationship]:
        return await collect_pages(
            lambda limit, offset: self.relationships.list(
                RelationshipQuery(from_id=node, type=rel_type, limit=limit, offset=offset)
            ),
            self.page_size,
        )


def _unwind(previous: dict[str, str | None], target: str) -> list[str]:
    path = [target]
    current = previous[target]
    while current is not None:
        path.append(current)
        current = previous[current]
    path.reverse()
    return path


class FirstParentPolicy:
    def __init__(self) -> None:
        self.parent_by_child: dict[str, str] = {}
        self.children_by_parent: dict[str, list[str]] = {}

    def accept(self, parent_id: str, child_id: str) -> bool:
        """Record ``parent_id -> child_id`` unless it is a self link, a second parent, or a cycle."""
        if parent_id == child_id:
            return False
        if child_id in self.parent_by_child:
            return False
        if self._closes_cycle(parent_id, child_id):
            return False
        self.parent_by_child[child_id] = parent_id
        self.children_by_parent.setdefault(parent_id, []).append(child_id)
        return True

    def has_parent(self, task_id: str) -> bool:
        return task_id in self.parent_by_child

    def children_of(self, task_id: str) -> list[str]:
        return list(self.children_by_parent.get(task_id, ()))

    def _closes_cycle(self, parent_id: str, child_id: str) -> bool:
        current: str | None = parent_id
        while current is not None:
            if current == child_id:
                return True
            current = self.parent_by_child.get(current)
        return False
