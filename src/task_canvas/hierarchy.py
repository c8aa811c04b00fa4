"""Parent/child forest construction for display."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Protocol, Sequence

from .graph import FirstParentPolicy
from .models import Relationship, RelationshipType


class HierarchyTask(Protocol):
    id: str
    title: str
    priority: int


@dataclass(slots=True)
class HierarchyNode:
    id: str
    task: Any
    depth: int
    children: list[HierarchyNode] = field(default_factory=list)

    def _shallow_dict(self) -> dict[str, Any]:
        task = self.task.to_dict() if hasattr(self.task, "to_dict") else self.task
        return {"id": self.id, "depth": self.depth, "task": task, "children": []}

    def to_dict(self) -> dict[str, Any]:
        payload = self._shallow_dict()
        stack = [(self, payload)]
        while stack:
            node, node_payload = stack.pop()
            for child in node.children:
                child_payload = child._shallow_dict()
                node_payload["children"].append(child_payload)
                stack.append((child, child_payload))
        return payload


def _order_key(task: HierarchyTask) -> tuple[int, str]:
    return (-task.priority, task.title)


def build_hierarchy(
    tasks: Sequence[HierarchyTask],
    relationships: Iterable[Relationship] = (),
    edge_type: RelationshipType | str = RelationshipType.PARENT_OF,
) -> list[HierarchyNode]:
    """Build an ordered forest from ``edge_type`` links (``from_id`` is the parent).

    Links to unknown tasks, self links, second parents, and links that would
    close a cycle are dropped. Every task appears exactly once; roots and
    siblings are ordered by priority descending, then title.
    """
    if not tasks:
        return []

    target_type = RelationshipType.parse(edge_type)
    tasks_by_id = {task.id: task for task in tasks}
    policy = FirstParentPolicy()
    for relationship in relationships:
        if relationship.type is not target_type:
            continue
        parent_id = relationship.from_id.strip()
        child_id = relationship.to_id.strip()
        if parent_id not in tasks_by_id or child_id not in tasks_by_id:
            continue
        policy.accept(parent_id, child_id)

    ordered = sorted(tasks_by_id.values(), key=_order_key)
    attached: set[str] = set()

    def grow(root_id: str) -> HierarchyNode:
        # Parent chains may exceed the recursion limit.
        root = HierarchyNode(id=root_id, task=tasks_by_id[root_id], depth=0)
        attached.add(root_id)
        stack = [root]
        while stack:
            node = stack.pop()
            children = sorted((tasks_by_id[child] for child in policy.children_of(node.id)), key=_order_key)
            for child in children:
                attached.add(child.id)
                child_node = HierarchyNode(id=child.id, task=child, depth=node.depth + 1)
                node.children.append(child_node)
                stack.append(child_node)
        return root

    forest = [grow(task.id) for task in ordered if not policy.has_parent(task.id)]
    for task in ordered:
        if task.id not in attached:
            forest.append(grow(task.id))
    return forest


def _outline_line(node: HierarchyNode) -> str:
    task = node.task
    indent = "  " * node.depth
    icon = f"{task.icon} " if getattr(task, "icon", None) else ""
    status = getattr(task, "status", "pending")
    category = f" [{task.category}]" if getattr(task, "category", None) else ""
    return f"{indent}- {icon}{task.title} ({status} · P{task.priority}){category}"


def iter_preorder(forest: Iterable[HierarchyNode]) -> Iterator[HierarchyNode]:
    stack = list(reversed(list(forest)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def format_outline(forest: Iterable[HierarchyNode]) -> list[str]:
    return [_outline_line(node) for node in iter_preorder(forest)]
