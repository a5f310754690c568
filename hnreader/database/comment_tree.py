"""
Comment tree assembly.

Comments are stored flat (one row per comment with an optional parent_id)
and reconstructed into a tree at read time:

- A comment whose parent_id is NULL is a top-level reply to the story.
- A comment whose parent has not been fetched yet is promoted to a root,
  so partially fetched threads still render every stored comment.
- Deleted comments are kept only as placeholders for surviving replies.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


@dataclass
class CommentNode:
    id: int
    story_id: int
    parent_id: Optional[int]
    by: Optional[str]
    text: Optional[str]
    time: int
    dead: bool = False
    deleted: bool = False
    fetched_at: int = 0
    children: list["CommentNode"] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Any) -> "CommentNode":
        """Build a node from a Comment ORM row (or anything with the same attributes)."""
        return cls(
            id=row.id,
            story_id=row.story_id,
            parent_id=row.parent_id,
            by=row.by,
            text=row.text,
            time=row.time,
            dead=bool(row.dead),
            deleted=bool(row.deleted),
            fetched_at=row.fetched_at or 0,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "by": self.by,
            "text": self.text,
            "time": self.time,
            "dead": self.dead,
            "deleted": self.deleted,
            "children": [child.to_dict() for child in self.children],
        }


def build_comment_tree(nodes: Iterable[CommentNode]) -> list[CommentNode]:
    """
    Link flat comment nodes into a forest.

    Input order is preserved among siblings (callers pass rows ordered by
    time). Nodes referencing a parent outside the set become roots, as
    does the earliest node of any parent cycle.
    """
    ordered = list(nodes)
    by_id = {node.id: node for node in ordered}
    roots: list[CommentNode] = []

    for node in ordered:
        node.children = []

    for node in ordered:
        parent = by_id.get(node.parent_id) if node.parent_id is not None else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            roots.append(node)

    # Parent cycles are unreachable from any root; break each at its
    # earliest node so no comment is lost
    reachable = _reachable(roots)
    if len(reachable) < len(by_id):
        for node in ordered:
            if node.id in reachable:
                continue
            parent = by_id[node.parent_id]
            parent.children = [child for child in parent.children if child is not node]
            roots.append(node)
            reachable |= _reachable([node])
        position = {node.id: i for i, node in enumerate(ordered)}
        roots.sort(key=lambda n: position[n.id])

    return prune_deleted(roots)


def _reachable(roots: list[CommentNode]) -> set[int]:
    seen: set[int] = set()
    stack = list(roots)
    while stack:
        node = stack.pop()
        if node.id in seen:
            continue
        seen.add(node.id)
        stack.extend(node.children)
    return seen


def prune_deleted(nodes: list[CommentNode]) -> list[CommentNode]:
    """Drop deleted comments that have no remaining children (bottom-up)."""
    kept: list[CommentNode] = []
    # Iterative post-order walk; threads can be arbitrarily deep
    stack: list[tuple[CommentNode, bool]] = [(node, False) for node in reversed(nodes)]
    survivors: set[int] = set()

    while stack:
        node, children_done = stack.pop()
        if not children_done:
            stack.append((node, True))
            stack.extend((child, False) for child in reversed(node.children))
            continue
        node.children = [child for child in node.children if child.id in survivors]
        if node.deleted and not node.children:
            continue
        survivors.add(node.id)

    for node in nodes:
        if node.id in survivors:
            kept.append(node)
    return kept


def max_fetched_at(nodes: Iterable[CommentNode]) -> int:
    return max((node.fetched_at for node in nodes), default=0)
