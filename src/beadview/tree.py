# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Parent/child issue hierarchy.

The tree is stored as an arena: a flat tuple of TreeNode records addressed by
index, with parent/children expressed as indices. Nodes never reference each
other directly, and views hold issue ids or node indices only.

Construction rules:
- Children come from parent-child dependencies (child depends on parent)
- Roots are issues with no existing parent
- An issue with several parents appears under each of them
- A parent-child cycle is cut where the walk would revisit an ancestor;
  issues reachable only through a cycle are promoted to roots
- Siblings sort by priority, then type (epic, feature, task, bug, chore),
  then created ascending, then id
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .models import DependencyType, Issue, IssueType

logger = logging.getLogger(__name__)

TYPE_ORDER = {
    IssueType.EPIC: 0,
    IssueType.FEATURE: 1,
    IssueType.TASK: 2,
    IssueType.BUG: 3,
    IssueType.CHORE: 4,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class TreeNode:
    """One occurrence of an issue in the tree.

    Attributes:
        issue_id: Issue shown at this node.
        depth: 0 for roots.
        parent: Index of the parent node, or None for roots.
        children: Indices of child nodes, in display order.
        expanded: Initial expansion state (roots only).
    """

    issue_id: str
    depth: int
    parent: Optional[int]
    children: Tuple[int, ...]
    expanded: bool


@dataclass(frozen=True)
class IssueTree:
    nodes: Tuple[TreeNode, ...]
    roots: Tuple[int, ...]
    index_by_id: Mapping[str, int]

    def __len__(self) -> int:
        return len(self.nodes)

    def node_for(self, issue_id: str) -> Optional[TreeNode]:
        """Node of the first placement of an issue."""
        index = self.index_by_id.get(issue_id)
        return self.nodes[index] if index is not None else None

    def children_of(self, issue_id: str) -> List[str]:
        node = self.node_for(issue_id)
        if node is None:
            return []
        return [self.nodes[i].issue_id for i in node.children]

    def root_ids(self) -> List[str]:
        return [self.nodes[i].issue_id for i in self.roots]

    def walk(self) -> Iterator[TreeNode]:
        """Depth-first pre-order traversal in display order."""
        stack = list(reversed(self.roots))
        while stack:
            index = stack.pop()
            node = self.nodes[index]
            yield node
            stack.extend(reversed(node.children))


def _sibling_key(issue: Issue) -> Tuple[int, int, datetime, str]:
    return (
        issue.priority,
        TYPE_ORDER.get(issue.issue_type, len(TYPE_ORDER)),
        issue.created_at or _EPOCH,
        issue.id,
    )


def build_issue_tree(issues: Iterable[Issue]) -> IssueTree:
    """Build the parent/child hierarchy.

    Args:
        issues: Issue set (any order).

    Returns:
        IssueTree arena.
    """
    issue_list = list(issues)
    issue_map = {issue.id: issue for issue in issue_list}

    children_by_parent: Dict[str, List[str]] = {}
    has_parent: Set[str] = set()
    for issue in issue_list:
        for dep in issue.dependencies:
            if dep.type != DependencyType.PARENT_CHILD:
                continue
            parent_id = dep.depends_on_id
            if parent_id == issue.id or parent_id not in issue_map:
                continue
            siblings = children_by_parent.setdefault(parent_id, [])
            if issue.id not in siblings:
                siblings.append(issue.id)
                has_parent.add(issue.id)

    for parent_id, child_ids in children_by_parent.items():
        child_ids.sort(key=lambda cid: _sibling_key(issue_map[cid]))

    root_ids = sorted(
        (issue.id for issue in issue_list if issue.id not in has_parent),
        key=lambda rid: _sibling_key(issue_map[rid]),
    )

    nodes: List[dict] = []
    index_by_id: Dict[str, int] = {}
    roots: List[int] = []
    placed: Set[str] = set()

    def add_subtree(root_id: str) -> int:
        root_index = len(nodes)
        nodes.append({"issue_id": root_id, "depth": 0, "parent": None, "children": []})
        index_by_id.setdefault(root_id, root_index)
        placed.add(root_id)
        # Stack of (node index, ids on the path from the root)
        stack: List[Tuple[int, Tuple[str, ...]]] = [(root_index, (root_id,))]
        while stack:
            index, path = stack.pop()
            record = nodes[index]
            for child_id in children_by_parent.get(record["issue_id"], ()):
                if child_id in path:
                    logger.debug(f"Parent-child cycle at {record['issue_id']} -> {child_id}")
                    continue
                child_index = len(nodes)
                nodes.append(
                    {
                        "issue_id": child_id,
                        "depth": record["depth"] + 1,
                        "parent": index,
                        "children": [],
                    }
                )
                record["children"].append(child_index)
                index_by_id.setdefault(child_id, child_index)
                placed.add(child_id)
            for child_index in reversed(record["children"]):
                stack.append((child_index, path + (nodes[child_index]["issue_id"],)))
        return root_index

    for root_id in root_ids:
        roots.append(add_subtree(root_id))

    # Issues whose every ancestor chain loops back on itself
    orphans = sorted(
        (issue.id for issue in issue_list if issue.id not in placed),
        key=lambda oid: _sibling_key(issue_map[oid]),
    )
    for orphan_id in orphans:
        if orphan_id not in placed:
            roots.append(add_subtree(orphan_id))

    frozen_nodes = tuple(
        TreeNode(
            issue_id=record["issue_id"],
            depth=record["depth"],
            parent=record["parent"],
            children=tuple(record["children"]),
            expanded=record["depth"] < 1,
        )
        for record in nodes
    )
    return IssueTree(
        nodes=frozen_nodes,
        roots=tuple(roots),
        index_by_id=MappingProxyType(index_by_id),
    )
