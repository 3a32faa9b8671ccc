# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Issue diff engine.

Partitions two issue collections by id into added, removed, modified and
unchanged, using per-issue fingerprints:
- content_hash: every mutable field; labels sorted, comments in order
- dependency_hash: the dependency set, sorted, so edge order does not matter

A modified issue is further classified as content-changed and/or
dependency-changed, which lets callers tell when graph metrics must be
recomputed.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from ..models import Issue, format_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueFingerprint:
    content_hash: str
    dependency_hash: str


def _digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def compute_issue_fingerprint(issue: Issue) -> IssueFingerprint:
    """Hash an issue's content and dependencies separately."""
    content = {
        "id": issue.id,
        "title": issue.title,
        "description": issue.description,
        "status": issue.status,
        "priority": issue.priority,
        "issue_type": issue.issue_type,
        "assignee": issue.assignee,
        "labels": sorted(issue.labels),
        "created_at": format_timestamp(issue.created_at),
        "updated_at": format_timestamp(issue.updated_at),
        "closed_at": format_timestamp(issue.closed_at),
        "comments": [
            [c.id, c.author, c.text, format_timestamp(c.created_at)] for c in issue.comments
        ],
    }
    dependencies = sorted(
        [dep.depends_on_id, dep.type, format_timestamp(dep.created_at) or ""]
        for dep in issue.dependencies
    )
    return IssueFingerprint(content_hash=_digest(content), dependency_hash=_digest(dependencies))


def fingerprint_map(issues: Iterable[Issue]) -> Dict[str, IssueFingerprint]:
    return {issue.id: compute_issue_fingerprint(issue) for issue in issues}


@dataclass(frozen=True)
class IssueDiff:
    """Id partitions between a previous and a current issue collection.

    All tuples are sorted. content_changed and dependency_changed are subsets
    of modified; an issue can appear in both.
    """

    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    modified: Tuple[str, ...] = ()
    unchanged: Tuple[str, ...] = ()
    content_changed: Tuple[str, ...] = ()
    dependency_changed: Tuple[str, ...] = ()

    @property
    def changed_count(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)

    @property
    def is_empty(self) -> bool:
        return self.changed_count == 0

    @property
    def graph_changed(self) -> bool:
        """Whether the blocking graph's node or edge set may have changed."""
        return bool(self.added or self.removed or self.dependency_changed)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": list(self.modified),
            "unchanged": list(self.unchanged),
            "content_changed": list(self.content_changed),
            "dependency_changed": list(self.dependency_changed),
        }


def compute_issue_diff(previous: Iterable[Issue], current: Iterable[Issue]) -> IssueDiff:
    """Diff two issue collections by id and fingerprint.

    Args:
        previous: Issues from the superseded snapshot.
        current: Newly loaded issues.

    Returns:
        IssueDiff with sorted id partitions.
    """
    return diff_fingerprints(fingerprint_map(previous), fingerprint_map(current))


def diff_fingerprints(
    previous: Mapping[str, IssueFingerprint], current: Mapping[str, IssueFingerprint]
) -> IssueDiff:
    added = []
    modified = []
    unchanged = []
    content_changed = []
    dependency_changed = []

    for issue_id, fingerprint in current.items():
        old = previous.get(issue_id)
        if old is None:
            added.append(issue_id)
            continue
        content_diff = old.content_hash != fingerprint.content_hash
        deps_diff = old.dependency_hash != fingerprint.dependency_hash
        if not content_diff and not deps_diff:
            unchanged.append(issue_id)
            continue
        modified.append(issue_id)
        if content_diff:
            content_changed.append(issue_id)
        if deps_diff:
            dependency_changed.append(issue_id)

    removed = [issue_id for issue_id in previous if issue_id not in current]

    return IssueDiff(
        added=tuple(sorted(added)),
        removed=tuple(sorted(removed)),
        modified=tuple(sorted(modified)),
        unchanged=tuple(sorted(unchanged)),
        content_changed=tuple(sorted(content_changed)),
        dependency_changed=tuple(sorted(dependency_changed)),
    )


@dataclass(frozen=True)
class IssueDiffStats:
    """Size of a diff relative to the union of both collections.

    An issue replaced by another under a new id counts as two changes.
    """

    changed: int = 0
    total: int = 0
    ratio: float = 0.0

    @classmethod
    def from_diff(cls, diff: IssueDiff) -> "IssueDiffStats":
        changed = diff.changed_count
        total = changed + len(diff.unchanged)
        ratio = changed / float(total) if total > 0 else 0.0
        return cls(changed=changed, total=total, ratio=ratio)


def compute_data_hash(issues: Iterable[Issue]) -> str:
    """Order-independent hash of an entire issue set.

    Used to skip rebuilding when a file event did not change the data.
    """
    parts = []
    for issue in issues:
        fingerprint = compute_issue_fingerprint(issue)
        parts.append(f"{issue.id}:{fingerprint.content_hash}:{fingerprint.dependency_hash}")
    parts.sort()

    hasher = hashlib.sha256()
    for part in parts:
        hasher.update(part.encode("utf-8"))
        hasher.update(b"\n")
    return hasher.hexdigest()
