# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core data models for the issue dependency graph.

This module defines the records every other component consumes:
- IssueStatus / IssueType / DependencyType: Enum-like classes of string constants
- Dependency: A typed, directed edge from one issue to another
- Comment: A comment attached to an issue
- Issue: An immutable issue record with its dependency edges

Issues are frozen dataclasses holding tuples, so a snapshot can share them
with the renderer without copying. All models round-trip through plain
JSON-compatible dicts via to_dict()/from_dict().
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class IssueValidationError(ValueError):
    """Raised when an issue record is missing required fields or has bad values."""

    pass


class IssueStatus:
    """Issue workflow states.

    Design: Using class constants (not Enum) for JSON-compatible strings.
    """

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"
    TOMBSTONE = "tombstone"  # soft-deleted

    ALL = (OPEN, IN_PROGRESS, BLOCKED, CLOSED, TOMBSTONE)
    CLOSED_LIKE = frozenset({CLOSED, TOMBSTONE})

    @classmethod
    def is_closed_like(cls, status: str) -> bool:
        return status in cls.CLOSED_LIKE


class IssueType:
    """Issue categories."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"

    ALL = (BUG, FEATURE, TASK, EPIC, CHORE)


class DependencyType:
    """Types of dependency edges between issues.

    Only BLOCKS and PARENT_CHILD contribute to the blocking graph used for
    readiness and centrality metrics. The other types are informational.
    """

    BLOCKS = "blocks"
    PARENT_CHILD = "parent-child"
    RELATED = "related"
    DISCOVERED_FROM = "discovered-from"

    BLOCKING = frozenset({BLOCKS, PARENT_CHILD})

    @classmethod
    def is_blocking(cls, dep_type: str) -> bool:
        return dep_type in cls.BLOCKING


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into an aware datetime.

    Accepts a trailing 'Z', fractional seconds of any length (truncated to
    microseconds) and naive values, which are taken as UTC.

    Args:
        value: ISO-8601 string, datetime, or None.

    Returns:
        Timezone-aware datetime, or None if value is empty.

    Raises:
        IssueValidationError: If the string cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        # fromisoformat only takes up to 6 fractional digits
        if "." in text:
            head, _, tail = text.partition(".")
            digits = ""
            rest_index = 0
            while rest_index < len(tail) and tail[rest_index].isdigit():
                digits += tail[rest_index]
                rest_index += 1
            text = f"{head}.{digits[:6].ljust(6, '0')}{tail[rest_index:]}"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise IssueValidationError(f"Invalid timestamp {value!r}: {e}") from e
    else:
        raise IssueValidationError(f"Invalid timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Dependency:
    """A directed dependency: issue_id depends on depends_on_id.

    Attributes:
        issue_id: The dependent issue.
        depends_on_id: The issue it depends on (may not exist in the set).
        type: One of DependencyType constants.
        created_at: When the edge was recorded.
    """

    issue_id: str
    depends_on_id: str
    type: str = DependencyType.BLOCKS
    created_at: Optional[datetime] = None

    @property
    def is_blocking(self) -> bool:
        return DependencyType.is_blocking(self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "depends_on_id": self.depends_on_id,
            "type": self.type,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], issue_id: str = "") -> "Dependency":
        depends_on = data.get("depends_on_id") or ""
        if not depends_on:
            raise IssueValidationError("Dependency is missing depends_on_id")
        return cls(
            issue_id=data.get("issue_id") or issue_id,
            depends_on_id=depends_on,
            type=data.get("type") or DependencyType.BLOCKS,
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass(frozen=True)
class Comment:
    """A comment on an issue."""

    id: int
    author: str
    text: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "text": self.text,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Comment":
        return cls(
            id=int(data.get("id") or 0),
            author=str(data.get("author") or ""),
            text=str(data.get("text") or ""),
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass(frozen=True)
class Issue:
    """An issue record.

    Immutable once constructed. Collections are tuples so that instances are
    hashable and safe to share across threads.
    """

    id: str
    title: str
    status: str = IssueStatus.OPEN
    priority: int = 2
    issue_type: str = IssueType.TASK
    description: str = ""
    assignee: str = ""
    labels: Tuple[str, ...] = field(default_factory=tuple)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    dependencies: Tuple[Dependency, ...] = field(default_factory=tuple)
    comments: Tuple[Comment, ...] = field(default_factory=tuple)

    MIN_PRIORITY = 0
    MAX_PRIORITY = 4

    @property
    def is_closed_like(self) -> bool:
        return IssueStatus.is_closed_like(self.status)

    @property
    def is_open_like(self) -> bool:
        return not IssueStatus.is_closed_like(self.status)

    def blocking_dependencies(self) -> Tuple[Dependency, ...]:
        """Dependencies that count toward the blocking graph."""
        return tuple(dep for dep in self.dependencies if dep.is_blocking)

    def validate(self) -> None:
        """Check required fields.

        Raises:
            IssueValidationError: If id/title are empty, the status is unknown,
                or the priority is out of range.
        """
        if not self.id or not self.id.strip():
            raise IssueValidationError("Issue id is required")
        if not self.title or not self.title.strip():
            raise IssueValidationError(f"Issue {self.id}: title is required")
        if self.status not in IssueStatus.ALL:
            raise IssueValidationError(f"Issue {self.id}: invalid status {self.status!r}")
        if not (self.MIN_PRIORITY <= self.priority <= self.MAX_PRIORITY):
            raise IssueValidationError(
                f"Issue {self.id}: priority {self.priority} outside "
                f"{self.MIN_PRIORITY}-{self.MAX_PRIORITY}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "issue_type": self.issue_type,
            "assignee": self.assignee,
            "labels": list(self.labels),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "closed_at": format_timestamp(self.closed_at),
            "dependencies": [dep.to_dict() for dep in self.dependencies],
            "comments": [c.to_dict() for c in self.comments],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Issue":
        """Build an Issue from a JSON object.

        Args:
            data: Decoded JSON object for one issue.

        Returns:
            Validated Issue.

        Raises:
            IssueValidationError: If the record is invalid.
        """
        if not isinstance(data, Mapping):
            raise IssueValidationError(f"Issue record must be an object, got {type(data).__name__}")

        issue_id = str(data.get("id") or "")
        priority_raw = data.get("priority", 2)
        if isinstance(priority_raw, bool) or not isinstance(priority_raw, (int, float)):
            raise IssueValidationError(f"Issue {issue_id}: priority must be a number")

        labels = data.get("labels") or []
        if not isinstance(labels, list):
            raise IssueValidationError(f"Issue {issue_id}: labels must be a list")

        issue = cls(
            id=issue_id,
            title=str(data.get("title") or ""),
            status=str(data.get("status") or IssueStatus.OPEN),
            priority=int(priority_raw),
            issue_type=str(data.get("issue_type") or IssueType.TASK),
            description=str(data.get("description") or ""),
            assignee=str(data.get("assignee") or ""),
            labels=tuple(str(label) for label in labels),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            closed_at=parse_timestamp(data.get("closed_at")),
            dependencies=tuple(
                Dependency.from_dict(dep, issue_id=issue_id)
                for dep in (data.get("dependencies") or [])
            ),
            comments=tuple(Comment.from_dict(c) for c in (data.get("comments") or [])),
        )
        issue.validate()
        return issue


def issue_sort_key(issue: Issue) -> Tuple[int, float, str]:
    """Canonical ordering key: created_at descending, id ascending.

    Issues without created_at sort after all dated issues.
    """
    if issue.created_at is None:
        return (1, 0.0, issue.id)
    return (0, -issue.created_at.timestamp(), issue.id)


def sort_issues(issues) -> Tuple[Issue, ...]:
    return tuple(sorted(issues, key=issue_sort_key))
