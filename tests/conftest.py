# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for unit tests."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

import pytest

from beadview.models import Dependency, DependencyType, Issue, IssueStatus, IssueType

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_issue(
    issue_id: str,
    status: str = IssueStatus.OPEN,
    blocked_by: Sequence[str] = (),
    parents: Sequence[str] = (),
    priority: int = 2,
    issue_type: str = IssueType.TASK,
    created_offset: Optional[int] = 0,
    labels: Sequence[str] = (),
    title: Optional[str] = None,
    related: Sequence[str] = (),
) -> Issue:
    """Build an Issue; created_offset is minutes after BASE_TIME (None for no timestamp)."""
    deps = [Dependency(issue_id, target, DependencyType.BLOCKS) for target in blocked_by]
    deps += [Dependency(issue_id, target, DependencyType.PARENT_CHILD) for target in parents]
    deps += [Dependency(issue_id, target, DependencyType.RELATED) for target in related]
    created = None
    if created_offset is not None:
        created = BASE_TIME + timedelta(minutes=created_offset)
    return Issue(
        id=issue_id,
        title=title or f"Issue {issue_id}",
        status=status,
        priority=priority,
        issue_type=issue_type,
        labels=tuple(labels),
        created_at=created,
        updated_at=created,
        dependencies=tuple(deps),
    )


def write_issues(path: Path, issues: Iterable[Issue]) -> Path:
    """Write issues as JSONL."""
    with open(path, "w", encoding="utf-8") as f:
        for issue in issues:
            f.write(json.dumps(issue.to_dict()) + "\n")
    return path


@pytest.fixture
def issue_factory():
    """Factory fixture for building issues."""
    return make_issue


@pytest.fixture
def diamond_issues():
    """A depends on B and C, which both depend on D."""
    return [
        make_issue("A", blocked_by=["B", "C"], created_offset=4),
        make_issue("B", blocked_by=["D"], created_offset=3),
        make_issue("C", blocked_by=["D"], created_offset=2),
        make_issue("D", created_offset=1),
    ]
