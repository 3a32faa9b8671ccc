# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Kanban board groupings.

Three four-column layouts over the same issues, each column holding issue
ids sorted by priority ascending, created descending, then id.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Tuple

from .models import Issue, IssueStatus, IssueType, issue_sort_key

Columns = Tuple[Tuple[str, ...], ...]

STATUS_COLUMNS = ("open", "in_progress", "blocked", "closed")
PRIORITY_COLUMNS = ("P0", "P1", "P2", "P3+")
TYPE_COLUMNS = ("bug", "feature", "task", "epic")


class GroupBy:
    STATUS = "status"
    PRIORITY = "priority"
    TYPE = "type"


def status_column(issue: Issue) -> int:
    if issue.is_closed_like:
        return 3
    if issue.status == IssueStatus.IN_PROGRESS:
        return 1
    if issue.status == IssueStatus.BLOCKED:
        return 2
    return 0


def priority_column(issue: Issue) -> int:
    return min(max(issue.priority, 0), 3)


def type_column(issue: Issue) -> int:
    if issue.issue_type == IssueType.BUG:
        return 0
    if issue.issue_type == IssueType.FEATURE:
        return 1
    if issue.issue_type == IssueType.EPIC:
        return 3
    # tasks, chores and unknown types
    return 2


def _column_key(issue: Issue) -> Tuple:
    return (issue.priority,) + issue_sort_key(issue)


def _group(issues: List[Issue], column_of: Callable[[Issue], int]) -> Columns:
    buckets: List[List[Issue]] = [[], [], [], []]
    for issue in issues:
        buckets[column_of(issue)].append(issue)
    return tuple(
        tuple(issue.id for issue in sorted(bucket, key=_column_key)) for bucket in buckets
    )


@dataclass(frozen=True)
class BoardState:
    by_status: Columns
    by_priority: Columns
    by_type: Columns

    def columns(self, group_by: str) -> Columns:
        if group_by == GroupBy.PRIORITY:
            return self.by_priority
        if group_by == GroupBy.TYPE:
            return self.by_type
        return self.by_status

    def column_titles(self, group_by: str) -> Tuple[str, ...]:
        titles: Dict[str, Tuple[str, ...]] = {
            GroupBy.STATUS: STATUS_COLUMNS,
            GroupBy.PRIORITY: PRIORITY_COLUMNS,
            GroupBy.TYPE: TYPE_COLUMNS,
        }
        return titles.get(group_by, STATUS_COLUMNS)


def build_board_state(issues: Iterable[Issue]) -> BoardState:
    issue_list = list(issues)
    return BoardState(
        by_status=_group(issue_list, status_column),
        by_priority=_group(issue_list, priority_column),
        by_type=_group(issue_list, type_column),
    )
