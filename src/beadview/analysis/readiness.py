# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""One-hop readiness classification.

An issue is ready when it is open-like, its status is not explicitly
"blocked", and none of its blocking dependencies points at an existing
open-like issue. Only direct dependencies are checked; a chain of closed
blockers in front of an open one does not make the issue wait.
Dependencies on ids missing from the set never block. A blocking dependency
on the issue itself does block it while it is open-like.
"""

from dataclasses import dataclass
from typing import Iterable, List, Mapping

from ..models import Issue, IssueStatus


def open_blocker_ids(issue: Issue, issue_map: Mapping[str, Issue]) -> List[str]:
    """Ids of existing, open-like issues that block this one."""
    blockers = []
    for dep in issue.dependencies:
        if not dep.is_blocking:
            continue
        target = issue_map.get(dep.depends_on_id)
        if target is not None and target.is_open_like:
            blockers.append(dep.depends_on_id)
    return blockers


def has_open_blocker(issue: Issue, issue_map: Mapping[str, Issue]) -> bool:
    for dep in issue.dependencies:
        if not dep.is_blocking:
            continue
        target = issue_map.get(dep.depends_on_id)
        if target is not None and target.is_open_like:
            return True
    return False


def is_ready(issue: Issue, issue_map: Mapping[str, Issue]) -> bool:
    if issue.is_closed_like or issue.status == IssueStatus.BLOCKED:
        return False
    return not has_open_blocker(issue, issue_map)


@dataclass(frozen=True)
class ReadinessCounts:
    """Aggregate counts over an issue set.

    open counts every open-like issue. blocked counts only issues whose status
    is explicitly "blocked"; issues waiting on an open dependency are open but
    neither ready nor blocked.
    """

    open: int = 0
    ready: int = 0
    blocked: int = 0
    closed: int = 0


def count_readiness(issues: Iterable[Issue], issue_map: Mapping[str, Issue]) -> ReadinessCounts:
    open_count = ready = blocked = closed = 0
    for issue in issues:
        if issue.is_closed_like:
            closed += 1
            continue
        open_count += 1
        if issue.status == IssueStatus.BLOCKED:
            blocked += 1
        elif not has_open_blocker(issue, issue_map):
            ready += 1
    return ReadinessCounts(open=open_count, ready=ready, blocked=blocked, closed=closed)
