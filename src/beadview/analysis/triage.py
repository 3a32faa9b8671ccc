# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Triage scoring: what to work on next.

For every open issue this computes a triage score, human-readable reasons,
and how many other issues completing it would unblock. It also picks quick
wins and the blockers that hold back the most work.

Scoring:
- base score (0..1) blends normalized PageRank, betweenness, critical path,
  dependents count, priority and readiness
- triage = base * 0.70 + unblock boost (<= 0.15) + quick-win boost (<= 0.15)
- unblock boost = min(1, unblocks / max(max_unblocks, 5)) * 0.15
- quick-win boost favours issues with a short chain of open blockers
  below them; in-progress work gets none

Phase-2 terms are included only when the caller says the phase-2 values
are final, so that scores are reproducible for identical input.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..models import Issue, IssueStatus
from .graph_stats import GraphStats, MetricName
from .readiness import open_blocker_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriageOptions:
    base_score_weight: float = 0.70
    unblock_boost_weight: float = 0.15
    quick_win_weight: float = 0.15
    unblock_threshold: int = 5
    quick_win_max_depth: int = 2
    quick_wins_limit: int = 5
    blockers_limit: int = 10


# Base score component weights (sum to 1.0)
BASE_WEIGHTS = {
    "pagerank": 0.22,
    "betweenness": 0.20,
    "critical_path": 0.15,
    "dependents": 0.13,
    "priority": 0.20,
    "ready": 0.10,
}


@dataclass(frozen=True)
class TriageReasons:
    primary: str
    all: Tuple[str, ...] = ()
    action_hint: str = ""


@dataclass(frozen=True)
class TriageResult:
    """Triage annotations keyed by issue id.

    Attributes:
        scores: Triage score per open issue.
        reasons: Explanations per open issue.
        unblocks_map: Open issue -> open dependents it alone is holding back.
        quick_wins: Ids of the best quick wins, best first.
        blockers_to_clear: Ids of blockers unblocking the most work, best first.
    """

    scores: Mapping[str, float] = field(default_factory=dict)
    reasons: Mapping[str, TriageReasons] = field(default_factory=dict)
    unblocks_map: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    quick_wins: Tuple[str, ...] = ()
    blockers_to_clear: Tuple[str, ...] = ()

    def unblocks_count(self, issue_id: str) -> int:
        return len(self.unblocks_map.get(issue_id, ()))


def build_unblocks_map(
    issues: Iterable[Issue], issue_map: Mapping[str, Issue]
) -> Dict[str, Tuple[str, ...]]:
    """Map each open issue to the open dependents it would unblock.

    Closing blocker B unblocks dependent D if and only if B is D's only open
    blocker. Closed dependents are ignored. Dependencies on missing issues do
    not count.
    """
    issue_list = list(issues)
    unblocks: Dict[str, List[str]] = {}
    for issue in issue_list:
        if issue.is_open_like:
            unblocks.setdefault(issue.id, [])

    for issue in issue_list:
        if not issue.is_open_like:
            continue
        blockers = set(open_blocker_ids(issue, issue_map))
        if len(blockers) == 1:
            (blocker_id,) = blockers
            unblocks.setdefault(blocker_id, []).append(issue.id)

    return {issue_id: tuple(sorted(set(deps))) for issue_id, deps in unblocks.items()}


def _combine_depth(current: int, child_depth: int) -> int:
    if current == -1 or child_depth == -1:
        return -1
    return max(current, child_depth + 1)


def compute_blocker_depths(
    issues: Iterable[Issue], issue_map: Mapping[str, Issue]
) -> Dict[str, int]:
    """Longest chain of open blockers beneath each issue.

    0 means no open blockers. -1 means the chain runs into a cycle.
    """

    def blockers_of(issue_id: str) -> Iterator[str]:
        issue = issue_map.get(issue_id)
        if issue is None:
            return iter(())
        return iter(sorted(set(open_blocker_ids(issue, issue_map))))

    memo: Dict[str, int] = {}
    for root in issues:
        if root.id in memo:
            continue

        # Iterative DFS; dependency chains can exceed the recursion limit
        best: Dict[str, int] = {root.id: 0}
        on_path = {root.id}
        stack: List[Tuple[str, Iterator[str]]] = [(root.id, blockers_of(root.id))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                on_path.discard(node)
                memo[node] = best[node]
                if stack:
                    parent = stack[-1][0]
                    best[parent] = _combine_depth(best[parent], memo[node])
            elif child in memo:
                best[node] = _combine_depth(best[node], memo[child])
            elif child in on_path:
                best[node] = -1
            else:
                on_path.add(child)
                best[child] = 0
                stack.append((child, blockers_of(child)))
    return memo


def _normalized(values: Mapping[str, float]) -> Dict[str, float]:
    if not values:
        return {}
    peak = max(values.values())
    if peak <= 0:
        return {key: 0.0 for key in values}
    return {key: value / peak for key, value in values.items()}


def compute_base_scores(
    open_issues: List[Issue],
    stats: GraphStats,
    include_phase2: bool,
) -> Dict[str, float]:
    """Composite importance in 0..1 for each open issue."""
    if include_phase2:
        pagerank = _normalized(stats.values(MetricName.PAGERANK))
        betweenness = _normalized(stats.values(MetricName.BETWEENNESS))
        critical = _normalized(stats.values(MetricName.CRITICAL_PATH))
    else:
        pagerank, betweenness, critical = {}, {}, {}
    dependents = _normalized(stats.values(MetricName.IN_DEGREE))

    scores = {}
    for issue in open_issues:
        priority_norm = (Issue.MAX_PRIORITY - issue.priority) / float(Issue.MAX_PRIORITY)
        score = (
            BASE_WEIGHTS["pagerank"] * pagerank.get(issue.id, 0.0)
            + BASE_WEIGHTS["betweenness"] * betweenness.get(issue.id, 0.0)
            + BASE_WEIGHTS["critical_path"] * critical.get(issue.id, 0.0)
            + BASE_WEIGHTS["dependents"] * dependents.get(issue.id, 0.0)
            + BASE_WEIGHTS["priority"] * priority_norm
            + BASE_WEIGHTS["ready"] * (1.0 if stats.is_ready(issue.id) else 0.0)
        )
        scores[issue.id] = score
    return scores


def quick_win_score(unblocks: int, dependents_norm: float, priority: int) -> float:
    """Balance of impact against effort.

    log2 keeps huge fan-outs from dominating; issues few others depend on are
    treated as simpler.
    """
    impact = math.log2(unblocks + 1)
    simplicity = 0.0
    if dependents_norm < 0.2:
        simplicity = 1.0
    elif dependents_norm < 0.4:
        simplicity = 0.5
    priority_bonus = 0.5 if priority <= 1 else 0.0
    return impact * 0.4 + simplicity * 0.4 + priority_bonus * 0.2


def _format_id_list(ids: Tuple[str, ...], limit: int = 3) -> str:
    shown = ", ".join(ids[:limit])
    if len(ids) > limit:
        shown += f" +{len(ids) - limit} more"
    return shown


def _reasons_for(
    issue: Issue,
    unblocks: Tuple[str, ...],
    blocked_by: List[str],
    is_quick_win: bool,
    pagerank_norm: float,
    betweenness_norm: float,
) -> TriageReasons:
    reasons: List[str] = []
    primary = ""
    in_progress = issue.status == IssueStatus.IN_PROGRESS
    action_hint = "Continue work on this issue" if in_progress else "Start work on this issue"

    if len(unblocks) >= 3:
        primary = (
            f"Completing this unblocks {len(unblocks)} downstream issues "
            f"({_format_id_list(unblocks)})"
        )
        reasons.append(primary)
    elif unblocks:
        reasons.append(f"Unblocks {len(unblocks)} item(s): {_format_id_list(unblocks)}")

    if betweenness_norm > 0.5:
        reason = f"Critical path bottleneck (betweenness: {betweenness_norm * 100:.0f}%)"
        reasons.append(reason)
        primary = primary or reason
    if pagerank_norm > 0.3:
        reasons.append(
            f"High centrality in dependency graph (PageRank: {pagerank_norm * 100:.0f}%)"
        )

    if is_quick_win:
        reason = "Low effort, high impact - good starting point"
        reasons.append(reason)
        if not primary and unblocks:
            primary = reason
        if not in_progress:
            action_hint = "Quick win - start here for fast progress"

    if in_progress:
        reasons.append("In progress - already being worked")

    if blocked_by:
        if len(blocked_by) == 1:
            reasons.append(f"Blocked by {blocked_by[0]} - complete that first")
        else:
            reasons.append(f"Blocked by {len(blocked_by)} items - need to clear dependencies")
        action_hint = f"Work on {blocked_by[0]} first to unblock this"

    if issue.priority <= 1:
        reasons.append(f"High priority (P{issue.priority}) - prioritize this work")

    if not reasons:
        reasons.append("Good candidate for work")
    if not primary:
        primary = reasons[0]

    return TriageReasons(primary=primary, all=tuple(reasons), action_hint=action_hint)


def compute_triage(
    issues: Iterable[Issue],
    issue_map: Mapping[str, Issue],
    stats: GraphStats,
    include_phase2: bool = True,
    options: Optional[TriageOptions] = None,
) -> TriageResult:
    """Score open issues for triage.

    Args:
        issues: Full issue set.
        issue_map: Id lookup over the same set.
        stats: Graph stats for the set (phase-1 values are always used).
        include_phase2: Whether phase-2 metric values may be used.
        options: Weights and limits.

    Returns:
        TriageResult.
    """
    if options is None:
        options = TriageOptions()

    issue_list = list(issues)
    open_issues = [issue for issue in issue_list if issue.is_open_like]
    unblocks_map = build_unblocks_map(issue_list, issue_map)
    depths = compute_blocker_depths(open_issues, issue_map)
    base_scores = compute_base_scores(open_issues, stats, include_phase2)
    dependents_norm = _normalized(stats.values(MetricName.IN_DEGREE))
    if include_phase2:
        pagerank_norm = _normalized(stats.values(MetricName.PAGERANK))
        betweenness_norm = _normalized(stats.values(MetricName.BETWEENNESS))
    else:
        pagerank_norm, betweenness_norm = {}, {}

    max_unblocks = max((len(v) for v in unblocks_map.values()), default=0)
    unblock_norm_base = float(max(max_unblocks, options.unblock_threshold))

    scores: Dict[str, float] = {}
    for issue in open_issues:
        base = base_scores[issue.id]
        unblocks = unblocks_map.get(issue.id, ())
        unblock_boost = 0.0
        if unblocks:
            unblock_ratio = min(1.0, len(unblocks) / unblock_norm_base)
            unblock_boost = unblock_ratio * options.unblock_boost_weight

        quick_boost = 0.0
        depth = depths.get(issue.id, 0)
        if issue.status != IssueStatus.IN_PROGRESS and 0 <= depth <= options.quick_win_max_depth:
            depth_factor = 1.0 - depth / float(options.quick_win_max_depth + 1)
            quick_boost = min(
                depth_factor * base * options.quick_win_weight, options.quick_win_weight
            )

        scores[issue.id] = base * options.base_score_weight + unblock_boost + quick_boost

    quick_candidates = sorted(
        open_issues,
        key=lambda issue: (
            -quick_win_score(
                len(unblocks_map.get(issue.id, ())),
                dependents_norm.get(issue.id, 0.0),
                issue.priority,
            ),
            issue.id,
        ),
    )
    quick_wins = tuple(issue.id for issue in quick_candidates[: options.quick_wins_limit])
    quick_win_set = set(quick_wins)

    blocker_candidates = sorted(
        (issue_id for issue_id, deps in unblocks_map.items() if deps),
        key=lambda issue_id: (-len(unblocks_map[issue_id]), issue_id),
    )
    blockers_to_clear = tuple(blocker_candidates[: options.blockers_limit])

    reasons = {
        issue.id: _reasons_for(
            issue,
            unblocks_map.get(issue.id, ()),
            sorted(set(open_blocker_ids(issue, issue_map))),
            issue.id in quick_win_set,
            pagerank_norm.get(issue.id, 0.0),
            betweenness_norm.get(issue.id, 0.0),
        )
        for issue in open_issues
    }

    logger.debug(
        f"Triage: {len(open_issues)} open, {len(quick_wins)} quick wins, "
        f"{len(blockers_to_clear)} blockers to clear"
    )
    return TriageResult(
        scores=scores,
        reasons=reasons,
        unblocks_map=unblocks_map,
        quick_wins=quick_wins,
        blockers_to_clear=blockers_to_clear,
    )
