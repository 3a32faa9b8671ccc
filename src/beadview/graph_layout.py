# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Precomputed data for the dependency graph view.

Blocker/dependent relations are adjacency maps keyed by issue id; rank maps
are copied from GraphStats. Issue ids are ordered by critical-path rank so the
graph view can lay out the highest-impact work first.
"""

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .analysis.graph_stats import GraphStats, MetricName
from .models import Issue

_NO_RANKS: Mapping[str, int] = MappingProxyType({})


def order_ids_by_rank(ids: Sequence[str], ranks: Mapping[str, int]) -> Tuple[str, ...]:
    """Order ids by rank (1 first).

    Ids without a valid, unique rank go last in alphabetical order. With no
    usable ranks at all the order is alphabetical.
    """
    if not ids:
        return ()
    if ranks:
        slots: List[Optional[str]] = [None] * len(ids)
        missing = []
        for issue_id in ids:
            rank = ranks.get(issue_id, 0)
            if rank < 1 or rank > len(slots) or slots[rank - 1] is not None:
                missing.append(issue_id)
                continue
            slots[rank - 1] = issue_id
        ordered = [issue_id for issue_id in slots if issue_id is not None]
        ordered.extend(sorted(missing))
        if ordered:
            return tuple(ordered)
    return tuple(sorted(ids))


@dataclass(frozen=True)
class GraphLayout:
    """Graph view data.

    Attributes:
        blockers: Issue id -> ids of existing issues it depends on.
        dependents: Issue id -> ids of issues depending on it.
        sorted_ids: Issue ids by critical-path rank.
        ranks: Metric name -> rank map.
    """

    blockers: Mapping[str, Tuple[str, ...]]
    dependents: Mapping[str, Tuple[str, ...]]
    sorted_ids: Tuple[str, ...]
    ranks: Mapping[str, Mapping[str, int]]

    def rank(self, metric: str, issue_id: str) -> int:
        return self.ranks.get(metric, _NO_RANKS).get(issue_id, 0)

    def with_phase2_ranks(self, stats: GraphStats) -> "GraphLayout":
        """Copy with rank maps and ordering refreshed from final stats."""
        ranks = _rank_maps(stats)
        return replace(
            self,
            ranks=ranks,
            sorted_ids=order_ids_by_rank(self.sorted_ids, ranks[MetricName.CRITICAL_PATH]),
        )


def _rank_maps(
    stats: Optional[GraphStats], include_phase2: bool = True
) -> Mapping[str, Mapping[str, int]]:
    maps = {name: _NO_RANKS for name in MetricName.ALL}
    if stats is not None:
        names = MetricName.ALL if include_phase2 else MetricName.PHASE1
        for name in names:
            maps[name] = stats.ranks(name)
    return MappingProxyType(maps)


def build_graph_layout(
    issues: Iterable[Issue],
    stats: Optional[GraphStats] = None,
    include_phase2: bool = True,
) -> GraphLayout:
    """Build graph view data.

    Args:
        issues: Issue set in canonical order.
        stats: Stats whose ranks should be captured.
        include_phase2: Capture phase-2 ranks too. Pass False when phase 2
            may still be running, so the layout does not depend on timing.

    Returns:
        GraphLayout.
    """
    issue_list = list(issues)
    known = {issue.id for issue in issue_list}
    blockers: Dict[str, List[str]] = {}
    dependents: Dict[str, List[str]] = {}

    for issue in issue_list:
        for dep in issue.dependencies:
            target = dep.depends_on_id
            if not dep.is_blocking or target == issue.id or target not in known:
                continue
            targets = blockers.setdefault(issue.id, [])
            if target in targets:
                continue
            targets.append(target)
            dependents.setdefault(target, []).append(issue.id)

    ranks = _rank_maps(stats, include_phase2)
    ids = [issue.id for issue in issue_list]
    return GraphLayout(
        blockers=MappingProxyType({k: tuple(v) for k, v in blockers.items()}),
        dependents=MappingProxyType({k: tuple(sorted(v)) for k, v in dependents.items()}),
        sorted_ids=order_ids_by_rank(ids, ranks[MetricName.CRITICAL_PATH]),
        ranks=ranks,
    )
