# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Insights: the handful of issues that stand out on each metric."""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .graph_stats import GraphStats, MetricName

# Insight category -> metric it ranks by
INSIGHT_METRICS = {
    "bottlenecks": MetricName.BETWEENNESS,
    "keystones": MetricName.CRITICAL_PATH,
    "influencers": MetricName.EIGENVECTOR,
    "hubs": MetricName.HUB,
    "authorities": MetricName.AUTHORITY,
    "central": MetricName.PAGERANK,
    "cores": MetricName.CORE_NUMBER,
    "slack": MetricName.SLACK,
}


@dataclass(frozen=True)
class InsightItem:
    issue_id: str
    value: float


@dataclass(frozen=True)
class Insights:
    """Top issues per metric plus graph-wide observations.

    Attributes:
        top: Category name -> best items, highest value first.
        cycles: Detected dependency cycles.
        articulation: Cut vertices of the undirected graph, sorted.
        density: Graph density.
        phase2_ready: Whether the categories reflect final phase-2 values.
    """

    top: Dict[str, Tuple[InsightItem, ...]] = field(default_factory=dict)
    cycles: Tuple[Tuple[str, ...], ...] = ()
    articulation: Tuple[str, ...] = ()
    density: float = 0.0
    phase2_ready: bool = False

    def ids(self, category: str) -> List[str]:
        return [item.issue_id for item in self.top.get(category, ())]


def _top_n(stats: GraphStats, metric: str, limit: int) -> Tuple[InsightItem, ...]:
    values = stats.values(metric)
    ordered = sorted(
        ((issue_id, value) for issue_id, value in values.items() if value > 0),
        key=lambda item: (-item[1], item[0]),
    )
    return tuple(InsightItem(issue_id, value) for issue_id, value in ordered[:limit])


def generate_insights(stats: GraphStats, limit: int = 10) -> Insights:
    """Summarize stats into top-N lists.

    Before phase 2 completes, only density is filled in.
    """
    if not stats.is_phase2_ready():
        return Insights(density=stats.density)

    top = {name: _top_n(stats, metric, limit) for name, metric in INSIGHT_METRICS.items()}
    return Insights(
        top=top,
        cycles=stats.cycles(),
        articulation=tuple(sorted(stats.articulation_points())),
        density=stats.density,
        phase2_ready=True,
    )
