# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Two-phase graph analyzer.

Builds the blocking dependency graph for an issue set and computes metrics:

Phase 1 (synchronous, cheap):
- In/out degree and their ranks
- Density and topological order
- One-hop readiness

Phase 2 (background thread, expensive):
- PageRank, betweenness, eigenvector, HITS hub/authority
- Critical-path heights
- k-core numbers, articulation points and slack
- Cycle enumeration

Design Decisions:
- Edge u -> v means "u depends on v"; only blocks/parent-child edges count
- Self-loops and dependencies on missing issues are ignored, never raised
- Each metric is published to GraphStats as soon as it is computed, so
  consumers see partial phase-2 results early
- A failure inside phase 2 marks the unfinished metrics as failed and still
  completes the stats; callers waiting on phase 2 are never stranded
- The phase-2 timeout is advisory (threads cannot be interrupted); overruns
  are logged with the metric that was running
"""

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

import networkx as nx

from ..models import Issue
from . import metrics
from .config import AnalysisConfig, BetweennessMode, config_for_size, no_phase2_config
from .graph_stats import GraphStats, MetricName, MetricState, MetricStatus
from .readiness import is_ready, open_blocker_ids

logger = logging.getLogger(__name__)


def build_dependency_graph(issues: Iterable[Issue]) -> nx.DiGraph:
    """Build the blocking dependency graph.

    Args:
        issues: Issue collection.

    Returns:
        DiGraph with one node per issue and an edge u -> v for each blocking
        dependency of u on an existing issue v (u != v).
    """
    graph = nx.DiGraph()
    issue_list = list(issues)
    for issue in issue_list:
        graph.add_node(issue.id)

    for issue in issue_list:
        for dep in issue.dependencies:
            if not dep.is_blocking:
                continue
            target = dep.depends_on_id
            if target == issue.id or target not in graph:
                continue
            graph.add_edge(issue.id, target)
    return graph


class Analyzer:
    """Graph analyzer for one issue set.

    Usage:
        analyzer = Analyzer(issues)
        stats = analyzer.analyze_async()   # phase 1 now, phase 2 in background
        stats.get_in_degree("bd-1")         # available immediately
        stats.wait_for_phase2()
        stats.get_pagerank_score("bd-1")
    """

    def __init__(
        self,
        issues: Iterable[Issue],
        config: Optional[AnalysisConfig] = None,
        max_cycles_to_store: Optional[int] = None,
    ):
        """Build the dependency graph.

        Args:
            issues: Issue collection.
            config: Analysis config; chosen by graph size when None.
            max_cycles_to_store: Override for the config's cycle cap.
        """
        self.issues: List[Issue] = list(issues)
        self.issue_map: Dict[str, Issue] = {issue.id: issue for issue in self.issues}
        self.graph = build_dependency_graph(self.issues)
        if config is None:
            config = config_for_size(self.graph.number_of_nodes(), self.graph.number_of_edges())
        if max_cycles_to_store is not None:
            config = replace(config, max_cycles_to_store=max_cycles_to_store)
        self.config = config
        self._phase2_start = 0.0

    def analyze(self) -> GraphStats:
        """Phase 1 only.

        Returns:
            GraphStats with degrees populated; every phase-2 metric is marked
            skipped and the stats report phase 2 as complete.
        """
        stats = self._phase1()
        for name in MetricName.STATUS_KEYS:
            stats.set_status(name, MetricStatus(MetricState.SKIPPED, reason="phase 1 only"))
        stats.mark_phase2_ready()
        return stats

    def analyze_async(self) -> GraphStats:
        """Phase 1 synchronously, phase 2 on a daemon thread.

        Returns:
            GraphStats whose getters are safe to call immediately.
        """
        if self.config.skip_phase2:
            return self.analyze()

        stats = self._phase1()
        stats.mark_phase2_started()
        thread = threading.Thread(
            target=self._run_phase2,
            args=(stats,),
            name="beadview-phase2",
            daemon=True,
        )
        thread.start()
        return stats

    def analyze_full(self, timeout: Optional[float] = None) -> GraphStats:
        """Run both phases and wait for phase 2."""
        stats = self.analyze_async()
        stats.wait_for_phase2(timeout)
        return stats

    def get_actionable_issues(self) -> List[Issue]:
        """Ready issues, in input order."""
        return [issue for issue in self.issues if is_ready(issue, self.issue_map)]

    def get_blockers(self, issue_id: str) -> List[str]:
        """Existing issues that issue_id depends on (any status)."""
        if issue_id not in self.graph:
            return []
        return sorted(self.graph.successors(issue_id))

    def get_open_blockers(self, issue_id: str) -> List[str]:
        issue = self.issue_map.get(issue_id)
        if issue is None:
            return []
        return sorted(set(open_blocker_ids(issue, self.issue_map)))

    def _phase1(self) -> GraphStats:
        start = time.perf_counter()
        in_degree, out_degree = metrics.compute_degrees(self.graph)
        actionable = frozenset(
            issue.id for issue in self.issues if is_ready(issue, self.issue_map)
        )
        stats = GraphStats(
            node_ids=[issue.id for issue in self.issues],
            edge_count=self.graph.number_of_edges(),
            density=metrics.compute_density(self.graph),
            topological_order=metrics.compute_topological_order(self.graph),
            actionable_ids=actionable,
        )
        stats.publish_metric(MetricName.IN_DEGREE, in_degree, metrics.compute_ranks(in_degree))
        stats.publish_metric(MetricName.OUT_DEGREE, out_degree, metrics.compute_ranks(out_degree))

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Phase 1: {stats.node_count} nodes, {stats.edge_count} edges, "
            f"{len(actionable)} actionable in {elapsed_ms:.1f}ms"
        )
        return stats

    def _run_phase2(self, stats: GraphStats) -> None:
        start = time.perf_counter()
        self._phase2_start = start
        try:
            self._compute_phase2(stats)
        except Exception as e:
            logger.error(f"Phase 2 analysis failed: {e}", exc_info=True)
            stats.mark_pending_failed(f"{type(e).__name__}: {e}")
        finally:
            stats.mark_phase2_ready()

        elapsed = time.perf_counter() - start
        logger.debug(f"Phase 2 finished for {stats.node_count} nodes in {elapsed * 1000:.1f}ms")

    def _compute_phase2(self, stats: GraphStats) -> None:
        config = self.config
        graph = self.graph

        self._timed_metric(
            stats,
            MetricName.PAGERANK,
            config.compute_pagerank,
            lambda: metrics.compute_pagerank(graph),
        )

        if not config.compute_betweenness or config.betweenness_mode == BetweennessMode.SKIP:
            stats.set_status(
                MetricName.BETWEENNESS, MetricStatus(MetricState.SKIPPED, reason="size policy")
            )
        elif config.betweenness_mode == BetweennessMode.APPROXIMATE:
            sample = config.betweenness_sample_size
            self._timed_metric(
                stats,
                MetricName.BETWEENNESS,
                True,
                lambda: metrics.compute_betweenness(graph, sample_size=sample),
                approx_sample=min(sample, graph.number_of_nodes()),
            )
        else:
            self._timed_metric(
                stats,
                MetricName.BETWEENNESS,
                True,
                lambda: metrics.compute_betweenness(graph),
            )

        self._timed_metric(
            stats,
            MetricName.EIGENVECTOR,
            config.compute_eigenvector,
            lambda: metrics.compute_eigenvector(graph),
        )

        if config.compute_hits and graph.number_of_edges() > 0:
            hits_start = time.perf_counter()
            hubs, authorities = metrics.compute_hits(graph)
            elapsed = time.perf_counter() - hits_start
            stats.publish_metric(
                MetricName.HUB,
                hubs,
                metrics.compute_ranks(hubs),
                MetricStatus(MetricState.COMPUTED, elapsed_s=elapsed),
            )
            stats.publish_metric(
                MetricName.AUTHORITY,
                authorities,
                metrics.compute_ranks(authorities),
                MetricStatus(MetricState.COMPUTED, elapsed_s=elapsed),
            )
        else:
            reason = "no edges" if config.compute_hits else "size policy"
            for name in (MetricName.HUB, MetricName.AUTHORITY):
                stats.set_status(name, MetricStatus(MetricState.SKIPPED, reason=reason))
        self._check_budget("hits")

        self._timed_metric(
            stats,
            MetricName.CRITICAL_PATH,
            config.compute_critical_path,
            lambda: metrics.compute_critical_path(graph),
        )

        self._compute_structure(stats)

        if config.compute_cycles:
            cycles_start = time.perf_counter()
            cycles, truncated = metrics.find_cycles(graph, config.max_cycles_to_store)
            reason = f"truncated at {config.max_cycles_to_store}" if truncated else ""
            stats.publish_cycles(
                cycles,
                truncated=truncated,
                status=MetricStatus(
                    MetricState.COMPUTED,
                    reason=reason,
                    elapsed_s=time.perf_counter() - cycles_start,
                ),
            )
            if cycles:
                logger.info(f"Detected {len(cycles)} dependency cycle(s)")
        else:
            stats.set_status(
                MetricName.CYCLES, MetricStatus(MetricState.SKIPPED, reason="size policy")
            )
        self._check_budget(MetricName.CYCLES)

    def _compute_structure(self, stats: GraphStats) -> None:
        """k-core numbers, articulation points and slack; all linear time."""
        graph = self.graph
        self._timed_metric(
            stats, MetricName.CORE_NUMBER, True, lambda: metrics.compute_core_numbers(graph)
        )

        start = time.perf_counter()
        points = metrics.find_articulation_points(graph)
        stats.publish_articulation_points(
            points,
            MetricStatus(MetricState.COMPUTED, elapsed_s=time.perf_counter() - start),
        )

        if stats.topological_order or graph.number_of_nodes() == 0:
            self._timed_metric(stats, MetricName.SLACK, True, lambda: metrics.compute_slack(graph))
        else:
            stats.set_status(
                MetricName.SLACK, MetricStatus(MetricState.SKIPPED, reason="cyclic graph")
            )

    def _timed_metric(
        self,
        stats: GraphStats,
        name: str,
        enabled: bool,
        compute: Callable[[], Dict[str, float]],
        approx_sample: int = 0,
    ) -> None:
        if not enabled:
            stats.set_status(name, MetricStatus(MetricState.SKIPPED, reason="size policy"))
            return

        metric_start = time.perf_counter()
        values = compute()
        elapsed = time.perf_counter() - metric_start
        state = MetricState.APPROX if approx_sample else MetricState.COMPUTED
        stats.publish_metric(
            name,
            values,
            metrics.compute_ranks(values),
            MetricStatus(state, sample_size=approx_sample, elapsed_s=elapsed),
        )
        self._check_budget(name)

    def _check_budget(self, metric: str) -> None:
        elapsed = time.perf_counter() - self._phase2_start
        if elapsed > self.config.phase2_timeout_s:
            logger.warning(
                f"Phase 2 over budget after {metric}: {elapsed:.2f}s "
                f"> {self.config.phase2_timeout_s:.2f}s"
            )


def analyze_phase1_only(issues: Iterable[Issue]) -> GraphStats:
    """Convenience for huge datasets: phase 1 with phase 2 disabled."""
    return Analyzer(issues, config=no_phase2_config()).analyze()
