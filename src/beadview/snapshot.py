# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Immutable data snapshots and the builder that produces them.

A DataSnapshot bundles everything the renderer needs for one version of the
issue set: sorted issues, graph stats, list items, aggregate counts and
optional derived views (triage, tree, board, graph layout, insights). It is
built off the UI thread and handed over whole; nothing in it is reassigned
afterwards. The GraphStats it references is the one exception: phase-2
metrics are published into it in place (see analysis.graph_stats).

Key Features:
- Canonical order: created_at descending, id ascending
- Size tiers decide how much is precomputed eagerly:
  small/medium everything, large skips derived views, huge also skips phase 2
- Incremental list rebuild: when the view is unchanged and only a small share
  of issues changed, unchanged list items are carried forward from the
  previous snapshot with their per-snapshot fields reset
- Determinism: list scores, triage and layout ranks only use phase-2 values
  that were final when the build started; otherwise they use phase-1 data
  and the consumer refreshes them when phase 2 lands

Usage:
    snapshot = (
        SnapshotBuilder(issues)
        .with_view(view)
        .with_previous_snapshot(previous, diff)
        .build()
    )
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .analysis.analyzer import Analyzer
from .analysis.config import no_phase2_config
from .analysis.diff import (
    IssueDiff,
    IssueDiffStats,
    IssueFingerprint,
    diff_fingerprints,
    fingerprint_map,
)
from .analysis.graph_stats import GraphStats, MetricState
from .analysis.insights import Insights, generate_insights
from .analysis.readiness import count_readiness, is_ready
from .analysis.triage import TriageResult, compute_triage
from .board import BoardState, build_board_state
from .graph_layout import GraphLayout, build_graph_layout
from .models import Issue, sort_issues
from .tree import IssueTree, build_issue_tree
from .view_spec import ViewSpec, apply_view

logger = logging.getLogger(__name__)


class SnapshotBuildError(Exception):
    """Raised when building a snapshot fails unexpectedly.

    Attributes:
        phase: Build step that failed.
    """

    def __init__(self, phase: str, cause: BaseException):
        super().__init__(f"snapshot build failed during {phase}: {cause}")
        self.phase = phase
        self.cause = cause


class DatasetTier:
    """Dataset size classes.

    Design: Using class constants (not Enum) for JSON-compatible strings.
    """

    UNKNOWN = "unknown"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"


@dataclass(frozen=True)
class SnapshotPolicy:
    """Tunable thresholds for tiering and incremental rebuilds."""

    small_max: int = 1000
    medium_max: int = 5000
    large_max: int = 20000
    incremental_max_change_ratio: float = 0.2
    insights_limit: int = 10
    max_cycles_to_store: int = 100

    @classmethod
    def from_config(cls, config: Any) -> "SnapshotPolicy":
        return cls(
            small_max=config.tier_small_max,
            medium_max=config.tier_medium_max,
            large_max=config.tier_large_max,
            incremental_max_change_ratio=config.incremental_max_change_ratio,
            insights_limit=config.insights_limit,
            max_cycles_to_store=config.max_cycles_to_store,
        )


DEFAULT_POLICY = SnapshotPolicy()


def dataset_tier_for_issue_count(total: int, policy: Optional[SnapshotPolicy] = None) -> str:
    """Classify an issue count.

    Returns:
        DatasetTier constant; UNKNOWN for counts <= 0.
    """
    if policy is None:
        policy = DEFAULT_POLICY
    if total <= 0:
        return DatasetTier.UNKNOWN
    if total < policy.small_max:
        return DatasetTier.SMALL
    if total < policy.medium_max:
        return DatasetTier.MEDIUM
    if total < policy.large_max:
        return DatasetTier.LARGE
    return DatasetTier.HUGE


@dataclass(frozen=True)
class SnapshotBuildConfig:
    """What to precompute eagerly."""

    precompute_triage: bool = True
    precompute_tree: bool = True
    precompute_board: bool = True
    precompute_graph_layout: bool = True
    precompute_insights: bool = True
    skip_phase2: bool = False

    @classmethod
    def for_tier(cls, tier: str) -> "SnapshotBuildConfig":
        if tier == DatasetTier.LARGE:
            return cls(
                precompute_triage=False,
                precompute_tree=False,
                precompute_board=False,
                precompute_graph_layout=False,
                precompute_insights=False,
            )
        if tier == DatasetTier.HUGE:
            return cls(
                precompute_triage=False,
                precompute_tree=False,
                precompute_board=False,
                precompute_graph_layout=False,
                precompute_insights=False,
                skip_phase2=True,
            )
        return cls()

    def skipped_views(self) -> List[str]:
        skipped = []
        if not self.precompute_triage:
            skipped.append("triage")
        if not self.precompute_tree:
            skipped.append("tree")
        if not self.precompute_board:
            skipped.append("board")
        if not self.precompute_graph_layout:
            skipped.append("graph_layout")
        if not self.precompute_insights:
            skipped.append("insights")
        return skipped


def compact_count(n: int) -> str:
    """Short count for status lines: 950, 12k, 3m."""
    if n >= 1_000_000:
        return f"{n // 1_000_000}m"
    if n >= 1_000:
        return f"{n // 1_000}k"
    return str(n)


def large_dataset_warning(
    tier: str, source_hint: int, loaded: int, open_only: bool
) -> str:
    """Advisory shown when tiering reduced what was computed or loaded."""
    total = source_hint if source_hint > 0 else loaded
    if tier == DatasetTier.LARGE:
        return f"⚠ large {compact_count(total)} issues"
    if tier == DatasetTier.HUGE:
        if open_only and source_hint > 0:
            return f"⚠ huge open-only {compact_count(loaded)}/{compact_count(source_hint)}"
        return f"⚠ huge {compact_count(total)} issues"
    return ""


class DiffStatus:
    """Per-snapshot change badge on a list item."""

    NONE = ""
    NEW = "new"
    MODIFIED = "modified"


def repo_prefix_of(issue_id: str) -> str:
    """Prefix before the first '-' in an id ("api-12" -> "api")."""
    prefix, sep, _ = issue_id.partition("-")
    return prefix if sep else ""


@dataclass(frozen=True)
class ListItem:
    """One row of the issue list.

    graph_score and impact are PageRank and critical path. All other fields
    besides issue are per-snapshot annotations that start at their defaults.
    """

    issue: Issue
    graph_score: float = 0.0
    impact: float = 0.0
    repo_prefix: str = ""
    diff_status: str = DiffStatus.NONE
    search_score: float = 0.0
    search_matched: bool = False
    triage_score: float = 0.0
    triage_reason: str = ""
    triage_reasons: Tuple[str, ...] = ()
    is_quick_win: bool = False
    is_blocker: bool = False
    unblocks_count: int = 0

    @property
    def id(self) -> str:
        return self.issue.id


def _scores_for(issue_id: str, stats: Optional[GraphStats]) -> Tuple[float, float]:
    if stats is None:
        return 0.0, 0.0
    return stats.get_pagerank_score(issue_id), stats.get_critical_path_score(issue_id)


def build_list_item(issue: Issue, stats: Optional[GraphStats]) -> ListItem:
    graph_score, impact = _scores_for(issue.id, stats)
    return ListItem(
        issue=issue,
        graph_score=graph_score,
        impact=impact,
        repo_prefix=repo_prefix_of(issue.id),
    )


def reset_list_item(item: ListItem, issue: Issue, stats: Optional[GraphStats]) -> ListItem:
    """Carry an item into a new snapshot with per-snapshot fields cleared."""
    graph_score, impact = _scores_for(issue.id, stats)
    return replace(
        item,
        issue=issue,
        graph_score=graph_score,
        impact=impact,
        repo_prefix=repo_prefix_of(issue.id),
        diff_status=DiffStatus.NONE,
        search_score=0.0,
        search_matched=False,
        triage_score=0.0,
        triage_reason="",
        triage_reasons=(),
        is_quick_win=False,
        is_blocker=False,
        unblocks_count=0,
    )


def build_list_items(
    view_issues: Sequence[Issue], stats: Optional[GraphStats]
) -> Tuple[ListItem, ...]:
    return tuple(build_list_item(issue, stats) for issue in view_issues)


def build_list_items_incremental(
    view_issues: Sequence[Issue],
    stats: Optional[GraphStats],
    previous_items: Sequence[ListItem],
    diff: IssueDiff,
) -> Tuple[ListItem, ...]:
    """Rebuild list items, reusing previous items for unchanged issues.

    Added and modified issues are built from scratch. The result equals
    build_list_items() for the same arguments.
    """
    previous_by_id = {item.issue.id: item for item in previous_items}
    rebuild = set(diff.added)
    rebuild.update(diff.modified)

    items = []
    for issue in view_issues:
        previous = previous_by_id.get(issue.id)
        if previous is None or issue.id in rebuild:
            items.append(build_list_item(issue, stats))
        else:
            items.append(reset_list_item(previous, issue, stats))
    return tuple(items)


def apply_triage(items: Sequence[ListItem], triage: TriageResult) -> Tuple[ListItem, ...]:
    quick_wins = set(triage.quick_wins)
    blockers = set(triage.blockers_to_clear)
    annotated = []
    for item in items:
        issue_id = item.issue.id
        reasons = triage.reasons.get(issue_id)
        annotated.append(
            replace(
                item,
                triage_score=triage.scores.get(issue_id, 0.0),
                triage_reason=reasons.primary if reasons else "",
                triage_reasons=reasons.all if reasons else (),
                is_quick_win=issue_id in quick_wins,
                is_blocker=issue_id in blockers,
                unblocks_count=triage.unblocks_count(issue_id),
            )
        )
    return tuple(annotated)


def should_use_incremental_list(
    previous: Optional["DataSnapshot"],
    diff: Optional[IssueDiff],
    view_hash: str,
    diff_stats: IssueDiffStats,
    max_change_ratio: float,
) -> bool:
    """Whether the previous snapshot's list items may be carried forward."""
    if previous is None or diff is None or not previous.list_items:
        return False
    if previous.view_hash != view_hash:
        return False
    if diff_stats.total <= 0:
        return False
    return diff_stats.ratio <= max_change_ratio


def reusable_stats(
    previous: Optional["DataSnapshot"],
    diff: Optional[IssueDiff],
    issues: Sequence[Issue],
    tier: str,
) -> Optional[GraphStats]:
    """Previous snapshot's stats, if they still describe this issue set.

    Graph metrics only depend on the blocking graph, so they carry over when
    no issue was added or removed and no dependency changed. The actionable
    set also depends on statuses and must match. Stats with a failed metric
    are never reused.
    """
    if previous is None or diff is None or diff.graph_changed:
        return None
    if previous.dataset_tier != tier:
        return None
    stats = previous.stats
    if any(s.state == MetricState.FAILED for s in stats.metric_status().values()):
        return None
    issue_map = {issue.id: issue for issue in issues}
    actionable = frozenset(issue.id for issue in issues if is_ready(issue, issue_map))
    if actionable != stats.actionable_ids:
        return None
    return stats


@dataclass(frozen=True)
class DataSnapshot:
    """Immutable bundle of issue data and analytics for one reload."""

    issues: Tuple[Issue, ...]
    issue_map: Mapping[str, Issue]
    view_issues: Tuple[Issue, ...]
    stats: GraphStats
    list_items: Tuple[ListItem, ...]
    count_open: int = 0
    count_ready: int = 0
    count_blocked: int = 0
    count_closed: int = 0
    dataset_tier: str = DatasetTier.UNKNOWN
    build_config: SnapshotBuildConfig = field(default_factory=SnapshotBuildConfig)
    scores_final: bool = False
    triage: Optional[TriageResult] = None
    tree: Optional[IssueTree] = None
    board: Optional[BoardState] = None
    graph_layout: Optional[GraphLayout] = None
    insights: Optional[Insights] = None
    issue_diff: Optional[IssueDiff] = None
    issue_diff_stats: IssueDiffStats = field(default_factory=IssueDiffStats)
    incremental_list_used: bool = False
    fingerprints: Mapping[str, IssueFingerprint] = field(default_factory=dict)
    view_name: str = ""
    view_hash: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data_hash: str = ""
    source_issue_count_hint: int = 0
    loaded_open_only: bool = False
    truncated_count: int = 0
    large_dataset_warning: str = ""
    load_warning_count: int = 0

    @property
    def phase2_ready(self) -> bool:
        return self.stats.is_phase2_ready()

    @property
    def is_empty(self) -> bool:
        return not self.issues

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        return self.issue_map.get(issue_id)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        if now is None:
            now = datetime.now(timezone.utc)
        return max(0.0, (now - self.created_at).total_seconds())

    def scored_list_items(self) -> Tuple[ListItem, ...]:
        """List items with phase-2 scores filled in once they are available."""
        if self.scores_final or not self.stats.is_phase2_ready():
            return self.list_items
        return tuple(
            replace(
                item,
                graph_score=self.stats.get_pagerank_score(item.issue.id),
                impact=self.stats.get_critical_path_score(item.issue.id),
            )
            for item in self.list_items
        )

    def refreshed_graph_layout(self) -> Optional[GraphLayout]:
        """Graph layout with phase-2 ranks, when both exist."""
        if self.graph_layout is None or not self.stats.is_phase2_ready():
            return self.graph_layout
        return self.graph_layout.with_phase2_ranks(self.stats)


class SnapshotBuilder:
    """Builds a DataSnapshot from an issue collection.

    Options are set with chainable with_* methods; build() does the work and
    may be called more than once.
    """

    def __init__(self, issues: Iterable[Issue], policy: Optional[SnapshotPolicy] = None):
        self._issues: List[Issue] = list(issues)
        self._policy = policy or DEFAULT_POLICY
        self._stats: Optional[GraphStats] = None
        self._view: Optional[ViewSpec] = None
        self._build_config: Optional[SnapshotBuildConfig] = None
        self._previous: Optional[DataSnapshot] = None
        self._diff: Optional[IssueDiff] = None
        self._metadata: Dict[str, Any] = {}

    def with_analysis(self, stats: GraphStats) -> "SnapshotBuilder":
        """Use precomputed stats instead of running the analyzer."""
        self._stats = stats
        return self

    def with_view(self, view: Optional[ViewSpec]) -> "SnapshotBuilder":
        self._view = view
        return self

    def with_build_config(self, build_config: SnapshotBuildConfig) -> "SnapshotBuilder":
        """Override the tier-derived precomputation config."""
        self._build_config = build_config
        return self

    def with_previous_snapshot(
        self, previous: Optional[DataSnapshot], diff: Optional[IssueDiff] = None
    ) -> "SnapshotBuilder":
        """Snapshot being superseded, plus the diff against it if known.

        If diff is None it is computed from the previous snapshot's
        fingerprints during build().
        """
        self._previous = previous
        self._diff = diff
        return self

    def with_source_metadata(
        self,
        data_hash: str = "",
        source_issue_count_hint: int = 0,
        loaded_open_only: bool = False,
        load_warning_count: int = 0,
    ) -> "SnapshotBuilder":
        """Record how the issues were loaded.

        source_issue_count_hint is the record count in the source file and
        drives tier selection when the load was filtered.
        """
        self._metadata = {
            "data_hash": data_hash,
            "source_issue_count_hint": source_issue_count_hint,
            "loaded_open_only": loaded_open_only,
            "load_warning_count": load_warning_count,
        }
        return self

    def build(self) -> DataSnapshot:
        """Build the snapshot.

        Returns:
            DataSnapshot.

        Raises:
            SnapshotBuildError: If any build step fails unexpectedly.
        """
        phase = "sort"
        try:
            start = time.perf_counter()
            issues = sort_issues(self._issues)
            issue_map = MappingProxyType({issue.id: issue for issue in issues})

            source_hint = int(self._metadata.get("source_issue_count_hint", 0))
            tier = dataset_tier_for_issue_count(
                source_hint if source_hint > 0 else len(issues), self._policy
            )
            build_config = self._build_config or SnapshotBuildConfig.for_tier(tier)

            phase = "analyze"
            stats, scores_final = self._resolve_stats(issues, build_config)
            final_stats = stats if scores_final else None

            phase = "counts"
            counts = count_readiness(issues, issue_map)

            phase = "view"
            view_hash = self._view.fingerprint() if self._view is not None else ""
            view_issues = tuple(apply_view(issues, issue_map, self._view, final_stats))

            phase = "diff"
            fingerprints = fingerprint_map(issues)
            diff = self._diff
            if diff is None and self._previous is not None:
                diff = diff_fingerprints(self._previous.fingerprints, fingerprints)
            diff_stats = IssueDiffStats.from_diff(diff) if diff is not None else IssueDiffStats()

            phase = "list"
            incremental = should_use_incremental_list(
                self._previous,
                diff,
                view_hash,
                diff_stats,
                self._policy.incremental_max_change_ratio,
            )
            if incremental:
                assert self._previous is not None and diff is not None
                list_items = build_list_items_incremental(
                    view_issues, final_stats, self._previous.list_items, diff
                )
            else:
                list_items = build_list_items(view_issues, final_stats)

            triage = None
            if build_config.precompute_triage:
                phase = "triage"
                triage = compute_triage(issues, issue_map, stats, include_phase2=scores_final)
                list_items = apply_triage(list_items, triage)

            tree = None
            if build_config.precompute_tree:
                phase = "tree"
                tree = build_issue_tree(issues)

            board = None
            if build_config.precompute_board:
                phase = "board"
                board = build_board_state(issues)

            insights = None
            if build_config.precompute_insights:
                phase = "insights"
                if scores_final:
                    insights = generate_insights(stats, self._policy.insights_limit)
                else:
                    insights = Insights(density=stats.density)

            layout = None
            if build_config.precompute_graph_layout:
                phase = "graph_layout"
                layout = build_graph_layout(issues, stats, include_phase2=scores_final)

            phase = "finalize"
            loaded_open_only = bool(self._metadata.get("loaded_open_only", False))
            truncated = 0
            if loaded_open_only and source_hint > len(issues):
                truncated = source_hint - len(issues)

            snapshot = DataSnapshot(
                issues=issues,
                issue_map=issue_map,
                view_issues=view_issues,
                stats=stats,
                list_items=list_items,
                count_open=counts.open,
                count_ready=counts.ready,
                count_blocked=counts.blocked,
                count_closed=counts.closed,
                dataset_tier=tier,
                build_config=build_config,
                scores_final=scores_final,
                triage=triage,
                tree=tree,
                board=board,
                graph_layout=layout,
                insights=insights,
                issue_diff=diff,
                issue_diff_stats=diff_stats,
                incremental_list_used=incremental,
                fingerprints=MappingProxyType(fingerprints),
                view_name=self._view.name if self._view is not None else "",
                view_hash=view_hash,
                data_hash=str(self._metadata.get("data_hash", "")),
                source_issue_count_hint=source_hint,
                loaded_open_only=loaded_open_only,
                truncated_count=truncated,
                large_dataset_warning=large_dataset_warning(
                    tier, source_hint, len(issues), loaded_open_only
                ),
                load_warning_count=int(self._metadata.get("load_warning_count", 0)),
            )
        except SnapshotBuildError:
            raise
        except Exception as e:
            raise SnapshotBuildError(phase, e) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Built snapshot: {len(issues)} issues, tier={tier}, "
            f"incremental={incremental}, {elapsed_ms:.1f}ms"
        )
        return snapshot

    def _resolve_stats(
        self, issues: Sequence[Issue], build_config: SnapshotBuildConfig
    ) -> Tuple[GraphStats, bool]:
        """Stats for the build and whether their phase-2 values are final."""
        if self._stats is not None:
            return self._stats, self._stats.is_phase2_ready()
        if build_config.skip_phase2:
            return Analyzer(issues, config=no_phase2_config()).analyze(), True
        analyzer = Analyzer(issues, max_cycles_to_store=self._policy.max_cycles_to_store)
        return analyzer.analyze_async(), False


def build_snapshot(
    issues: Iterable[Issue],
    stats: Optional[GraphStats] = None,
    view: Optional[ViewSpec] = None,
    previous: Optional[DataSnapshot] = None,
    diff: Optional[IssueDiff] = None,
    build_config: Optional[SnapshotBuildConfig] = None,
    policy: Optional[SnapshotPolicy] = None,
) -> DataSnapshot:
    """Functional form of SnapshotBuilder."""
    builder = SnapshotBuilder(issues, policy=policy).with_view(view)
    if stats is not None:
        builder.with_analysis(stats)
    if build_config is not None:
        builder.with_build_config(build_config)
    if previous is not None:
        builder.with_previous_snapshot(previous, diff)
    return builder.build()
