# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the snapshot builder, tiering and incremental list rebuilds."""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

import pytest

from beadview.analysis.analyzer import Analyzer
from beadview.analysis.diff import diff_fingerprints, fingerprint_map
from beadview.analysis.graph_stats import GraphStats, MetricName, MetricState
from beadview.models import Dependency, DependencyType, IssueStatus
from beadview.snapshot import (
    DatasetTier,
    DiffStatus,
    ListItem,
    SnapshotBuildConfig,
    SnapshotBuilder,
    SnapshotBuildError,
    SnapshotPolicy,
    build_snapshot,
    compact_count,
    dataset_tier_for_issue_count,
    large_dataset_warning,
    repo_prefix_of,
    reset_list_item,
    reusable_stats,
)
from beadview.view_spec import SortField, ViewSpec

from conftest import make_issue


def _chain(count):
    """n00 <- n01 <- ... each issue blocked by the next one."""
    issues = [
        make_issue(f"n{i:02d}", blocked_by=[f"n{i + 1:02d}"], created_offset=i)
        for i in range(count - 1)
    ]
    issues.append(make_issue(f"n{count - 1:02d}", created_offset=count - 1))
    return issues


def _final_stats(issues):
    return Analyzer(issues).analyze_full(timeout=10)


class TestTiers:
    """Tests for size classification."""

    @pytest.mark.parametrize(
        "count,tier",
        [
            (0, DatasetTier.UNKNOWN),
            (999, DatasetTier.SMALL),
            (1000, DatasetTier.MEDIUM),
            (4999, DatasetTier.MEDIUM),
            (5000, DatasetTier.LARGE),
            (19999, DatasetTier.LARGE),
            (20000, DatasetTier.HUGE),
        ],
    )
    def test_boundaries(self, count, tier):
        """Test that each threshold belongs to the next tier up."""
        assert dataset_tier_for_issue_count(count) == tier

    def test_custom_policy(self):
        """Test thresholds from a custom policy."""
        policy = SnapshotPolicy(small_max=2, medium_max=3, large_max=4)
        assert dataset_tier_for_issue_count(3, policy) == DatasetTier.LARGE

    def test_build_config_per_tier(self):
        """Test what each tier precomputes."""
        assert SnapshotBuildConfig.for_tier(DatasetTier.MEDIUM).skipped_views() == []
        large = SnapshotBuildConfig.for_tier(DatasetTier.LARGE)
        huge = SnapshotBuildConfig.for_tier(DatasetTier.HUGE)

        assert large.skipped_views() == ["triage", "tree", "board", "graph_layout", "insights"]
        assert not large.skip_phase2
        assert huge.skip_phase2


class TestWarnings:
    """Tests for compact counts and large dataset warnings."""

    def test_compact_count(self):
        """Test truncating k/m suffixes."""
        assert compact_count(950) == "950"
        assert compact_count(6200) == "6k"
        assert compact_count(25000) == "25k"
        assert compact_count(3_400_000) == "3m"

    def test_warning_text(self):
        """Test the advisory per tier."""
        assert large_dataset_warning(DatasetTier.SMALL, 0, 10, False) == ""
        assert large_dataset_warning(DatasetTier.LARGE, 6200, 6200, False) == "⚠ large 6k issues"
        assert (
            large_dataset_warning(DatasetTier.HUGE, 25000, 1200, True)
            == "⚠ huge open-only 1k/25k"
        )
        assert large_dataset_warning(DatasetTier.HUGE, 0, 30000, False) == "⚠ huge 30k issues"


class TestListItems:
    """Tests for list item helpers."""

    def test_repo_prefix(self):
        """Test prefix extraction."""
        assert repo_prefix_of("api-12") == "api"
        assert repo_prefix_of("plain") == ""

    def test_reset_clears_per_snapshot_fields(self):
        """Test that carried items lose their badges and triage annotations."""
        issue = make_issue("api-1")
        item = ListItem(
            issue=issue,
            diff_status=DiffStatus.NEW,
            search_matched=True,
            triage_score=0.9,
            is_blocker=True,
            unblocks_count=4,
        )

        reset = reset_list_item(item, issue, None)

        assert reset == ListItem(issue=issue, repo_prefix="api")


class TestSnapshotBuilder:
    """Tests for full builds."""

    def test_counts_and_order(self):
        """Test readiness counts and canonical ordering for A blocking B."""
        issues = [
            make_issue("A", created_offset=0),
            make_issue("B", blocked_by=["A"], created_offset=1),
        ]
        snapshot = SnapshotBuilder(issues).with_analysis(_final_stats(issues)).build()

        assert (snapshot.count_open, snapshot.count_ready, snapshot.count_blocked) == (2, 1, 0)
        assert [i.id for i in snapshot.issues] == ["B", "A"]
        assert snapshot.get_issue("A") is issues[0]
        assert snapshot.dataset_tier == DatasetTier.SMALL
        assert not snapshot.is_empty

    def test_small_tier_precomputes_everything(self, diamond_issues):
        """Test that small datasets get every derived view."""
        snapshot = build_snapshot(diamond_issues, stats=_final_stats(diamond_issues))

        assert snapshot.scores_final
        assert snapshot.triage is not None
        assert snapshot.tree is not None
        assert snapshot.board is not None
        assert snapshot.graph_layout.sorted_ids == ("D", "B", "C", "A")
        assert snapshot.insights.phase2_ready
        item = {item.id: item for item in snapshot.list_items}["D"]
        assert item.impact == 3.0
        assert item.is_blocker
        assert item.unblocks_count == 2

    def test_insights_include_structure(self):
        """Test that insights list cut vertices, cores and slack."""
        issues = _chain(3) + [make_issue("loose", created_offset=9)]
        snapshot = build_snapshot(issues, stats=_final_stats(issues))

        insights = snapshot.insights
        assert insights.articulation == ("n01",)
        assert insights.ids("cores") == ["n00", "n01", "n02"]
        assert insights.ids("slack") == ["loose"]

    def test_empty_input(self):
        """Test that an empty issue set builds an empty snapshot."""
        snapshot = build_snapshot([])

        assert snapshot.is_empty
        assert snapshot.list_items == ()
        assert snapshot.dataset_tier == DatasetTier.UNKNOWN
        assert snapshot.stats.wait_for_phase2(timeout=10)

    def test_pending_phase2_uses_phase1_only(self, diamond_issues):
        """Test that scores stay at phase-1 values while phase 2 may be running."""
        snapshot = build_snapshot(diamond_issues)

        assert not snapshot.scores_final
        assert all(item.graph_score == 0.0 for item in snapshot.list_items)
        assert not snapshot.insights.phase2_ready

        assert snapshot.stats.wait_for_phase2(timeout=10)
        scored = {item.id: item for item in snapshot.scored_list_items()}
        assert scored["D"].impact == 3.0
        assert scored["D"].graph_score > 0
        assert snapshot.refreshed_graph_layout().sorted_ids[0] == "D"
        assert all(item.graph_score == 0.0 for item in snapshot.list_items)

    def test_view_filters_list(self, diamond_issues):
        """Test that the view picks list items and is recorded."""
        view = ViewSpec(name="ready", actionable_only=True)
        snapshot = build_snapshot(diamond_issues, stats=_final_stats(diamond_issues), view=view)

        assert [item.id for item in snapshot.list_items] == ["D"]
        assert snapshot.view_name == "ready"
        assert snapshot.view_hash == view.fingerprint()
        assert len(snapshot.issues) == 4

    def test_huge_source_hint(self):
        """Test that an open-only load of a huge file skips phase 2 and derived views."""
        issues = [make_issue(f"i{n}") for n in range(10)]
        snapshot = (
            SnapshotBuilder(issues)
            .with_source_metadata(
                data_hash="abc", source_issue_count_hint=25000, loaded_open_only=True
            )
            .build()
        )

        assert snapshot.dataset_tier == DatasetTier.HUGE
        assert snapshot.scores_final
        assert snapshot.phase2_ready
        assert snapshot.tree is None
        assert snapshot.board is None
        assert snapshot.graph_layout is None
        assert snapshot.triage is None
        assert snapshot.insights is None
        status = snapshot.stats.metric_status()
        assert status[MetricName.PAGERANK].state == MetricState.SKIPPED
        assert snapshot.truncated_count == 24990
        assert snapshot.large_dataset_warning == "⚠ huge open-only 10/25k"
        assert snapshot.data_hash == "abc"

    def test_large_source_hint(self):
        """Test that the large tier keeps phase 2 but skips derived views."""
        issues = [make_issue("a")]
        builder = SnapshotBuilder(issues).with_source_metadata(source_issue_count_hint=6200)
        snapshot = builder.build()

        assert snapshot.dataset_tier == DatasetTier.LARGE
        assert not snapshot.build_config.skip_phase2
        assert snapshot.tree is None
        assert snapshot.large_dataset_warning == "⚠ large 6k issues"
        assert snapshot.stats.wait_for_phase2(timeout=10)

    def test_build_config_override(self, diamond_issues):
        """Test an explicit build config wins over the tier default."""
        config = SnapshotBuildConfig(precompute_tree=False)
        snapshot = (
            SnapshotBuilder(diamond_issues)
            .with_analysis(_final_stats(diamond_issues))
            .with_build_config(config)
            .build()
        )

        assert snapshot.tree is None
        assert snapshot.board is not None

    def test_failure_wrapped_with_phase(self, diamond_issues):
        """Test that unexpected failures name the failing step."""
        with patch("beadview.snapshot.compute_triage", side_effect=ValueError("bad")):
            with pytest.raises(SnapshotBuildError) as exc_info:
                build_snapshot(diamond_issues, stats=_final_stats(diamond_issues))

        assert exc_info.value.phase == "triage"
        assert isinstance(exc_info.value.cause, ValueError)

    def test_identical_builds_are_equal(self, diamond_issues):
        """Test that building twice from the same input gives the same result."""
        stats = _final_stats(diamond_issues)
        first = build_snapshot(diamond_issues, stats=stats)
        second = build_snapshot(list(reversed(diamond_issues)), stats=stats)

        assert first.issues == second.issues
        assert first.list_items == second.list_items
        assert first.triage == second.triage
        assert first.board == second.board
        assert first.graph_layout == second.graph_layout

    def test_age_seconds(self):
        """Test snapshot age."""
        snapshot = build_snapshot([], build_config=SnapshotBuildConfig(skip_phase2=True))
        later = snapshot.created_at + timedelta(seconds=42)

        assert snapshot.age_seconds(later) == 42.0
        assert snapshot.age_seconds(snapshot.created_at - timedelta(seconds=5)) == 0.0


def _retitle(issue):
    return replace(issue, title="Renamed")


def _close(issue):
    return replace(issue, status=IssueStatus.CLOSED)


def _reprioritize(issue):
    return replace(issue, priority=0)


def _relabel(issue):
    return replace(issue, labels=("ui", "backend"))


def _add_blocker(issue):
    extra = Dependency(issue.id, "n09", DependencyType.BLOCKS)
    return replace(issue, dependencies=issue.dependencies + (extra,))


def _drop_blockers(issue):
    return replace(issue, dependencies=())


class TestIncrementalRebuild:
    """Tests for carrying list items forward."""

    @pytest.mark.parametrize(
        "mutate",
        [_retitle, _close, _reprioritize, _relabel, _add_blocker, _drop_blockers],
        ids=["title", "status", "priority", "labels", "add_blocker", "drop_blockers"],
    )
    def test_single_change_is_incremental_and_equivalent(self, mutate):
        """Test that an incremental rebuild matches a full rebuild."""
        previous_issues = _chain(10)
        previous = build_snapshot(previous_issues, stats=_final_stats(previous_issues))

        current_issues = list(previous_issues)
        current_issues[3] = mutate(current_issues[3])
        stats = _final_stats(current_issues)

        incremental = build_snapshot(current_issues, stats=stats, previous=previous)
        full = build_snapshot(current_issues, stats=stats)

        assert incremental.incremental_list_used
        assert not full.incremental_list_used
        assert incremental.triage is not None
        assert incremental.issue_diff.modified == ("n03",)
        assert incremental.issue_diff_stats.ratio == pytest.approx(0.1)
        assert incremental.list_items == full.list_items
        assert incremental.triage == full.triage
        assert (
            incremental.count_open,
            incremental.count_ready,
            incremental.count_blocked,
            incremental.count_closed,
        ) == (full.count_open, full.count_ready, full.count_blocked, full.count_closed)

    def test_large_change_rebuilds_fully(self):
        """Test that a change above the ratio uses a full rebuild."""
        previous_issues = _chain(10)
        previous = build_snapshot(previous_issues, stats=_final_stats(previous_issues))
        current_issues = [replace(issue, priority=0) for issue in previous_issues[:3]]
        current_issues += previous_issues[3:]

        snapshot = build_snapshot(
            current_issues, stats=_final_stats(current_issues), previous=previous
        )

        assert not snapshot.incremental_list_used
        assert snapshot.issue_diff_stats.changed == 3

    def test_ratio_boundary_is_inclusive(self):
        """Test that a change ratio equal to the maximum stays incremental."""
        previous_issues = _chain(10)
        previous = build_snapshot(previous_issues, stats=_final_stats(previous_issues))
        current_issues = [replace(issue, priority=1) for issue in previous_issues[:2]]
        current_issues += previous_issues[2:]

        snapshot = build_snapshot(
            current_issues, stats=_final_stats(current_issues), previous=previous
        )

        assert snapshot.issue_diff_stats.ratio == pytest.approx(0.2)
        assert snapshot.incremental_list_used

    def test_view_change_rebuilds_fully(self):
        """Test that a different view never reuses list items."""
        issues = _chain(10)
        stats = _final_stats(issues)
        previous = build_snapshot(issues, stats=stats)
        view = ViewSpec(sort_field=SortField.PRIORITY)

        snapshot = build_snapshot(issues, stats=stats, view=view, previous=previous)

        assert snapshot.issue_diff.is_empty
        assert not snapshot.incremental_list_used


class TestStatsReuse:
    """Tests for carrying graph stats across reloads."""

    def _previous(self, issues):
        return build_snapshot(issues, stats=_final_stats(issues))

    def _diff(self, previous, issues):
        return diff_fingerprints(previous.fingerprints, fingerprint_map(issues))

    def test_title_change_reuses_stats(self):
        """Test that content-only edits keep the previous stats."""
        issues = _chain(5)
        previous = self._previous(issues)
        current = list(issues)
        current[2] = replace(current[2], title="Renamed", priority=0)
        diff = self._diff(previous, current)

        assert not diff.graph_changed
        assert reusable_stats(previous, diff, current, previous.dataset_tier) is previous.stats

    def test_dependency_change_recomputes(self):
        """Test that a changed blocking dependency invalidates the stats."""
        issues = _chain(5)
        previous = self._previous(issues)
        current = list(issues)
        current[1] = replace(current[1], dependencies=())
        diff = self._diff(previous, current)

        assert diff.graph_changed
        assert reusable_stats(previous, diff, current, previous.dataset_tier) is None

    def test_added_issue_recomputes(self):
        """Test that a new node invalidates the stats."""
        issues = _chain(5)
        previous = self._previous(issues)
        current = issues + [make_issue("extra")]

        diff = self._diff(previous, current)
        assert reusable_stats(previous, diff, current, previous.dataset_tier) is None

    def test_readiness_change_recomputes(self):
        """Test that closing a blocker invalidates the actionable set."""
        issues = _chain(5)
        previous = self._previous(issues)
        current = list(issues)
        current[4] = replace(current[4], status=IssueStatus.CLOSED)
        diff = self._diff(previous, current)

        assert not diff.graph_changed
        assert reusable_stats(previous, diff, current, previous.dataset_tier) is None

    def test_tier_change_recomputes(self):
        """Test that stats from another tier are not reused."""
        issues = _chain(5)
        previous = self._previous(issues)
        diff = self._diff(previous, issues)

        assert reusable_stats(previous, diff, issues, DatasetTier.HUGE) is None

    def test_failed_metrics_not_reused(self):
        """Test that stats with a failed metric are recomputed."""
        issues = _chain(5)
        stats = GraphStats(node_ids=[issue.id for issue in issues])
        stats.mark_pending_failed("boom")
        stats.mark_phase2_ready()
        previous = build_snapshot(issues, stats=stats)
        diff = self._diff(previous, issues)

        assert reusable_stats(previous, diff, issues, previous.dataset_tier) is None

    def test_reused_stats_give_final_scores(self):
        """Test that a build with reused stats matches a fresh analysis."""
        issues = _chain(5)
        previous = self._previous(issues)
        current = list(issues)
        current[0] = replace(current[0], title="Renamed")
        stats = reusable_stats(
            previous, self._diff(previous, current), current, previous.dataset_tier
        )

        reused = build_snapshot(current, stats=stats, previous=previous)
        fresh = build_snapshot(current, stats=_final_stats(current))

        assert reused.scores_final
        assert reused.list_items == fresh.list_items
