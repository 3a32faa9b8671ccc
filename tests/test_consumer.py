# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the UI-side snapshot consumer."""

from datetime import datetime, timedelta, timezone

import pytest

from beadview.analysis.analyzer import Analyzer
from beadview.analysis.insights import Insights
from beadview.config import Config
from beadview.consumer import Freshness, SnapshotConsumer, format_age
from beadview.messages import BuildPhase, Phase2Ready, SnapshotError, SnapshotReady, WorkerError
from beadview.snapshot import SnapshotBuildConfig, build_snapshot
from beadview.worker import WorkerHealth, WorkerState

from conftest import make_issue

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(issues=None, **kwargs):
    if issues is None:
        issues = [make_issue("a")]
    return build_snapshot(issues, stats=Analyzer(issues).analyze_full(timeout=10), **kwargs)


def _error(phase=BuildPhase.LOAD, when=NOW):
    return SnapshotError(
        error=WorkerError(phase=phase, cause=OSError("gone"), time=when), recoverable=True
    )


def _health(**overrides):
    values = dict(
        started=True,
        alive=True,
        state=WorkerState.IDLE,
        last_heartbeat=1000.0,
        recovery_count=0,
        consecutive_failures=0,
        last_error=None,
    )
    values.update(overrides)
    return WorkerHealth(**values)


class TestMessages:
    """Tests for message handling."""

    def test_newer_version_replaces(self):
        """Test that snapshots apply in version order only."""
        consumer = SnapshotConsumer()
        first, second = _snapshot(), _snapshot()

        assert consumer.handle_message(SnapshotReady(snapshot=second, version=2))
        assert not consumer.handle_message(SnapshotReady(snapshot=first, version=1))
        assert not consumer.handle_message(SnapshotReady(snapshot=first, version=2))

        assert consumer.snapshot is second
        assert consumer.version == 2

    def test_phase2_requires_matching_version(self):
        """Test that phase-2 results for other versions are ignored."""
        consumer = SnapshotConsumer()
        snapshot = _snapshot()
        consumer.handle_message(SnapshotReady(snapshot=snapshot, version=3))
        insights = Insights(density=0.5, phase2_ready=True)

        stale = Phase2Ready(stats=snapshot.stats, insights=insights, data_hash="", version=2)
        other = Phase2Ready(
            stats=_snapshot().stats, insights=insights, data_hash="", version=3
        )
        current = Phase2Ready(stats=snapshot.stats, insights=insights, data_hash="", version=3)

        assert not consumer.handle_message(stale)
        assert not consumer.handle_message(other)
        assert consumer.handle_message(current)
        assert consumer.insights() is insights

    def test_errors_counted_and_reset_by_snapshot(self):
        """Test the error badge threshold and reset on success."""
        consumer = SnapshotConsumer()
        for _ in range(2):
            consumer.handle_message(_error())
        assert not consumer.show_error_badge()

        consumer.handle_message(_error())
        assert consumer.show_error_badge()
        assert consumer.status_text(now=NOW) == "✗ bg load (3x)"

        consumer.handle_message(SnapshotReady(snapshot=_snapshot(), version=1))
        assert consumer.consecutive_failures == 0
        assert consumer.last_error is None


class TestIndicators:
    """Tests for freshness, liveness and status text."""

    def test_freshness_thresholds(self):
        """Test fresh, warn and stale ages with the default 30s/120s."""
        consumer = SnapshotConsumer()
        assert consumer.freshness(NOW) is None

        snapshot = _snapshot()
        consumer.handle_message(SnapshotReady(snapshot=snapshot, version=1))
        created = snapshot.created_at

        assert consumer.freshness(created + timedelta(seconds=29)) == Freshness.FRESH
        assert consumer.freshness(created + timedelta(seconds=30)) == Freshness.WARN
        assert consumer.freshness(created + timedelta(seconds=120)) == Freshness.STALE
        assert consumer.status_text(now=created + timedelta(seconds=45)) == "⚠ 45s ago"
        assert consumer.status_text(now=created + timedelta(minutes=3)) == "⚠ STALE: 3m ago"
        assert consumer.status_text(now=created) == ""

    def test_error_status_shows_age(self):
        """Test the recoverable error text below the badge threshold."""
        consumer = SnapshotConsumer()
        consumer.handle_message(_error(BuildPhase.BUILD, when=NOW - timedelta(seconds=12)))

        assert consumer.status_text(now=NOW) == "⚠ bg build (12s)"

    def test_liveness(self):
        """Test unresponsive detection and recovery counting."""
        consumer = SnapshotConsumer(Config.from_dict({"heartbeat_timeout_s": 10.0}))

        assert consumer.check_liveness(_health(), now=1005.0)
        assert not consumer.check_liveness(_health(), now=1011.0)
        assert not consumer.check_liveness(_health(alive=False), now=1000.0)
        assert consumer.check_liveness(_health(last_heartbeat=1020.0), now=1021.0)

        assert consumer.recovered_count == 1

    def test_stopped_worker_is_not_unresponsive(self):
        """Test that a stopped worker does not raise the alarm."""
        consumer = SnapshotConsumer()
        health = _health(alive=False, state=WorkerState.STOPPED)

        assert consumer.check_liveness(health, now=99999.0)
        assert consumer.status_text(health, now=NOW) == ""

    def test_dead_worker_status(self):
        """Test the unresponsive status text."""
        consumer = SnapshotConsumer()
        assert consumer.status_text(_health(alive=False), now=NOW) == "⚠ worker unresponsive"

    def test_liveness_clears_errors_after_silent_recovery(self):
        """Test that a healthy report clears errors when no snapshot was sent."""
        consumer = SnapshotConsumer()
        consumer.handle_message(_error())

        consumer.check_liveness(_health(recovery_count=1), now=1000.0)

        assert consumer.consecutive_failures == 0
        assert consumer.status_text(_health(recovery_count=1), now=NOW) == "↻ recovered x1"

    @pytest.mark.parametrize(
        "seconds,text",
        [(0, "0s"), (59, "59s"), (60, "1m"), (3599, "59m"), (7200, "2h"), (172800, "2d")],
    )
    def test_format_age(self, seconds, text):
        """Test compact age formatting."""
        assert format_age(seconds) == text


class TestDerivedViews:
    """Tests for lazily built views."""

    def test_empty_consumer(self):
        """Test that views are empty before any snapshot."""
        consumer = SnapshotConsumer()

        assert consumer.list_items() == ()
        assert consumer.tree() is None
        assert consumer.board() is None
        assert consumer.graph_layout() is None
        assert consumer.insights() is None

    def test_skipped_views_built_on_demand(self, diamond_issues):
        """Test that views skipped by the builder are built and cached."""
        skip_all = SnapshotBuildConfig.for_tier("large")
        snapshot = _snapshot(diamond_issues, build_config=skip_all)
        consumer = SnapshotConsumer()
        consumer.handle_message(SnapshotReady(snapshot=snapshot, version=1))

        tree = consumer.tree()

        assert snapshot.tree is None
        assert tree is not None
        assert consumer.tree() is tree
        assert consumer.board().by_status[0]
        assert consumer.graph_layout().sorted_ids == ("D", "B", "C", "A")
        assert consumer.insights().phase2_ready

    def test_cache_cleared_on_new_version(self, diamond_issues):
        """Test that cached views belong to one version."""
        skip_all = SnapshotBuildConfig.for_tier("large")
        consumer = SnapshotConsumer()
        consumer.handle_message(
            SnapshotReady(snapshot=_snapshot(diamond_issues, build_config=skip_all), version=1)
        )
        first = consumer.board()

        consumer.handle_message(
            SnapshotReady(snapshot=_snapshot(diamond_issues, build_config=skip_all), version=2)
        )

        assert consumer.board() is not first

    def test_list_items_pick_up_phase2_scores(self, diamond_issues):
        """Test that list items are refreshed once phase 2 completes."""
        snapshot = build_snapshot(diamond_issues)
        consumer = SnapshotConsumer()
        consumer.handle_message(SnapshotReady(snapshot=snapshot, version=1))

        assert snapshot.stats.wait_for_phase2(timeout=10)
        consumer.handle_message(
            Phase2Ready(stats=snapshot.stats, insights=None, data_hash="", version=1)
        )
        items = {item.id: item for item in consumer.list_items()}

        assert items["D"].impact == 3.0
        assert consumer.insights().phase2_ready
