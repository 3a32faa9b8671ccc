# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""UI-side holder of the current snapshot.

The consumer runs on the UI thread. It keeps exactly one current snapshot,
replaced by assignment when a newer SnapshotReady arrives, and derives the
status-bar indicators (freshness, error badge, worker liveness) from the
messages it has seen.

Views the builder skipped for large datasets (tree, board, graph layout) are
built on first request and cached per snapshot version.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .analysis.insights import Insights, generate_insights
from .board import BoardState, build_board_state
from .config import Config
from .graph_layout import GraphLayout, build_graph_layout
from .messages import Phase2Ready, SnapshotError, SnapshotReady, WorkerMessage
from .snapshot import DataSnapshot, ListItem
from .tree import IssueTree, build_issue_tree
from .worker import WorkerHealth, WorkerState

logger = logging.getLogger(__name__)


class Freshness:
    """Snapshot age classes for the status bar."""

    FRESH = "fresh"
    WARN = "warn"
    STALE = "stale"


def format_age(seconds: float) -> str:
    """Compact age: 45s, 3m, 2h, 4d."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


class SnapshotConsumer:
    """Applies worker messages and answers status queries.

    Not thread-safe: call from the UI thread only.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.from_dict({})
        self._snapshot: Optional[DataSnapshot] = None
        self._version = 0
        self._insights: Optional[Insights] = None

        self.consecutive_failures = 0
        self.last_error: Optional[SnapshotError] = None

        self._unresponsive = False
        self.recovered_count = 0

        self._cache: Dict[Tuple[str, bool], Any] = {}
        self._cache_version = -1

    @property
    def snapshot(self) -> Optional[DataSnapshot]:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._version

    def handle_message(self, message: WorkerMessage) -> bool:
        """Apply one worker message.

        Returns:
            True if the current snapshot or its phase-2 data changed.
        """
        if isinstance(message, SnapshotReady):
            return self._apply_snapshot(message)
        if isinstance(message, Phase2Ready):
            return self._apply_phase2(message)
        if isinstance(message, SnapshotError):
            self.consecutive_failures += 1
            self.last_error = message
            logger.debug(
                f"Worker reported error ({self.consecutive_failures} in a row): {message.error}"
            )
            return False
        logger.warning(f"Ignoring unknown worker message {type(message).__name__}")
        return False

    def _apply_snapshot(self, message: SnapshotReady) -> bool:
        if message.version <= self._version:
            logger.debug(
                f"Ignoring snapshot version {message.version}, current is {self._version}"
            )
            return False
        self._snapshot = message.snapshot
        self._version = message.version
        self._insights = message.snapshot.insights
        self.consecutive_failures = 0
        self.last_error = None
        return True

    def _apply_phase2(self, message: Phase2Ready) -> bool:
        if self._snapshot is None or message.version != self._version:
            logger.debug(f"Ignoring phase 2 for version {message.version}")
            return False
        if message.stats is not self._snapshot.stats:
            logger.debug("Ignoring phase 2 for stats of another snapshot")
            return False
        if message.insights is not None:
            self._insights = message.insights
        # Cached views may hold phase-1 ranks
        self._cache.clear()
        return True

    # Status indicators

    def freshness(self, now: Optional[datetime] = None) -> Optional[str]:
        """Age class of the current snapshot, or None without one."""
        if self._snapshot is None:
            return None
        age = self._snapshot.age_seconds(now)
        if age >= self.config.freshness_stale_s:
            return Freshness.STALE
        if age >= self.config.freshness_warn_s:
            return Freshness.WARN
        return Freshness.FRESH

    def show_error_badge(self) -> bool:
        return self.consecutive_failures >= self.config.error_badge_threshold

    def check_liveness(self, health: WorkerHealth, now: float) -> bool:
        """Update liveness tracking from a health report.

        Args:
            health: Latest worker health.
            now: Current time.time().

        Returns:
            True if the worker is responsive.
        """
        responsive = self._is_responsive(health, now)
        if health.consecutive_failures == 0 and health.last_error is None:
            # Successful rebuilds of unchanged data send no snapshot
            self.consecutive_failures = 0
            self.last_error = None
        if not responsive and not self._unresponsive:
            logger.warning("Background worker is unresponsive")
        elif responsive and self._unresponsive:
            self.recovered_count += 1
            logger.info("Background worker is responsive again")
        self._unresponsive = not responsive
        return responsive

    def _is_responsive(self, health: WorkerHealth, now: float) -> bool:
        if not health.started or health.state == WorkerState.STOPPED:
            return True
        if not health.alive:
            return False
        if health.last_heartbeat is None:
            return True
        return now - health.last_heartbeat <= self.config.heartbeat_timeout_s

    def status_text(
        self, health: Optional[WorkerHealth] = None, now: Optional[datetime] = None
    ) -> str:
        """Status-bar text for the worker section ("" when all is well)."""
        if health is not None and health.started and not health.alive:
            if health.state != WorkerState.STOPPED:
                return "⚠ worker unresponsive"
        if self.last_error is not None:
            error = self.last_error.error
            if self.show_error_badge():
                return f"✗ bg {error.phase} ({self.consecutive_failures}x)"
            if now is None:
                now = datetime.now(timezone.utc)
            return f"⚠ bg {error.phase} ({format_age((now - error.time).total_seconds())})"
        freshness = self.freshness(now)
        if freshness is not None and self._snapshot is not None:
            age = format_age(self._snapshot.age_seconds(now))
            if freshness == Freshness.STALE:
                return f"⚠ STALE: {age} ago"
            if freshness == Freshness.WARN:
                return f"⚠ {age} ago"
        if health is not None and health.recovery_count > 0:
            return f"↻ recovered x{health.recovery_count}"
        return ""

    # Derived views

    @property
    def phase2_ready(self) -> bool:
        return self._snapshot is not None and self._snapshot.phase2_ready

    def insights(self) -> Optional[Insights]:
        """Insights for the current snapshot, computed on demand once phase 2 is done."""
        if self._snapshot is None:
            return None
        if self._insights is None or not self._insights.phase2_ready:
            if self._snapshot.phase2_ready:
                self._insights = generate_insights(
                    self._snapshot.stats, self.config.insights_limit
                )
        return self._insights

    def list_items(self) -> Tuple[ListItem, ...]:
        if self._snapshot is None:
            return ()
        return self._cached("list_items", self._snapshot.scored_list_items)

    def tree(self) -> Optional[IssueTree]:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        if snapshot.tree is not None:
            return snapshot.tree
        return self._cached("tree", lambda: build_issue_tree(snapshot.issues))

    def board(self) -> Optional[BoardState]:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        if snapshot.board is not None:
            return snapshot.board
        return self._cached("board", lambda: build_board_state(snapshot.issues))

    def graph_layout(self) -> Optional[GraphLayout]:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        if snapshot.graph_layout is not None:
            return self._cached("graph_layout", snapshot.refreshed_graph_layout)
        return self._cached(
            "graph_layout",
            lambda: build_graph_layout(
                snapshot.issues, snapshot.stats, include_phase2=snapshot.phase2_ready
            ),
        )

    def _cached(self, key: str, factory: Callable[[], Any]) -> Any:
        if self._cache_version != self._version:
            self._cache.clear()
            self._cache_version = self._version
        # Phase-2 completion changes scores and ranks
        cache_key = (key, self.phase2_ready)
        if cache_key not in self._cache:
            self._cache[cache_key] = factory()
        return self._cache[cache_key]
