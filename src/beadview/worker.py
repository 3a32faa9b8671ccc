# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Background worker that turns issue file changes into snapshots.

A single long-lived thread loads the issues file, builds a DataSnapshot and
posts messages to a bounded queue the UI thread drains. The UI never waits on
the worker.

Design:
- At most one build in flight; signals arriving during a build set a pending
  flag and produce exactly one follow-up build
- Every build takes the current generation; results built for a superseded
  generation (view change, forced refresh) are dropped
- Snapshot versions increase by one per SnapshotReady sent
- Unchanged data with an unchanged view produces no new snapshot
- Graph stats carry over from the previous snapshot while the dependency
  graph and the actionable set are unchanged (except on force_refresh)
- Failures are retried with exponential backoff up to max_retries, after
  which the worker reports an unrecoverable error and waits for a new signal
- When the message queue is full the oldest message is dropped

State machine:
    IDLE -> PROCESSING -> IDLE | ERROR
    any -> STOPPED (stop() at shutdown)
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .analysis.diff import compute_data_hash, diff_fingerprints, fingerprint_map
from .analysis.graph_stats import GraphStats
from .analysis.insights import generate_insights
from .config import Config
from .file_watcher import FileChangeEvent
from .loader import IssueFilter, LoadResult, count_jsonl_lines, load_issues_from_file
from .logging_setup import log_metrics
from .messages import (
    BuildPhase,
    Phase2Ready,
    SnapshotError,
    SnapshotReady,
    WorkerError,
    WorkerMessage,
)
from .models import Issue
from .snapshot import (
    DataSnapshot,
    DatasetTier,
    SnapshotBuildConfig,
    SnapshotBuilder,
    SnapshotPolicy,
    dataset_tier_for_issue_count,
    reusable_stats,
)
from .view_spec import ViewSpec

logger = logging.getLogger(__name__)

IssueLoader = Callable[[Path, Optional[IssueFilter]], LoadResult]
LineCounter = Callable[[Path], int]


class WorkerState:
    """Worker lifecycle states.

    Design: Using class constants (not Enum) for JSON-compatible strings.
    """

    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(frozen=True)
class WorkerHealth:
    """Point-in-time liveness report.

    Attributes:
        started: start() has been called.
        alive: The worker thread is running.
        state: Current WorkerState.
        last_heartbeat: time.time() of the last heartbeat, or None.
        recovery_count: Failure streaks that ended in a success.
        consecutive_failures: Failed attempts since the last success.
        last_error: Most recent failure, cleared on success.
    """

    started: bool
    alive: bool
    state: str
    last_heartbeat: Optional[float]
    recovery_count: int
    consecutive_failures: int
    last_error: Optional[WorkerError] = None


@dataclass(frozen=True)
class WorkerStats:
    builds: int = 0
    coalesced: int = 0
    dropped_stale: int = 0
    dropped_messages: int = 0
    deduplicated: int = 0
    stats_reused: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "builds": self.builds,
            "coalesced": self.coalesced,
            "dropped_stale": self.dropped_stale,
            "dropped_messages": self.dropped_messages,
            "deduplicated": self.deduplicated,
            "stats_reused": self.stats_reused,
        }


def _open_like(issue: Issue) -> bool:
    return issue.is_open_like


class BackgroundWorker:
    """Builds snapshots off the UI thread.

    Thread Safety:
    - All mutable state is guarded by a single Condition
    - Loading and building run outside the lock
    - Messages cross to the UI thread through a queue.Queue

    Usage:
        worker = BackgroundWorker(".beads/issues.jsonl")
        worker.start()
        ...
        for message in worker.get_messages():
            consumer.handle_message(message)
        ...
        worker.stop()
    """

    def __init__(
        self,
        issues_path: Union[str, Path],
        config: Optional[Config] = None,
        loader: Optional[IssueLoader] = None,
        view: Optional[ViewSpec] = None,
        line_counter: Optional[LineCounter] = None,
        metrics_logger: Optional[logging.Logger] = None,
    ):
        """Initialize worker.

        Args:
            issues_path: JSONL issues file to load.
            config: Worker and policy settings (defaults when None).
            loader: Replacement for load_issues_from_file.
            view: Initial view.
            line_counter: Replacement for count_jsonl_lines.
            metrics_logger: Logger receiving one JSON record per build.
        """
        self.issues_path = Path(issues_path)
        self.config = config or Config.from_dict({})
        self.policy = SnapshotPolicy.from_config(self.config)
        self._loader = loader or load_issues_from_file
        self._line_counter = line_counter or count_jsonl_lines
        self._metrics_logger = metrics_logger

        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._started = False
        self._stopping = False
        self._state = WorkerState.IDLE

        self._view = view
        self._pending = False
        self._force = False
        self._retry_at: Optional[float] = None
        self._generation = 0
        self._version = 0

        self._last_snapshot: Optional[DataSnapshot] = None
        self._last_data_hash = ""
        self._last_view_hash = ""

        self._last_error: Optional[WorkerError] = None
        self._consecutive_failures = 0
        self._retry_attempts = 0
        self._recovery_count = 0
        self._last_heartbeat: Optional[float] = None

        self._builds = 0
        self._coalesced = 0
        self._dropped_stale = 0
        self._dropped_messages = 0
        self._deduplicated = 0
        self._stats_reused = 0

        self._messages: "queue.Queue[WorkerMessage]" = queue.Queue(
            maxsize=self.config.message_buffer_size
        )

    # Lifecycle

    def start(self) -> None:
        """Start the worker thread and schedule the initial build.

        Raises:
            RuntimeError: If the worker is already running
        """
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError("BackgroundWorker is already running")
            self._started = True
            self._stopping = False
            self._state = WorkerState.IDLE
            self._pending = True
            self._last_heartbeat = time.time()
            self._thread = threading.Thread(
                target=self._run, name="beadview-worker", daemon=True
            )
            self._thread.start()
        logger.info(f"BackgroundWorker started for {self.issues_path}")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker. A build in progress finishes but is not published."""
        with self._cond:
            self._stopping = True
            self._state = WorkerState.STOPPED
            self._cond.notify_all()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("BackgroundWorker stopped")

    # Signals

    def trigger_refresh(self) -> None:
        """Request a rebuild. Signals arriving before it starts are merged."""
        with self._cond:
            if self._pending:
                self._coalesced += 1
            self._pending = True
            if self._state == WorkerState.ERROR:
                self._retry_attempts = 0
            self._cond.notify_all()

    def force_refresh(self) -> None:
        """Rebuild even if the data is unchanged, with a fresh retry budget."""
        with self._cond:
            if self._pending:
                self._coalesced += 1
            self._pending = True
            self._force = True
            self._retry_attempts = 0
            self._generation += 1
            self._cond.notify_all()

    def set_view(self, view: Optional[ViewSpec]) -> bool:
        """Switch the active view.

        Returns:
            True if the view's filter/sort changed and a rebuild was scheduled.
        """
        new_hash = view.fingerprint() if view is not None else ""
        with self._cond:
            old_hash = self._view.fingerprint() if self._view is not None else ""
            self._view = view
            if new_hash == old_hash:
                return False
            self._generation += 1
            if self._pending:
                self._coalesced += 1
            self._pending = True
            self._cond.notify_all()
        logger.debug(f"View changed to {view.name if view else '<none>'}, rebuilding")
        return True

    def on_file_change(self, event: FileChangeEvent) -> None:
        """FileWatcher callback."""
        logger.debug(f"Issues file changed: {event.path}")
        self.trigger_refresh()

    # Messages

    def get_messages(self) -> List[WorkerMessage]:
        """Drain all queued messages without blocking."""
        drained: List[WorkerMessage] = []
        while True:
            try:
                drained.append(self._messages.get_nowait())
            except queue.Empty:
                return drained

    def poll_message(self, timeout: Optional[float] = None) -> Optional[WorkerMessage]:
        """Wait up to timeout seconds for the next message."""
        try:
            return self._messages.get(timeout=timeout)
        except queue.Empty:
            return None

    def _send(self, message: WorkerMessage) -> None:
        while True:
            try:
                self._messages.put_nowait(message)
                return
            except queue.Full:
                try:
                    self._messages.get_nowait()
                except queue.Empty:
                    continue
                with self._cond:
                    self._dropped_messages += 1
                logger.warning("Message queue full, dropped oldest message")

    # Introspection

    @property
    def state(self) -> str:
        with self._cond:
            return self._state

    @property
    def last_snapshot(self) -> Optional[DataSnapshot]:
        with self._cond:
            return self._last_snapshot

    @property
    def version(self) -> int:
        with self._cond:
            return self._version

    def last_error(self) -> Optional[WorkerError]:
        with self._cond:
            return self._last_error

    def health(self) -> WorkerHealth:
        with self._cond:
            return WorkerHealth(
                started=self._started,
                alive=self._thread is not None and self._thread.is_alive(),
                state=self._state,
                last_heartbeat=self._last_heartbeat,
                recovery_count=self._recovery_count,
                consecutive_failures=self._consecutive_failures,
                last_error=self._last_error,
            )

    def stats(self) -> WorkerStats:
        with self._cond:
            return WorkerStats(
                builds=self._builds,
                coalesced=self._coalesced,
                dropped_stale=self._dropped_stale,
                dropped_messages=self._dropped_messages,
                deduplicated=self._deduplicated,
                stats_reused=self._stats_reused,
            )

    def retry_backoff_s(self, attempt: int) -> float:
        """Delay before retry number attempt (1-based)."""
        delay_ms = self.config.retry_backoff_base_ms * (2 ** max(attempt - 1, 0))
        return min(delay_ms, self.config.retry_backoff_max_ms) / 1000.0

    # Worker thread

    def _run(self) -> None:
        while True:
            with self._cond:
                if not self._wait_for_work_locked():
                    return
                self._pending = False
                self._retry_at = None
                force = self._force
                self._force = False
                generation = self._generation
                view = self._view
                self._state = WorkerState.PROCESSING
                self._builds += 1
                self._last_heartbeat = time.time()

            try:
                next_state = self._build_once(generation, view, force)
            except Exception as e:
                # _build_once handles its own failures; anything here is a bug
                logger.error(f"Unexpected worker failure: {e}", exc_info=True)
                next_state = self._handle_failure(BuildPhase.INTERNAL, e)

            with self._cond:
                self._last_heartbeat = time.time()
                if self._state != WorkerState.STOPPED:
                    self._state = next_state

    def _wait_for_work_locked(self) -> bool:
        """Block until a build is due. Returns False when stopping."""
        while not self._stopping:
            if self._pending:
                return True
            timeout = self.config.heartbeat_interval_s
            if self._retry_at is not None:
                remaining = self._retry_at - time.monotonic()
                if remaining <= 0:
                    return True
                timeout = min(timeout, remaining)
            self._cond.wait(timeout=timeout)
            self._last_heartbeat = time.time()
        return False

    def _build_once(self, generation: int, view: Optional[ViewSpec], force: bool) -> str:
        """Load, build and publish one snapshot. Returns the next state."""
        start = time.perf_counter()
        view_hash = view.fingerprint() if view is not None else ""

        try:
            source_count = self._line_counter(self.issues_path)
            tier = dataset_tier_for_issue_count(source_count, self.policy)
            open_only = tier == DatasetTier.HUGE and not (
                view is not None and view.includes_closed_statuses()
            )
            result = self._loader(self.issues_path, _open_like if open_only else None)
        except Exception as e:
            return self._handle_failure(BuildPhase.LOAD, e)
        load_ms = (time.perf_counter() - start) * 1000

        if result.warnings:
            logger.warning(
                f"Skipped {result.warning_count} malformed lines in {self.issues_path}"
            )

        data_hash = compute_data_hash(result.issues)
        with self._cond:
            if force:
                self._last_data_hash = ""
            unchanged = (
                self._last_snapshot is not None
                and data_hash == self._last_data_hash
                and view_hash == self._last_view_hash
            )
            if unchanged:
                self._deduplicated += 1
                self._record_success_locked()
                previous = None
            else:
                previous = self._last_snapshot
        if unchanged:
            logger.debug("Issue data unchanged, no new snapshot")
            return WorkerState.IDLE

        try:
            diff = None
            stats = None
            if previous is not None:
                diff = diff_fingerprints(previous.fingerprints, fingerprint_map(result.issues))
                if not force:
                    stats = reusable_stats(previous, diff, result.issues, tier)
            builder = (
                SnapshotBuilder(result.issues, policy=self.policy)
                .with_view(view)
                .with_build_config(SnapshotBuildConfig.for_tier(tier))
                .with_previous_snapshot(previous, diff)
                .with_source_metadata(
                    data_hash=data_hash,
                    source_issue_count_hint=source_count,
                    loaded_open_only=open_only,
                    load_warning_count=result.warning_count,
                )
            )
            if stats is not None:
                logger.debug("Dependency graph unchanged, reusing graph stats")
                builder.with_analysis(stats)
            snapshot = builder.build()
        except Exception as e:
            return self._handle_failure(BuildPhase.BUILD, e)
        build_ms = (time.perf_counter() - start) * 1000 - load_ms

        with self._cond:
            if self._stopping or generation != self._generation:
                self._dropped_stale += 1
                logger.debug(f"Dropping snapshot for superseded generation {generation}")
                return WorkerState.IDLE
            self._version += 1
            version = self._version
            self._last_snapshot = snapshot
            self._last_data_hash = data_hash
            self._last_view_hash = view_hash
            if stats is not None:
                self._stats_reused += 1
            self._record_success_locked()

        self._send(SnapshotReady(snapshot=snapshot, version=version))
        if not snapshot.scores_final:
            snapshot.stats.add_phase2_callback(
                lambda stats: self._on_phase2_ready(snapshot, version, stats)
            )
        self._log_build_metrics(snapshot, version, load_ms, build_ms, stats is not None)
        return WorkerState.IDLE

    def _on_phase2_ready(self, snapshot: DataSnapshot, version: int, stats: GraphStats) -> None:
        with self._cond:
            current = not self._stopping and version == self._version
        if not current:
            logger.debug(f"Phase 2 finished for superseded version {version}")
            return
        insights = None
        if snapshot.build_config.precompute_insights:
            insights = generate_insights(stats, self.policy.insights_limit)
        self._send(
            Phase2Ready(
                stats=stats, insights=insights, data_hash=snapshot.data_hash, version=version
            )
        )

    def _handle_failure(self, phase: str, cause: BaseException) -> str:
        """Record a failure, schedule a retry if allowed. Returns the next state."""
        with self._cond:
            self._consecutive_failures += 1
            self._retry_attempts += 1
            attempt = self._retry_attempts
            error = WorkerError(phase=phase, cause=cause, retries=attempt)
            self._last_error = error
            recoverable = attempt <= self.config.max_retries
            if recoverable:
                self._retry_at = time.monotonic() + self.retry_backoff_s(attempt)

        if recoverable:
            logger.warning(f"Snapshot {phase} failed (attempt {attempt}): {cause}")
        else:
            logger.error(f"Snapshot {phase} failed after {attempt} attempts, giving up: {cause}")
        self._send(SnapshotError(error=error, recoverable=recoverable, retry_count=attempt))
        return WorkerState.IDLE if recoverable else WorkerState.ERROR

    def _record_success_locked(self) -> None:
        if self._consecutive_failures > 0:
            self._recovery_count += 1
            logger.info(f"Recovered after {self._consecutive_failures} failed attempts")
        self._consecutive_failures = 0
        self._retry_attempts = 0
        self._last_error = None
        self._retry_at = None

    def _log_build_metrics(
        self,
        snapshot: DataSnapshot,
        version: int,
        load_ms: float,
        build_ms: float,
        stats_reused: bool = False,
    ) -> None:
        if self._metrics_logger is None:
            return
        fields: Dict[str, Any] = {
            "version": version,
            "issues": len(snapshot.issues),
            "tier": snapshot.dataset_tier,
            "incremental": snapshot.incremental_list_used,
            "changed": snapshot.issue_diff_stats.changed,
            "load_ms": round(load_ms, 2),
            "build_ms": round(build_ms, 2),
            "load_warnings": snapshot.load_warning_count,
            "stats_reused": stats_reused,
        }
        log_metrics(self._metrics_logger, "snapshot_build", fields)
