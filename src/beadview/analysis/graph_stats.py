# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""GraphStats: per-issue graph metrics delivered in two phases.

GraphStats behaves like a future. It is created with phase-1 data (degrees,
topological order, density, readiness) and is usable immediately. Phase-2
metrics (PageRank, betweenness, eigenvector, HITS, critical path, k-core,
slack, cycles, articulation points)
are published into it later by a background thread.

Thread Safety:
- Each metric lives in its own slot holding an immutable (values, ranks) pair
- The writer builds read-only mappings and swaps the slot's pair in one
  reference assignment; readers take no lock and always see a consistent pair
- A writer-side lock serialises publishers and callback registration
- A threading.Event signals phase-2 completion for wait_for_phase2()

Before a phase-2 metric is published, its getters return 0 / rank 0.
"""

import logging
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Phase2Callback = Callable[["GraphStats"], None]


class MetricName:
    """Metric identifiers.

    Design: Using class constants (not Enum) for JSON-compatible strings.
    """

    PAGERANK = "pagerank"
    BETWEENNESS = "betweenness"
    EIGENVECTOR = "eigenvector"
    HUB = "hub"
    AUTHORITY = "authority"
    CRITICAL_PATH = "critical_path"
    CORE_NUMBER = "core_number"
    SLACK = "slack"
    IN_DEGREE = "in_degree"
    OUT_DEGREE = "out_degree"

    # Set-valued results with a status but no per-issue score
    CYCLES = "cycles"
    ARTICULATION = "articulation"

    PHASE1 = (IN_DEGREE, OUT_DEGREE)
    PHASE2 = (
        PAGERANK,
        BETWEENNESS,
        EIGENVECTOR,
        HUB,
        AUTHORITY,
        CRITICAL_PATH,
        CORE_NUMBER,
        SLACK,
    )
    ALL = PHASE2 + PHASE1
    STATUS_KEYS = PHASE2 + (CYCLES, ARTICULATION)


class MetricState:
    """Outcome of computing one metric."""

    PENDING = "pending"
    COMPUTED = "computed"
    APPROX = "approx"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class MetricStatus:
    """How a metric was (or was not) computed.

    Attributes:
        state: One of MetricState constants.
        reason: Why it was skipped or failed, if applicable.
        sample_size: Pivot count for sampled metrics.
        elapsed_s: Wall time spent computing it.
    """

    state: str
    reason: str = ""
    sample_size: int = 0
    elapsed_s: float = 0.0


_EMPTY_VALUES: Mapping[str, float] = MappingProxyType({})
_EMPTY_RANKS: Mapping[str, int] = MappingProxyType({})


class _MetricSlot:
    """Single-reference holder for one metric's (values, ranks) pair."""

    __slots__ = ("data",)

    def __init__(self) -> None:
        self.data: Tuple[Mapping[str, float], Mapping[str, int]] = (_EMPTY_VALUES, _EMPTY_RANKS)


class GraphStats:
    """Graph metrics for one issue set.

    Phase-1 attributes are fixed at construction. Phase-2 metrics arrive via
    publish_metric() and finish with mark_phase2_ready().
    """

    def __init__(
        self,
        node_ids: Sequence[str],
        edge_count: int = 0,
        density: float = 0.0,
        topological_order: Sequence[str] = (),
        actionable_ids: Optional[FrozenSet[str]] = None,
    ):
        """Initialize with phase-1 structural data.

        Args:
            node_ids: Ids of all issues in the graph.
            edge_count: Number of blocking edges between existing issues.
            density: edges / (n * (n - 1)).
            topological_order: Dependencies-first order, empty if cyclic.
            actionable_ids: Issues that are ready (one-hop check).
        """
        self.node_ids: Tuple[str, ...] = tuple(node_ids)
        self.node_count = len(self.node_ids)
        self.edge_count = edge_count
        self.density = density
        self.topological_order: Tuple[str, ...] = tuple(topological_order)
        self.actionable_ids: FrozenSet[str] = actionable_ids or frozenset()

        self._slots: Dict[str, _MetricSlot] = {name: _MetricSlot() for name in MetricName.ALL}
        self._cycles: Tuple[Tuple[str, ...], ...] = ()
        self._cycles_truncated = False
        self._articulation: FrozenSet[str] = frozenset()
        self._status: Mapping[str, MetricStatus] = MappingProxyType(
            {name: MetricStatus(MetricState.PENDING) for name in MetricName.STATUS_KEYS}
        )

        self._write_lock = threading.Lock()
        self._phase2_done = threading.Event()
        self._phase2_callbacks: List[Phase2Callback] = []
        self._phase2_started_at: Optional[float] = None
        self.phase2_elapsed_s: float = 0.0

    # ------------------------------------------------------------------
    # Readers (never block, never lock)
    # ------------------------------------------------------------------

    def get(self, metric: str, issue_id: str) -> float:
        """Best available value of a metric for an issue (0.0 if unknown)."""
        slot = self._slots.get(metric)
        if slot is None:
            return 0.0
        values, _ = slot.data
        return values.get(issue_id, 0.0)

    def get_rank(self, metric: str, issue_id: str) -> int:
        """1-indexed rank (1 = most important), or 0 if not ranked yet."""
        slot = self._slots.get(metric)
        if slot is None:
            return 0
        _, ranks = slot.data
        return ranks.get(issue_id, 0)

    def values(self, metric: str) -> Mapping[str, float]:
        """Read-only view of all values for a metric."""
        slot = self._slots.get(metric)
        return slot.data[0] if slot is not None else _EMPTY_VALUES

    def ranks(self, metric: str) -> Mapping[str, int]:
        """Read-only view of all ranks for a metric."""
        slot = self._slots.get(metric)
        return slot.data[1] if slot is not None else _EMPTY_RANKS

    def get_pagerank_score(self, issue_id: str) -> float:
        return self.get(MetricName.PAGERANK, issue_id)

    def get_betweenness_score(self, issue_id: str) -> float:
        return self.get(MetricName.BETWEENNESS, issue_id)

    def get_eigenvector_score(self, issue_id: str) -> float:
        return self.get(MetricName.EIGENVECTOR, issue_id)

    def get_hub_score(self, issue_id: str) -> float:
        return self.get(MetricName.HUB, issue_id)

    def get_authority_score(self, issue_id: str) -> float:
        return self.get(MetricName.AUTHORITY, issue_id)

    def get_critical_path_score(self, issue_id: str) -> float:
        return self.get(MetricName.CRITICAL_PATH, issue_id)

    def get_in_degree(self, issue_id: str) -> int:
        """Number of issues that depend on this one."""
        return int(self.get(MetricName.IN_DEGREE, issue_id))

    def get_out_degree(self, issue_id: str) -> int:
        """Number of issues this one depends on."""
        return int(self.get(MetricName.OUT_DEGREE, issue_id))

    def is_ready(self, issue_id: str) -> bool:
        return issue_id in self.actionable_ids

    def cycles(self) -> Tuple[Tuple[str, ...], ...]:
        return self._cycles

    def has_cycles(self) -> bool:
        return bool(self._cycles)

    @property
    def cycles_truncated(self) -> bool:
        return self._cycles_truncated

    def articulation_points(self) -> FrozenSet[str]:
        return self._articulation

    def is_articulation_point(self, issue_id: str) -> bool:
        return issue_id in self._articulation

    def get_core_number(self, issue_id: str) -> int:
        return int(self.get(MetricName.CORE_NUMBER, issue_id))

    def get_slack(self, issue_id: str) -> float:
        return self.get(MetricName.SLACK, issue_id)

    def metric_status(self) -> Mapping[str, MetricStatus]:
        return self._status

    def is_phase2_ready(self) -> bool:
        return self._phase2_done.is_set()

    def wait_for_phase2(self, timeout: Optional[float] = None) -> bool:
        """Block until phase 2 completes.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely.

        Returns:
            True if phase 2 is complete.
        """
        return self._phase2_done.wait(timeout)

    def add_phase2_callback(self, callback: Phase2Callback) -> None:
        """Register a callback for phase-2 completion.

        Runs on the phase-2 thread, or immediately on the caller's thread if
        phase 2 has already finished. Exceptions are logged, not raised.
        """
        with self._write_lock:
            if not self._phase2_done.is_set():
                self._phase2_callbacks.append(callback)
                return
        self._run_callback(callback)

    # ------------------------------------------------------------------
    # Writers (analyzer only)
    # ------------------------------------------------------------------

    def publish_metric(
        self,
        metric: str,
        values: Dict[str, float],
        ranks: Dict[str, int],
        status: Optional[MetricStatus] = None,
    ) -> None:
        """Atomically replace a metric's values and ranks."""
        pair = (MappingProxyType(dict(values)), MappingProxyType(dict(ranks)))
        with self._write_lock:
            self._slots[metric].data = pair
            if status is not None:
                self._set_status_locked(metric, status)

    def publish_cycles(
        self,
        cycles: Sequence[Sequence[str]],
        truncated: bool = False,
        status: Optional[MetricStatus] = None,
    ) -> None:
        with self._write_lock:
            self._cycles = tuple(tuple(c) for c in cycles)
            self._cycles_truncated = truncated
            if status is not None:
                self._set_status_locked(MetricName.CYCLES, status)

    def publish_articulation_points(
        self, issue_ids: Iterable[str], status: Optional[MetricStatus] = None
    ) -> None:
        with self._write_lock:
            self._articulation = frozenset(issue_ids)
            if status is not None:
                self._set_status_locked(MetricName.ARTICULATION, status)

    def set_status(self, metric: str, status: MetricStatus) -> None:
        with self._write_lock:
            self._set_status_locked(metric, status)

    def _set_status_locked(self, metric: str, status: MetricStatus) -> None:
        updated = dict(self._status)
        updated[metric] = status
        self._status = MappingProxyType(updated)

    def mark_phase2_started(self) -> None:
        self._phase2_started_at = time.monotonic()

    def mark_pending_failed(self, reason: str) -> None:
        """Mark every metric that has not finished as failed."""
        with self._write_lock:
            updated = dict(self._status)
            for name, status in updated.items():
                if status.state == MetricState.PENDING:
                    updated[name] = MetricStatus(MetricState.FAILED, reason=reason)
            self._status = MappingProxyType(updated)

    def mark_phase2_ready(self) -> None:
        """Signal phase-2 completion and run registered callbacks once."""
        with self._write_lock:
            if self._phase2_done.is_set():
                return
            if self._phase2_started_at is not None:
                self.phase2_elapsed_s = time.monotonic() - self._phase2_started_at
            self._phase2_done.set()
            callbacks = self._phase2_callbacks
            self._phase2_callbacks = []

        for callback in callbacks:
            self._run_callback(callback)

    def _run_callback(self, callback: Phase2Callback) -> None:
        try:
            callback(self)
        except Exception as e:
            # One failing listener must not prevent the others
            logger.error(f"Phase-2 callback failed: {e}", exc_info=True)
