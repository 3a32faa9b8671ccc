# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Messages sent from the background worker to the UI thread."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .analysis.graph_stats import GraphStats
from .analysis.insights import Insights
from .snapshot import DataSnapshot


class BuildPhase:
    """Step of a worker build, recorded on failures."""

    LOAD = "load"
    BUILD = "build"
    INTERNAL = "internal"


@dataclass(frozen=True)
class WorkerError:
    """A failed build attempt.

    Attributes:
        phase: BuildPhase where the failure happened.
        cause: The exception raised.
        time: When the failure was recorded (UTC).
        retries: Attempt number within the current failure streak.
    """

    phase: str
    cause: BaseException
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retries: int = 0

    def __str__(self) -> str:
        return f"{self.phase}: {self.cause}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "cause": f"{type(self.cause).__name__}: {self.cause}",
            "time": self.time.isoformat(),
            "retries": self.retries,
        }


@dataclass(frozen=True)
class SnapshotReady:
    """A new snapshot. version increases with every snapshot sent."""

    snapshot: DataSnapshot
    version: int


@dataclass(frozen=True)
class SnapshotError:
    """A build attempt failed; recoverable is False once retries are exhausted."""

    error: WorkerError
    recoverable: bool
    retry_count: int = 0


@dataclass(frozen=True)
class Phase2Ready:
    """Phase-2 metrics finished for the snapshot with this version."""

    stats: GraphStats
    insights: Optional[Insights]
    data_hash: str
    version: int


WorkerMessage = Union[SnapshotReady, SnapshotError, Phase2Ready]
