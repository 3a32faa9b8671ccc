# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Snapshot computation pipeline for an issue tracker TUI."""

from .analysis import Analyzer, GraphStats, IssueDiff, compute_issue_diff
from .config import Config, ConfigurationError
from .consumer import Freshness, SnapshotConsumer
from .file_watcher import FileChangeEvent, FileWatcher
from .loader import LoadResult, find_issues_file, load_issues_from_file, parse_issues
from .messages import Phase2Ready, SnapshotError, SnapshotReady, WorkerError
from .models import Dependency, DependencyType, Issue, IssueStatus, IssueType
from .snapshot import (
    DatasetTier,
    DataSnapshot,
    ListItem,
    SnapshotBuildConfig,
    SnapshotBuildError,
    SnapshotBuilder,
    SnapshotPolicy,
    build_snapshot,
    dataset_tier_for_issue_count,
)
from .view_spec import ViewSpec
from .worker import BackgroundWorker, WorkerHealth, WorkerState, WorkerStats

__version__ = "0.1.0"

__all__ = [
    "Analyzer",
    "GraphStats",
    "IssueDiff",
    "compute_issue_diff",
    "Config",
    "ConfigurationError",
    "Freshness",
    "SnapshotConsumer",
    "FileChangeEvent",
    "FileWatcher",
    "LoadResult",
    "find_issues_file",
    "load_issues_from_file",
    "parse_issues",
    "Phase2Ready",
    "SnapshotError",
    "SnapshotReady",
    "WorkerError",
    "Dependency",
    "DependencyType",
    "Issue",
    "IssueStatus",
    "IssueType",
    "DatasetTier",
    "DataSnapshot",
    "ListItem",
    "SnapshotBuildConfig",
    "SnapshotBuildError",
    "SnapshotBuilder",
    "SnapshotPolicy",
    "build_snapshot",
    "dataset_tier_for_issue_count",
    "ViewSpec",
    "BackgroundWorker",
    "WorkerHealth",
    "WorkerState",
    "WorkerStats",
]
