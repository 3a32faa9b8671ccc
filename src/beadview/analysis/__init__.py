# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Graph analysis for the issue dependency graph."""

from .analyzer import Analyzer, analyze_phase1_only, build_dependency_graph
from .config import (
    AnalysisConfig,
    BetweennessMode,
    config_for_size,
    full_analysis_config,
    no_phase2_config,
)
from .diff import (
    IssueDiff,
    IssueDiffStats,
    IssueFingerprint,
    compute_data_hash,
    compute_issue_diff,
    compute_issue_fingerprint,
)
from .graph_stats import GraphStats, MetricName, MetricState, MetricStatus
from .insights import Insights, generate_insights
from .readiness import ReadinessCounts, count_readiness, is_ready
from .triage import TriageResult, compute_triage

__all__ = [
    "Analyzer",
    "analyze_phase1_only",
    "build_dependency_graph",
    "AnalysisConfig",
    "BetweennessMode",
    "config_for_size",
    "full_analysis_config",
    "no_phase2_config",
    "IssueDiff",
    "IssueDiffStats",
    "IssueFingerprint",
    "compute_data_hash",
    "compute_issue_diff",
    "compute_issue_fingerprint",
    "GraphStats",
    "MetricName",
    "MetricState",
    "MetricStatus",
    "Insights",
    "generate_insights",
    "ReadinessCounts",
    "count_readiness",
    "is_ready",
    "TriageResult",
    "compute_triage",
]
