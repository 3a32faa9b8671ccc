# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Command-line snapshot summary.

Runs the background worker once against an issues file, waits for phase-2
metrics and prints a JSON summary of the resulting snapshot to stdout.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analysis.insights import generate_insights
from .config import Config, ConfigurationError
from .loader import find_issues_file
from .logging_setup import get_metrics_logger, setup_console_logging, setup_logging
from .messages import SnapshotError, SnapshotReady
from .snapshot import DataSnapshot
from .view_spec import SortDirection, SortField, ViewSpec
from .worker import BackgroundWorker

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="beadview",
        description="Build an issue snapshot and print a JSON summary",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path("."),
        help="Issues file, .beads directory or project root. Default: current directory",
    )
    parser.add_argument(
        "--view-status",
        action="append",
        default=[],
        help="Only include issues with this status (repeatable)",
    )
    parser.add_argument("--view-label", action="append", default=[], help="Required label")
    parser.add_argument("--actionable", action="store_true", help="Only unblocked issues")
    parser.add_argument("--sort", choices=SortField.ALL, default="", help="Sort field")
    parser.add_argument("--desc", action="store_true", help="Sort descending")
    parser.add_argument("--config", type=Path, default=None, help="Path to .beadview.yml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level. Default: WARNING",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Write JSON logs and build metrics to this directory",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the snapshot and phase-2 metrics. Default: 30",
    )
    return parser.parse_args(argv)


def resolve_issues_path(path: Path) -> Optional[Path]:
    """Find the issues file for a file, tracker directory or project root."""
    if path.is_file():
        return path
    for candidate_dir in (path / ".beads", path):
        found = find_issues_file(candidate_dir)
        if found is not None:
            return found
    return None


def summarize_snapshot(snapshot: DataSnapshot, limit: int = 10) -> Dict[str, Any]:
    """JSON-serializable summary of a snapshot."""
    summary: Dict[str, Any] = {
        "issues": len(snapshot.issues),
        "view_issues": len(snapshot.view_issues),
        "view": snapshot.view_name,
        "tier": snapshot.dataset_tier,
        "counts": {
            "open": snapshot.count_open,
            "ready": snapshot.count_ready,
            "blocked": snapshot.count_blocked,
            "closed": snapshot.count_closed,
        },
        "warning": snapshot.large_dataset_warning,
        "loaded_open_only": snapshot.loaded_open_only,
        "truncated": snapshot.truncated_count,
        "load_warnings": snapshot.load_warning_count,
        "phase2_ready": snapshot.phase2_ready,
        "metrics": {
            name: status.state for name, status in sorted(snapshot.stats.metric_status().items())
        },
    }
    if snapshot.phase2_ready:
        insights = generate_insights(snapshot.stats, limit)
        summary["top_critical_path"] = insights.ids("keystones")
        summary["cycles"] = [list(cycle) for cycle in insights.cycles]
        summary["articulation_points"] = list(insights.articulation)
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Process exit code.
    """
    args = parse_args(argv)
    log_level = getattr(logging, args.log_level)
    metrics_logger = None
    if args.log_dir is not None:
        setup_logging(log_dir=args.log_dir, log_level=log_level)
        metrics_logger = get_metrics_logger(args.log_dir)
    else:
        setup_console_logging(log_level)

    issues_path = resolve_issues_path(args.path)
    if issues_path is None:
        logger.error(f"No issues file found under {args.path}")
        return 2

    try:
        config = Config(args.config) if args.config else Config.from_dict({})
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    view = None
    if args.view_status or args.view_label or args.actionable or args.sort:
        view = ViewSpec(
            name="cli",
            status_filter=tuple(args.view_status),
            label_filter=tuple(args.view_label),
            actionable_only=args.actionable,
            sort_field=args.sort,
            sort_direction=SortDirection.DESC if args.desc else SortDirection.ASC,
        )

    worker = BackgroundWorker(
        issues_path, config=config, view=view, metrics_logger=metrics_logger
    )
    worker.start()
    try:
        snapshot = None
        while snapshot is None:
            message = worker.poll_message(timeout=args.timeout)
            if message is None:
                logger.error(f"Timed out waiting for a snapshot of {issues_path}")
                return 1
            if isinstance(message, SnapshotReady):
                snapshot = message.snapshot
            elif isinstance(message, SnapshotError) and not message.recoverable:
                logger.error(f"Failed to build snapshot: {message.error}")
                return 1
        snapshot.stats.wait_for_phase2(timeout=args.timeout)
    finally:
        worker.stop()

    summary: Dict[str, Any] = {"path": str(issues_path)}
    summary.update(summarize_snapshot(snapshot, config.insights_limit))
    json.dump(summary, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0
