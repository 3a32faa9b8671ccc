# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the command-line summary."""

import json
import logging

from beadview.cli import main, parse_args, resolve_issues_path
from beadview.view_spec import SortField

from conftest import make_issue, write_issues


def test_parse_args_defaults():
    """Test default argument values."""
    args = parse_args([])

    assert str(args.path) == "."
    assert args.view_status == []
    assert args.sort == ""
    assert args.timeout == 30.0


def test_parse_args_view_options():
    """Test repeatable view options."""
    args = parse_args(
        ["repo", "--view-status", "open", "--view-status", "blocked", "--sort", "priority"]
    )

    assert args.view_status == ["open", "blocked"]
    assert args.sort == SortField.PRIORITY


def test_resolve_issues_path(tmp_path):
    """Test lookup through the project root and .beads directory."""
    beads = tmp_path / ".beads"
    beads.mkdir()
    issues_file = beads / "issues.jsonl"
    issues_file.write_text("")

    assert resolve_issues_path(tmp_path) == issues_file
    assert resolve_issues_path(beads) == issues_file
    assert resolve_issues_path(issues_file) == issues_file
    assert resolve_issues_path(tmp_path / "elsewhere") is None


def test_main_prints_summary(tmp_path, capsys, diamond_issues):
    """Test that main prints a JSON summary with phase-2 results."""
    beads = tmp_path / ".beads"
    beads.mkdir()
    write_issues(beads / "issues.jsonl", diamond_issues)

    exit_code = main([str(tmp_path), "--actionable", "--timeout", "10"])

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["issues"] == 4
    assert summary["view_issues"] == 1
    assert summary["view"] == "cli"
    assert summary["counts"]["ready"] == 1
    assert summary["phase2_ready"] is True
    assert summary["top_critical_path"][0] == "D"
    assert summary["cycles"] == []
    assert summary["articulation_points"] == []
    assert summary["metrics"]["slack"] == "computed"


def test_main_reports_missing_file(tmp_path):
    """Test the exit code when no issues file exists."""
    assert main([str(tmp_path)]) == 2


def test_main_writes_build_metrics(tmp_path, capsys):
    """Test that --log-dir writes a build metrics record."""
    issues_file = write_issues(tmp_path / "issues.jsonl", [make_issue("a")])
    log_dir = tmp_path / "logs"
    root = logging.getLogger()
    handlers = list(root.handlers)

    try:
        assert main([str(issues_file), "--log-dir", str(log_dir), "--timeout", "10"]) == 0
    finally:
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        for handler in handlers:
            if handler not in root.handlers:
                root.addHandler(handler)

    capsys.readouterr()
    lines = (log_dir / "build_metrics.jsonl").read_text().splitlines()
    record = json.loads(lines[-1])
    assert record["event"] == "snapshot_build"
    assert record["version"] == 1
