# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for integration tests.

Provides a tracker directory with a small issues file and helpers for
rewriting it the way the tracker does (write to a temp file, then rename).
"""

import json
import os
import time
from pathlib import Path
from typing import Callable, Iterable, List

import pytest

from beadview.models import Issue

from conftest import make_issue


def write_issues_atomic(path: Path, issues: Iterable[Issue]) -> None:
    """Replace the issues file atomically."""
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        for issue in issues:
            f.write(json.dumps(issue.to_dict()) + "\n")
    os.replace(tmp, path)


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def sample_issues() -> List[Issue]:
    """An epic with three tasks; t2 and t3 wait on t1, one bug is closed."""
    return [
        make_issue("bv-epic", issue_type="epic", priority=1, created_offset=0),
        make_issue("bv-t1", parents=["bv-epic"], priority=1, created_offset=1),
        make_issue("bv-t2", parents=["bv-epic"], blocked_by=["bv-t1"], created_offset=2),
        make_issue("bv-t3", parents=["bv-epic"], blocked_by=["bv-t1"], created_offset=3),
        make_issue("bv-bug", status="closed", issue_type="bug", created_offset=4),
    ]


@pytest.fixture
def beads_dir(tmp_path: Path, sample_issues: List[Issue]) -> Path:
    """A tracker directory with .beads/issues.jsonl.

    Returns:
        Path to the .beads directory
    """
    directory = tmp_path / "project" / ".beads"
    directory.mkdir(parents=True)
    write_issues_atomic(directory / "issues.jsonl", sample_issues)
    return directory
