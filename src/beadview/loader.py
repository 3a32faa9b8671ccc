# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""JSONL issue loader.

Reads the tracker's issues file (one JSON object per line) into Issue records.

Error handling:
- Malformed JSON lines and invalid records are skipped and reported as warnings
- A UTF-8 byte order mark on the first line is stripped
- Duplicate ids: the last occurrence wins (append-only files rewrite issues)
- File-level I/O failures propagate as OSError so the worker can retry
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from .models import Issue, IssueValidationError

logger = logging.getLogger(__name__)

IssueFilter = Callable[[Issue], bool]

PREFERRED_FILENAMES = ("issues.jsonl", "beads.jsonl", "beads.base.jsonl")

# Files next to the issues file that must never be treated as the source
IGNORED_MARKERS = (".backup", ".orig", ".merge")
IGNORED_NAMES = ("deletions.jsonl",)
IGNORED_PREFIXES = ("beads.left", "beads.right")


@dataclass
class LoadResult:
    """Outcome of loading an issues file.

    Attributes:
        issues: Parsed issues in file order (after duplicate resolution).
        warnings: Human-readable messages for skipped lines.
        source_line_count: Non-blank lines seen, before filtering.
    """

    issues: List[Issue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    source_line_count: int = 0

    @property
    def warning_count(self) -> int:
        return len(self.warnings)


def parse_issues(lines: Iterable[str], issue_filter: Optional[IssueFilter] = None) -> LoadResult:
    """Parse JSONL lines into issues.

    Args:
        lines: Iterable of text lines.
        issue_filter: Optional predicate; issues for which it returns False are
            dropped after parsing (used for open-only loading).

    Returns:
        LoadResult with issues and warnings.
    """
    result = LoadResult()
    by_id: Dict[str, Issue] = {}

    for line_num, raw in enumerate(lines, 1):
        line = raw
        if line_num == 1 and line.startswith("\ufeff"):
            line = line[1:]
        line = line.strip()
        if not line:
            continue

        result.source_line_count += 1

        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            result.warnings.append(f"line {line_num}: malformed JSON: {e.msg}")
            continue

        try:
            issue = Issue.from_dict(data)
        except (IssueValidationError, TypeError, ValueError) as e:
            result.warnings.append(f"line {line_num}: invalid issue: {e}")
            continue

        if issue.id in by_id:
            result.warnings.append(f"line {line_num}: duplicate id {issue.id}, keeping last")
            del by_id[issue.id]
        by_id[issue.id] = issue

    for issue in by_id.values():
        if issue_filter is None or issue_filter(issue):
            result.issues.append(issue)

    if result.warnings:
        logger.warning(
            f"Skipped {len(result.warnings)} of {result.source_line_count} issue lines"
        )
    return result


def load_issues_from_file(
    path: Union[str, Path], issue_filter: Optional[IssueFilter] = None
) -> LoadResult:
    """Load issues from a JSONL file.

    Args:
        path: Path to the issues file.
        issue_filter: Optional predicate applied to each parsed issue.

    Returns:
        LoadResult.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        result = parse_issues(f, issue_filter=issue_filter)
    logger.debug(f"Loaded {len(result.issues)} issues from {path}")
    return result


def count_jsonl_lines(path: Union[str, Path]) -> int:
    """Count non-blank lines without parsing them.

    Used to estimate the dataset tier before a full load.

    Raises:
        OSError: If the file cannot be read.
    """
    count = 0
    with open(path, "rb") as f:
        for raw in f:
            if raw.strip():
                count += 1
    return count


def is_ignored_issues_file(name: str) -> bool:
    if name in IGNORED_NAMES:
        return True
    if any(marker in name for marker in IGNORED_MARKERS):
        return True
    return any(name.startswith(prefix) for prefix in IGNORED_PREFIXES)


def find_issues_file(beads_dir: Union[str, Path]) -> Optional[Path]:
    """Locate the issues file inside a tracker directory.

    Args:
        beads_dir: Directory holding the JSONL files.

    Returns:
        Path of the preferred file, the first remaining candidate in name
        order, or None if there is none.
    """
    beads_dir = Path(beads_dir)
    if not beads_dir.is_dir():
        return None

    for name in PREFERRED_FILENAMES:
        candidate = beads_dir / name
        if candidate.is_file():
            return candidate

    for candidate in sorted(beads_dir.glob("*.jsonl")):
        if candidate.is_file() and not is_ignored_issues_file(candidate.name):
            return candidate
    return None
