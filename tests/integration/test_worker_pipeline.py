# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""End-to-end tests: file watcher -> background worker -> consumer."""

import json
import time
from dataclasses import replace

import pytest

from beadview.config import Config
from beadview.consumer import SnapshotConsumer
from beadview.file_watcher import FileWatcher
from beadview.messages import SnapshotError
from beadview.models import IssueStatus
from beadview.worker import BackgroundWorker, WorkerState

from conftest import make_issue
from integration.conftest import wait_for, write_issues_atomic

pytestmark = pytest.mark.integration

FAST_CONFIG = {
    "debounce_ms": 50,
    "retry_backoff_base_ms": 5,
    "retry_backoff_max_ms": 20,
    "heartbeat_interval_s": 0.05,
}


class Pipeline:
    """Wires a watcher, worker and consumer over one tracker directory."""

    def __init__(self, beads_dir):
        self.config = Config.from_dict(FAST_CONFIG)
        self.issues_path = beads_dir / "issues.jsonl"
        self.worker = BackgroundWorker(self.issues_path, config=self.config)
        self.watcher = FileWatcher(str(beads_dir), debounce_ms=self.config.debounce_ms)
        self.watcher.register_callback(self.worker.on_file_change)
        self.consumer = SnapshotConsumer(self.config)
        self.errors = []

    def start(self):
        self.worker.start()
        self.watcher.start()

    def stop(self):
        self.watcher.stop()
        self.worker.stop()

    def pump(self):
        """Deliver queued worker messages to the consumer, like a UI tick."""
        for message in self.worker.get_messages():
            if isinstance(message, SnapshotError):
                self.errors.append(message)
            self.consumer.handle_message(message)
        return self.consumer

    def wait_for_version(self, version, timeout=10.0):
        return wait_for(lambda: self.pump().version >= version, timeout)

    def wait_for_error(self, timeout=10.0):
        def seen():
            self.pump()
            return bool(self.errors)

        return wait_for(seen, timeout)


@pytest.fixture
def pipeline(beads_dir):
    """A running pipeline, stopped after the test."""
    running = Pipeline(beads_dir)
    running.start()
    yield running
    running.stop()


class TestWorkerPipeline:
    """Tests for the full reload path."""

    def test_initial_snapshot(self, pipeline):
        """Test that the first snapshot reaches the consumer with correct counts."""
        assert pipeline.wait_for_version(1)
        snapshot = pipeline.consumer.snapshot

        assert len(snapshot.issues) == 5
        assert snapshot.issues[0].id == "bv-bug"
        assert (snapshot.count_open, snapshot.count_ready, snapshot.count_closed) == (4, 1, 1)
        assert pipeline.consumer.tree().root_ids() == ["bv-epic", "bv-bug"]

    def test_phase2_reaches_consumer(self, pipeline):
        """Test that phase-2 metrics end up in the consumer's views."""
        assert pipeline.wait_for_version(1)
        assert wait_for(lambda: pipeline.pump().phase2_ready)

        items = {item.id: item for item in pipeline.consumer.list_items()}
        assert items["bv-epic"].impact > items["bv-t2"].impact
        assert pipeline.consumer.insights().phase2_ready

    def test_file_change_produces_new_version(self, pipeline, sample_issues):
        """Test that rewriting the issues file yields a diffed snapshot."""
        assert pipeline.wait_for_version(1)

        updated = [
            replace(issue, status=IssueStatus.CLOSED) if issue.id == "bv-t1" else issue
            for issue in sample_issues
        ]
        write_issues_atomic(pipeline.issues_path, updated)

        assert pipeline.wait_for_version(2)
        snapshot = pipeline.consumer.snapshot
        assert snapshot.issue_diff.modified == ("bv-t1",)
        assert snapshot.incremental_list_used
        assert snapshot.count_closed == 2

    def test_unchanged_rewrite_is_deduplicated(self, pipeline, sample_issues):
        """Test that rewriting identical content sends no new snapshot."""
        assert pipeline.wait_for_version(1)

        write_issues_atomic(pipeline.issues_path, sample_issues)

        assert wait_for(lambda: pipeline.worker.stats().deduplicated >= 1)
        assert pipeline.pump().version == 1

    def test_malformed_lines_are_reported(self, pipeline):
        """Test that bad lines are skipped and counted."""
        assert pipeline.wait_for_version(1)

        with open(pipeline.issues_path, "a", encoding="utf-8") as f:
            f.write("{broken\n")
            f.write(json.dumps(make_issue("bv-new").to_dict()) + "\n")

        assert pipeline.wait_for_version(2)
        snapshot = pipeline.consumer.snapshot
        assert snapshot.load_warning_count == 1
        assert snapshot.issue_diff.added == ("bv-new",)

    def test_recovers_after_missing_file(self, pipeline, sample_issues):
        """Test that a vanished file is reported and recovery is counted."""
        assert pipeline.wait_for_version(1)

        pipeline.issues_path.unlink()
        assert pipeline.wait_for_error()

        write_issues_atomic(pipeline.issues_path, sample_issues)

        assert wait_for(lambda: pipeline.worker.health().recovery_count >= 1)
        assert wait_for(lambda: pipeline.worker.state == WorkerState.IDLE)
        assert pipeline.worker.last_error() is None
        assert pipeline.errors[0].error.phase == "load"
        pipeline.consumer.check_liveness(pipeline.worker.health(), now=time.time())
        assert pipeline.consumer.consecutive_failures == 0
