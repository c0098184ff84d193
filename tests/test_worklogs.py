"""Tests for stigmergy.lib.worklogs module."""

from pathlib import Path

from stigmergy.lib.types import WarningSink
from stigmergy.lib.worklogs import WorkLog, list_work_logs, read_work_log, stale_reason


class TestReadWorkLog:
    """Test read_work_log function."""

    def test_front_matter(self, tmp_path):
        path = tmp_path / "task-EPOCH-007-T3.md"
        path.write_text("---\ntask_id: T3\nstatus: complete\nhandoff_status: ready\n---\n\n# Notes\n")
        log = read_work_log(path)
        assert log.task_id == "T3"
        assert log.status == "complete"
        assert log.handoff_status == "ready"
        assert log.filename == "task-EPOCH-007-T3.md"
        assert log.epoch_id == "EPOCH-007"

    def test_no_front_matter(self, tmp_path):
        path = tmp_path / "scratch.md"
        path.write_text("# Just notes\n")
        log = read_work_log(path)
        assert log.task_id is None
        assert log.epoch_id is None

    def test_malformed_front_matter_warns(self, tmp_path):
        path = tmp_path / "broken.md"
        path.write_text("---\ntask_id: [T3\n---\n")
        sink = WarningSink()
        log = read_work_log(path, sink)
        assert log.task_id is None
        assert [w.code for w in sink.items] == ["malformed_work_log"]

    def test_schema_violation_warns(self, tmp_path):
        path = tmp_path / "odd.md"
        path.write_text("---\ntask_id: T3\nstatus: [a, b]\n---\n")
        sink = WarningSink()
        read_work_log(path, sink)
        assert [w.code for w in sink.items] == ["malformed_work_log"]

    def test_unreadable_file_warns(self, tmp_path):
        path = tmp_path / "binary.md"
        path.write_bytes(b"\xff\xfe\x00garbage")
        sink = WarningSink()
        log = read_work_log(path, sink)
        assert log.task_id is None
        assert [w.code for w in sink.items] == ["unreadable_work_log"]


class TestListWorkLogs:
    """Test list_work_logs function."""

    def test_sorted_markdown_only(self, tmp_path):
        (tmp_path / "b.md").write_text("b\n")
        (tmp_path / "a.md").write_text("a\n")
        (tmp_path / "notes.txt").write_text("skip\n")
        (tmp_path / "archive").mkdir()
        assert [log.filename for log in list_work_logs(tmp_path)] == ["a.md", "b.md"]

    def test_missing_directory(self, tmp_path):
        assert list_work_logs(tmp_path / "nope") == []


class TestStaleReason:
    """Test stale_reason function."""

    def test_task_completed(self):
        log = WorkLog(path=Path("task-EPOCH-002-T3.md"), task_id="T3")
        assert stale_reason(log, {"T3"}, {"EPOCH-002"}) == "task_completed"

    def test_epoch_completed(self):
        log = WorkLog(path=Path("task-EPOCH-002-T3.md"), task_id="T3")
        assert stale_reason(log, set(), {"EPOCH-002"}) == "epoch_completed"

    def test_status_complete(self):
        log = WorkLog(path=Path("session.md"), status="Done")
        assert stale_reason(log, set(), set()) == "status_complete"

    def test_active_log(self):
        log = WorkLog(path=Path("task-EPOCH-002-T4.md"), task_id="T4", status="in_progress")
        assert stale_reason(log, {"T3"}, {"EPOCH-001"}) is None
