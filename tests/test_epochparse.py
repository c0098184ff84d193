"""Tests for stigmergy.lib.epochparse module."""

from datetime import datetime, timezone

import pytest

from stigmergy.lib.epochparse import (
    EpochBlock,
    Prose,
    TaskBlock,
    epoch_number,
    format_scalar,
    normalize_priority,
    parse_document,
    parse_timestamp,
    remove_epoch,
    set_epoch_fields,
    set_task_fields,
)
from stigmergy.lib.types import ParseError, WarningSink


INLINE_DOC = """\
# Project ToDos

Some notes about the plan.

## EPOCH-001: Foundations

```yaml
epoch_id: EPOCH-001
title: Foundations
status: complete
priority: p1
tasks:
  - id: T1
    title: Set up repo
    status: complete
```

## EPOCH-002: Parser

```yaml
epoch_id: EPOCH-002
title: Parser
priority: p0
blocked_by: [EPOCH-001]
tasks:
  - id: T2
    title: Tokenizer
    status: complete
  - id: T3
    title: Grammar
    status: pending
    blocked_by: [T2]
```
"""

REF_DOC = """\
# ToDos

```yaml
id: EPOCH-003
title: References
tasks:
  - T-001 (parser)
  - T-002
---
id: T-001
title: Parser
status: pending
---
id: T-002
title: Printer
status: in_progress
claimed_by: agent-team/worker-1
claimed_at: 2026-10-18T08:00:00Z
---
id: T-009
title: Nobody lists me
```
"""

FLAT_DOC = """\
```yaml
id: T1
title: First
---
id: T2
title: Second
blocked_by: T1
```
"""


class TestRoundTrip:
    """Rendering a parsed document returns the source bytes."""

    @pytest.mark.parametrize("text", [INLINE_DOC, REF_DOC, FLAT_DOC, "", "just prose\n", "no trailing newline"])
    def test_identical(self, text):
        assert parse_document(text).render() == text

    def test_crlf_preserved(self):
        text = INLINE_DOC.replace("\n", "\r\n")
        doc = parse_document(text)
        assert doc.render() == text
        assert [e.epoch_id for e in doc.epochs] == ["EPOCH-001", "EPOCH-002"]

    def test_commented_fence_is_prose(self):
        text = "<!--\n```yaml\nepoch_id: EPOCH-XXX\n```\n-->\n" + INLINE_DOC
        doc = parse_document(text)
        assert doc.render() == text
        assert len(doc.epochs) == 2

    def test_template_ids_are_ignored(self):
        text = "```yaml\nepoch_id: EPOCH-NNN\ntitle: Template\ntasks: []\n```\n"
        doc = parse_document(text)
        assert doc.epochs == []
        assert all(isinstance(n, Prose) for n in doc.nodes)


class TestParseDocument:
    """Test the epoch/task graph built by parse_document."""

    def test_inline_epochs(self):
        doc = parse_document(INLINE_DOC)
        first, second = doc.epochs
        assert first.status == "complete"
        assert first.priority == "p1"
        assert second.status is None
        assert second.priority == "p0"
        assert second.blocked_by == ("EPOCH-001",)
        assert [t.id for t in second.tasks] == ["T2", "T3"]
        assert second.tasks[1].blocked_by == ("T2",)
        assert second.tasks[1].epoch_id == "EPOCH-002"

    def test_record_lines(self):
        doc = parse_document(INLINE_DOC)
        assert doc.get_epoch("EPOCH-001").line == 8
        assert doc.find_task("T3").line == 29

    def test_references(self):
        doc = parse_document(REF_DOC)
        epoch = doc.get_epoch("EPOCH-003")
        assert [t.id for t in epoch.tasks] == ["T-001", "T-002"]
        assert epoch.tasks[0].epoch_id == "EPOCH-003"
        claimed = epoch.tasks[1]
        assert claimed.claimed_by == "agent-team/worker-1"
        assert claimed.claimed_at == datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)

    def test_unreferenced_task_is_orphan(self):
        doc = parse_document(REF_DOC)
        assert [t.id for t in doc.orphan_tasks] == ["T-009"]
        assert doc.orphan_tasks[0].epoch_id is None

    def test_flat_tasks_get_synthetic_epoch(self):
        doc = parse_document(FLAT_DOC)
        assert len(doc.epochs) == 1
        epoch = doc.epochs[0]
        assert epoch.epoch_id == "FLAT-TASKS"
        assert epoch.flat is True
        assert [t.id for t in epoch.tasks] == ["T1", "T2"]
        assert epoch.tasks[1].blocked_by == ("T1",)
        assert doc.orphan_tasks == []

    def test_unresolved_reference_warns(self):
        text = "```yaml\nid: EPOCH-004\ntitle: Ghosts\ntasks:\n  - T-404\n```\n"
        doc = parse_document(text)
        assert doc.get_epoch("EPOCH-004").tasks == []
        assert [w.code for w in doc.warnings] == ["unresolved_task_ref"]

    def test_invalid_priority_warns(self):
        text = INLINE_DOC.replace("priority: p0", "priority: urgent")
        doc = parse_document(text)
        assert doc.get_epoch("EPOCH-002").priority == "p2"
        warning = next(w for w in doc.warnings if w.code == "invalid_priority")
        assert warning.subject == "EPOCH-002"

    def test_unknown_task_status_warns(self):
        text = INLINE_DOC.replace("status: pending", "status: someday")
        doc = parse_document(text)
        assert doc.find_task("T3").status == "pending"
        assert any(w.code == "unknown_status" for w in doc.warnings)

    def test_claim_without_timestamp_warns(self):
        text = INLINE_DOC.replace("    status: pending\n", "    status: in_progress\n    claimed_by: human:alice\n")
        doc = parse_document(text)
        task = doc.find_task("T3")
        assert task.claimed_by == "human:alice"
        assert task.claimed_at is None
        assert any(w.code == "claim_without_timestamp" for w in doc.warnings)

    def test_node_kinds(self):
        doc = parse_document(REF_DOC)
        assert sum(isinstance(n, EpochBlock) for n in doc.nodes) == 1
        assert sum(isinstance(n, TaskBlock) for n in doc.nodes) == 3
        assert [n.kind for n in doc.nodes if isinstance(n, Prose) and n.kind == "separator"] == ["separator"] * 3


class TestParseErrors:
    """Test malformed documents."""

    def test_unterminated_fence(self):
        with pytest.raises(ParseError, match="Unterminated") as exc_info:
            parse_document("# ToDos\n\n```yaml\nepoch_id: EPOCH-001\n")
        assert exc_info.value.line == 3

    def test_invalid_yaml_reports_document_line(self):
        text = "# ToDos\n\n```yaml\ntitle: a\n  bad: x\n```\n"
        with pytest.raises(ParseError, match="Invalid YAML") as exc_info:
            parse_document(text)
        assert exc_info.value.line == 5

    def test_duplicate_epoch(self):
        text = INLINE_DOC + "\n```yaml\nepoch_id: EPOCH-001\ntitle: Again\n```\n"
        with pytest.raises(ParseError, match="Duplicate epoch id EPOCH-001"):
            parse_document(text)

    def test_duplicate_task(self):
        text = INLINE_DOC + "\n```yaml\nepoch_id: EPOCH-005\ntitle: Again\ntasks:\n  - id: T2\n    title: Dup\n```\n"
        with pytest.raises(ParseError, match="Duplicate task id T2"):
            parse_document(text)

    def test_duplicates_are_warnings_when_not_strict(self):
        text = INLINE_DOC + "\n```yaml\nepoch_id: EPOCH-001\ntitle: Again\n```\n"
        doc = parse_document(text, strict=False)
        assert [e.epoch_id for e in doc.epochs] == ["EPOCH-001", "EPOCH-002"]
        assert any(w.code == "duplicate_id" for w in doc.warnings)

    def test_bad_claimed_at(self):
        text = INLINE_DOC.replace("    status: pending\n", "    claimed_by: a/b\n    claimed_at: yesterday\n")
        with pytest.raises(ParseError, match="Unparseable claimed_at"):
            parse_document(text)

    def test_schema_violation(self):
        text = "```yaml\nepoch_id: EPOCH-001\ntasks:\n  - title: anonymous\n```\n"
        with pytest.raises(ParseError, match="Invalid epoch record"):
            parse_document(text)


class TestScalars:
    """Test timestamp and scalar helpers."""

    def test_parse_timestamp_z_suffix(self):
        assert parse_timestamp("2026-10-18T12:30:00Z") == datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc)

    def test_parse_timestamp_naive_is_utc(self):
        assert parse_timestamp("2026-10-18T12:30:00").tzinfo == timezone.utc

    def test_parse_timestamp_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp("soon")

    @pytest.mark.parametrize("value,expected", [
        ("agent-team/worker-1", "agent-team/worker-1"),
        ("hello world", "hello world"),
        ("yes", '"yes"'),
        ("12", '"12"'),
        ("a: b", '"a: b"'),
        ("", '""'),
        (datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc), "2026-01-02T03:04:05Z"),
    ])
    def test_format_scalar(self, value, expected):
        assert format_scalar(value) == expected

    def test_epoch_number(self):
        assert epoch_number("EPOCH-012") == 12
        assert epoch_number("FLAT-TASKS") == 9999

    def test_normalize_priority(self):
        sink = WarningSink()
        assert normalize_priority("P1", "EPOCH-001", sink) == "p1"
        assert normalize_priority(None, "EPOCH-001", sink) == "p2"
        assert sink.items == []
        assert normalize_priority(1, "EPOCH-001", sink) == "p2"
        assert [w.code for w in sink.items] == ["invalid_priority"]


class TestSetTaskFields:
    """Test surgical field rewrites."""

    def test_rewrites_only_task_lines(self):
        doc = parse_document(INLINE_DOC)
        stamp = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
        updated = set_task_fields(doc, "T3", {
            "status": "in_progress",
            "claimed_by": "agent-team/worker-1",
            "claimed_at": stamp,
        })
        expected = INLINE_DOC.replace(
            "    status: pending\n",
            "    status: in_progress\n"
            "    claimed_by: agent-team/worker-1\n"
            "    claimed_at: 2026-10-18T09:00:00Z\n",
        )
        assert updated.render() == expected
        task = updated.find_task("T3")
        assert task.status == "in_progress"
        assert task.claimed_at == stamp

    def test_none_removes_field(self):
        text = INLINE_DOC.replace("    status: pending\n",
                                  "    status: in_progress\n    claimed_by: a/b\n    claimed_at: 2026-10-18T09:00:00Z\n")
        doc = parse_document(text)
        updated = set_task_fields(doc, "T3", {"status": "pending", "claimed_by": None, "claimed_at": None})
        assert updated.render() == INLINE_DOC

    def test_standalone_task(self):
        doc = parse_document(REF_DOC)
        updated = set_task_fields(doc, "T-001", {"status": "complete", "completed_date": "2026-10-18"})
        text = updated.render()
        assert "id: T-001\ntitle: Parser\nstatus: complete\ncompleted_date: 2026-10-18\n---\n" in text
        assert updated.find_task("T-001").status == "complete"

    def test_crlf_line_endings_kept(self):
        text = INLINE_DOC.replace("\n", "\r\n")
        updated = set_task_fields(parse_document(text), "T3", {"status": "complete"})
        assert updated.render() == text.replace("    status: pending\r\n", "    status: complete\r\n")

    def test_missing_task(self):
        with pytest.raises(KeyError):
            set_task_fields(parse_document(INLINE_DOC), "T99", {"status": "complete"})

    def test_flow_list_cannot_be_edited(self):
        text = "```yaml\nepoch_id: EPOCH-001\ntitle: Flow\ntasks: [{id: T1, title: One}]\n```\n"
        doc = parse_document(text)
        assert doc.find_task("T1") is not None
        with pytest.raises(ParseError, match="block list"):
            set_task_fields(doc, "T1", {"status": "complete"})


class TestSetEpochFields:
    """Test set_epoch_fields function."""

    def test_inserts_before_tasks(self):
        doc = parse_document(INLINE_DOC)
        updated = set_epoch_fields(doc, "EPOCH-002", {"status": "complete", "completed_date": "2026-10-18"})
        assert "blocked_by: [EPOCH-001]\nstatus: complete\ncompleted_date: 2026-10-18\ntasks:\n" in updated.render()
        assert updated.get_epoch("EPOCH-002").status == "complete"

    def test_rewrites_existing_status(self):
        doc = parse_document(INLINE_DOC)
        updated = set_epoch_fields(doc, "EPOCH-001", {"status": "in_progress"})
        assert updated.render() == INLINE_DOC.replace("status: complete\npriority", "status: in_progress\npriority")

    def test_missing_epoch(self):
        with pytest.raises(KeyError):
            set_epoch_fields(parse_document(INLINE_DOC), "EPOCH-404", {"status": "complete"})


class TestRemoveEpoch:
    """Test remove_epoch function."""

    def test_removes_fence_and_heading(self):
        doc = parse_document(INLINE_DOC)
        updated, removed = remove_epoch(doc, "EPOCH-001")
        text = updated.render()
        assert "## EPOCH-001" not in text
        assert "epoch_id: EPOCH-001" not in text
        assert "Some notes about the plan." in text
        assert "## EPOCH-002: Parser" in text
        assert [e.epoch_id for e in updated.epochs] == ["EPOCH-002"]
        assert removed.epoch_text.startswith("epoch_id: EPOCH-001\n")
        assert removed.task_texts == []

    def test_removes_referenced_task_records(self):
        doc = parse_document(REF_DOC)
        updated, removed = remove_epoch(doc, "EPOCH-003")
        assert len(removed.task_texts) == 2
        assert removed.task_texts[0].startswith("id: T-001\n")
        text = updated.render()
        assert "id: T-001" not in text
        assert "id: T-002" not in text
        # The unreferenced record keeps its fence
        assert text == "# ToDos\n\n```yaml\nid: T-009\ntitle: Nobody lists me\n```\n"

    def test_missing_epoch(self):
        with pytest.raises(KeyError):
            remove_epoch(parse_document(INLINE_DOC), "EPOCH-404")
