"""Tests for stigmergy.lib.validate module."""

import pytest

from stigmergy.lib.validate import ValidationError, collect_errors, validate


class TestValidate:
    """Test validate against the bundled schemas."""

    def test_valid_task(self):
        validate({"id": "T1", "title": "Write parser", "blocked_by": ["T0"]}, "task")

    def test_task_requires_id(self):
        with pytest.raises(ValidationError, match=r"\[task\]"):
            validate({"title": "No id"}, "task")

    def test_wrong_type_reports_path(self):
        with pytest.raises(ValidationError) as exc_info:
            validate({"id": "T1", "blocked_by": {"T0": True}}, "task")
        assert exc_info.value.path == "blocked_by"

    def test_epoch_task_refs_and_inline(self):
        validate({"epoch_id": "EPOCH-001", "tasks": ["T1", {"id": "T2"}]}, "epoch")

    def test_epoch_inline_task_needs_id(self):
        with pytest.raises(ValidationError):
            validate({"epoch_id": "EPOCH-001", "tasks": [{"title": "anonymous"}]}, "epoch")

    def test_unknown_schema(self):
        with pytest.raises(ValidationError, match="Schema file not found"):
            validate({}, "nonexistent")


class TestCollectErrors:
    """Test collect_errors function."""

    def test_no_errors(self):
        assert collect_errors({"task_id": "T1", "status": "complete"}, "worklog") == []

    def test_reports_every_error(self):
        errors = collect_errors({"task_id": ["T1"], "status": 3}, "worklog")
        assert len(errors) == 2
        assert errors[0].startswith("status:")
        assert errors[1].startswith("task_id:")
