"""Tests for stigmergy.lib.config module."""

from pathlib import Path
from unittest.mock import patch

from stigmergy.lib.config import (
    DEFAULT_LOCK_TIMEOUT,
    load_config,
)
from stigmergy.lib.constants import DEFAULT_STALE_CLAIM_HOURS


class TestDefaults:
    """Test load_config with no settings."""

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_docs_layout(self, mock_load_env, monkeypatch):
        monkeypatch.delenv("TODOS_FILE", raising=False)
        monkeypatch.delenv("USER_STORIES_FILE", raising=False)
        mock_load_env.return_value = {}
        config = load_config(Path("/fake/project"))
        assert config.todos_path == Path("/fake/project/docs/ToDos.md")
        assert config.completed_path == Path("/fake/project/docs/CompletedTasks.md")
        assert config.stories_path == Path("/fake/project/docs/UserStories.md")
        assert config.work_logs_dir == Path("/fake/project/docs/work-logs")
        assert config.work_log_archive_dir == Path("/fake/project/docs/work-logs/archive")

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_numeric_defaults(self, mock_load_env):
        mock_load_env.return_value = {}
        config = load_config(Path("/fake/project"))
        assert config.stale_claim_hours == DEFAULT_STALE_CLAIM_HOURS == 24
        assert config.lock_timeout == DEFAULT_LOCK_TIMEOUT
        assert config.notify is False

    def test_missing_config_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TODOS_FILE", raising=False)
        config = load_config(tmp_path)
        assert config.todos_path == tmp_path / "docs" / "ToDos.md"


class TestOverrides:
    """Test values read from stigmergy.env and the environment."""

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_relative_and_absolute_paths(self, mock_load_env, monkeypatch):
        monkeypatch.delenv("TODOS_FILE", raising=False)
        mock_load_env.return_value = {
            "TODOS_PATH": "plan/todo.md",
            "COMPLETED_PATH": "/var/archive/done.md",
        }
        config = load_config(Path("/fake/project"))
        assert config.todos_path == Path("/fake/project/plan/todo.md")
        assert config.completed_path == Path("/var/archive/done.md")

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_integer_settings(self, mock_load_env):
        mock_load_env.return_value = {"STALE_CLAIM_HOURS": "6", "LOCK_TIMEOUT": "5", "NOTIFY": "true"}
        config = load_config(Path("/fake/project"))
        assert config.stale_claim_hours == 6
        assert config.lock_timeout == 5
        assert config.notify is True

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_invalid_integer_falls_back_with_warning(self, mock_load_env, caplog):
        mock_load_env.return_value = {"STALE_CLAIM_HOURS": "a day"}
        config = load_config(Path("/fake/project"))
        assert config.stale_claim_hours == 24
        assert "Invalid STALE_CLAIM_HOURS 'a day'" in caplog.text

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_non_positive_integer_falls_back(self, mock_load_env, caplog):
        mock_load_env.return_value = {"LOCK_TIMEOUT": "0"}
        config = load_config(Path("/fake/project"))
        assert config.lock_timeout == DEFAULT_LOCK_TIMEOUT
        assert "LOCK_TIMEOUT must be positive" in caplog.text

    @patch("stigmergy.lib.config.envparse.load_env")
    def test_environment_variables_win(self, mock_load_env, monkeypatch):
        mock_load_env.return_value = {"TODOS_PATH": "plan/todo.md"}
        monkeypatch.setenv("TODOS_FILE", "other/ToDos.md")
        monkeypatch.setenv("USER_STORIES_FILE", "/abs/stories.md")
        config = load_config(Path("/fake/project"))
        assert config.todos_path == Path("/fake/project/other/ToDos.md")
        assert config.stories_path == Path("/abs/stories.md")
