"""Tests for configuration loading."""

from pathlib import Path

import pytest

from worktree_orchestrator.config import Config, load_config, save_config


class TestConfig:
    """Test suite for Config defaults and TOML round trips."""

    def test_defaults(self):
        config = Config()

        assert config.worktree.directory_name == ".worktrees"
        assert config.worktree.metadata_filename == ".worktree-metadata.json"
        assert config.worktree.branch_prefix == "task/"
        assert config.worktree.default_branch_candidates == ["main", "master", "develop"]
        assert config.worktree.delete_retry_delays == [0.1, 0.2, 0.5, 1.0, 2.0]
        assert config.git.binary == "git"
        assert "node_modules" in config.diff.ignored_directories
        assert config.diff.whole_file_threshold == 1024 * 1024

    def test_load_explicit_path(self, temp_directory: Path):
        config_file = temp_directory / "config.toml"
        config_file.write_text(
            '[worktree]\nbranch_prefix = "agent/"\n\n[git]\ntimeout_seconds = 30\n'
        )

        config = load_config(str(config_file))

        assert config.worktree.branch_prefix == "agent/"
        assert config.git.timeout_seconds == 30
        assert config.worktree.directory_name == ".worktrees"

    def test_invalid_file_falls_back_to_defaults(
        self, temp_directory: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.chdir(temp_directory)
        monkeypatch.setenv("HOME", str(temp_directory))
        config_file = temp_directory / "broken.toml"
        config_file.write_text("this is [not toml")

        assert load_config(str(config_file)) == Config()

    def test_invalid_values_fall_back_to_defaults(
        self, temp_directory: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.chdir(temp_directory)
        monkeypatch.setenv("HOME", str(temp_directory))
        config_file = temp_directory / "bad.toml"
        config_file.write_text("[worktree]\nmax_slug_length = 0\n")

        assert load_config(str(config_file)) == Config()

    def test_worktreerc_in_cwd(self, temp_directory: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(temp_directory)
        (temp_directory / ".worktreerc").write_text('[worktree]\ndirectory_name = ".tasks"\n')

        assert load_config().worktree.directory_name == ".tasks"

    def test_save_and_load(self, temp_directory: Path):
        config = Config()
        config.worktree.branch_prefix = "job/"
        path = temp_directory / "nested" / "config.toml"

        save_config(config, path)

        assert load_config(str(path)).worktree.branch_prefix == "job/"

    def test_tree_diff_settings_prune_worktrees_directory(self):
        config = Config()
        config.worktree.directory_name = "agent-worktrees"

        settings = config.tree_diff_settings()

        assert "agent-worktrees" in settings.ignored_directories
        assert "agent-worktrees" not in config.diff.ignored_directories

    def test_tree_diff_settings_unchanged_for_default_directory(self):
        config = Config()

        assert config.tree_diff_settings() is config.diff
