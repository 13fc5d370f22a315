"""Tests for layered configuration."""

import json
from pathlib import Path

import pytest

from awt.config import ConfigError, ConfigManager, Settings, generate_project_id


def write_config(path: Path, values: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(values))
    return path


@pytest.fixture
def config_files(tmp_path):
    return {
        "system": tmp_path / "etc" / "awt" / "config.json",
        "user": tmp_path / "user" / "awt" / "config.json",
        "common": tmp_path / "repo.git",
    }


def make_manager(files) -> ConfigManager:
    return ConfigManager(files["common"], system_config=files["system"], user_config=files["user"])


@pytest.mark.unit
class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.default_agent == "unknown"
        assert settings.branch_prefix == "awt"
        assert settings.worktree_dir == ".awt/wt"
        assert settings.remote_name == "origin"
        assert settings.lock_timeout == 30
        assert settings.rebase_default is True
        assert settings.auto_push is False

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            Settings(lock_timeout=0)
        with pytest.raises(ValueError):
            Settings(log_level="LOUD")

    def test_constructor_arguments_beat_environment(self, monkeypatch):
        monkeypatch.setenv("AWT_LOCK_TIMEOUT", "30")
        assert Settings(lock_timeout=2.0).lock_timeout == 2.0
        assert Settings().lock_timeout == 30

    def test_worktree_path_in_repo(self, tmp_path):
        settings = Settings()
        assert settings.worktree_path_for(tmp_path, "T1") == tmp_path / ".awt" / "wt" / "T1"

    def test_worktree_path_global(self, tmp_path):
        settings = Settings(global_worktree_dir=str(tmp_path / "global"))
        path = settings.worktree_path_for(tmp_path / "My Repo", "T1")
        assert path.parent.parent == tmp_path / "global"
        assert path.name == "T1"
        assert path.parent.name == generate_project_id(tmp_path / "My Repo")

    def test_project_id(self, tmp_path):
        project_id = generate_project_id(tmp_path / "My Repo")
        name, digest = project_id.rsplit("-", 1)
        assert name == "my-repo"
        assert len(digest) == 8
        assert generate_project_id(tmp_path / "My Repo") == project_id
        assert generate_project_id(tmp_path / "other" / "My Repo") != project_id


@pytest.mark.unit
class TestConfigManager:
    def test_no_files_gives_defaults(self, config_files):
        settings = make_manager(config_files).load_config()
        assert settings == Settings()

    def test_precedence(self, config_files, monkeypatch):
        write_config(config_files["system"], {"default_agent": "system", "branch_prefix": "sys", "remote_name": "upstream"})
        write_config(config_files["user"], {"default_agent": "user", "branch_prefix": "usr"})
        write_config(config_files["common"] / "awt" / "config.json", {"default_agent": "repo"})
        monkeypatch.setenv("AWT_BRANCH_PREFIX", "env")

        settings = make_manager(config_files).load_config()
        assert settings.default_agent == "repo"
        assert settings.branch_prefix == "env"
        assert settings.remote_name == "upstream"

    def test_env_bool_and_number(self, config_files, monkeypatch):
        monkeypatch.setenv("AWT_AUTO_PUSH", "true")
        monkeypatch.setenv("AWT_LOCK_TIMEOUT", "5")
        settings = make_manager(config_files).load_config()
        assert settings.auto_push is True
        assert settings.lock_timeout == 5

    def test_invalid_json(self, config_files):
        config_files["user"].parent.mkdir(parents=True)
        config_files["user"].write_text("{oops")
        with pytest.raises(ConfigError):
            make_manager(config_files).load_config()

    def test_invalid_value(self, config_files):
        write_config(config_files["user"], {"lock_timeout": -1})
        with pytest.raises(ConfigError):
            make_manager(config_files).load_config()

    def test_invalid_env_value(self, config_files, monkeypatch):
        monkeypatch.setenv("AWT_LOCK_TIMEOUT", "-1")
        with pytest.raises(ConfigError):
            make_manager(config_files).load_config()

    def test_reload(self, config_files):
        manager = make_manager(config_files)
        assert manager.get_config().default_agent == "unknown"
        write_config(config_files["user"], {"default_agent": "later"})
        assert manager.get_config().default_agent == "unknown"
        assert manager.reload_config().default_agent == "later"
