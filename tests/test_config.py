"""Tests for agentspace.core.config module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from agentspace.core.config import (
    ORPHAN_CLEANUP_ENV_VAR,
    AgentspaceConfig,
    AutoMergeSettings,
    WorkspaceSettings,
    load_config,
    orphan_cleanup_disabled,
)


class TestDefaults:
    """Every field has a usable default."""

    def test_workspace_defaults(self):
        settings = WorkspaceSettings()
        assert settings.base_dir.parts[-2:] == ("agentspace", "worktrees")
        assert settings.disable_orphan_cleanup is False

    def test_auto_merge_defaults(self):
        settings = AutoMergeSettings()
        assert settings.remote == "origin"
        assert settings.favor_incoming is True

    def test_root_defaults(self):
        config = AgentspaceConfig()
        assert config.logging.level == "INFO"
        assert config.logging.format == "console"
        assert config.config_file is None

    def test_base_dir_expands_user(self):
        settings = WorkspaceSettings(base_dir=Path("~/worktrees"))
        assert "~" not in str(settings.base_dir)

    def test_empty_remote_rejected(self):
        with pytest.raises(ValidationError):
            AutoMergeSettings(remote="")


class TestYamlLoading:
    """Tests for from_yaml / from_yaml_string / load_config."""

    def test_from_yaml_string(self):
        config = AgentspaceConfig.from_yaml_string(
            """
workspace:
  base_dir: /srv/worktrees
  disable_orphan_cleanup: true
auto_merge:
  remote: upstream
  favor_incoming: false
logging:
  level: DEBUG
  format: json
"""
        )
        assert config.workspace.base_dir == Path("/srv/worktrees")
        assert config.workspace.disable_orphan_cleanup is True
        assert config.auto_merge.remote == "upstream"
        assert config.auto_merge.favor_incoming is False
        assert config.logging.level == "DEBUG"

    def test_empty_string(self):
        assert AgentspaceConfig.from_yaml_string("") == AgentspaceConfig()

    def test_invalid_level(self):
        with pytest.raises(ValidationError):
            AgentspaceConfig.from_yaml_string("logging:\n  level: LOUD\n")

    def test_from_yaml_records_file(self, tmp_path: Path):
        config_file = tmp_path / "agentspace.yaml"
        config_file.write_text(f"workspace:\n  base_dir: {tmp_path / 'wt'}\n")

        config = AgentspaceConfig.from_yaml(config_file)

        assert config.config_file == config_file.resolve()
        assert config.workspace.base_dir == tmp_path / "wt"

    def test_load_config_missing_file(self, tmp_path: Path):
        assert load_config(tmp_path / "absent.yaml") == AgentspaceConfig()
        assert load_config(None) == AgentspaceConfig()


class TestOrphanCleanupSwitch:
    """The sweep can be disabled by setting or by environment."""

    def test_enabled_by_default(self):
        assert not orphan_cleanup_disabled(WorkspaceSettings())

    def test_setting(self):
        assert orphan_cleanup_disabled(WorkspaceSettings(disable_orphan_cleanup=True))

    def test_env_var_read_each_call(self, monkeypatch: pytest.MonkeyPatch):
        settings = WorkspaceSettings()
        monkeypatch.setenv(ORPHAN_CLEANUP_ENV_VAR, "")
        assert orphan_cleanup_disabled(settings)
        monkeypatch.delenv(ORPHAN_CLEANUP_ENV_VAR)
        assert not orphan_cleanup_disabled(settings)
