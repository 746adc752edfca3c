"""Tests for checklints.config — layered settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from checklints.config import (
    Settings,
    load_settings,
    read_config_file,
    read_env,
    user_checklists_dir,
    user_config_dir,
    user_templates_dir,
)
from checklints.errors import ConfigError


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    return tmp_path / "config.yml"


class TestLocations:
    def test_xdg_config_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
        assert user_config_dir() == tmp_path / "cfg" / "checklints"
        assert user_checklists_dir() == tmp_path / "cfg" / "checklints" / "checklists"
        assert user_templates_dir() == tmp_path / "cfg" / "checklints" / "templates"

    def test_falls_back_to_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("XDG_CONFIG_HOME")
        assert user_config_dir() == Path.home() / ".config" / "checklints"


class TestConfigFile:
    def test_missing_file_is_empty(self, config_file: Path) -> None:
        assert read_config_file(config_file) == {}

    def test_values_are_coerced(self, config_file: Path) -> None:
        config_file.write_text("fail_fast: yes\njobs: '4'\ncommand_timeout: 2\ncache_path: ~/c.db\n")
        values = read_config_file(config_file)
        assert values == {
            "fail_fast": True,
            "jobs": 4,
            "command_timeout": 2.0,
            "cache_path": Path("~/c.db").expanduser(),
        }

    def test_unknown_key(self, config_file: Path) -> None:
        config_file.write_text("colour: red\n")
        with pytest.raises(ConfigError, match="unknown settings \\['colour'\\]"):
            read_config_file(config_file)

    def test_not_a_mapping(self, config_file: Path) -> None:
        config_file.write_text("- jobs\n")
        with pytest.raises(ConfigError, match="expected a mapping"):
            read_config_file(config_file)

    def test_invalid_yaml(self, config_file: Path) -> None:
        config_file.write_text("jobs: [\n")
        with pytest.raises(ConfigError, match="cannot read config file"):
            read_config_file(config_file)

    @pytest.mark.parametrize(
        ("text", "match"),
        [
            ("jobs: 0\n", "positive integer"),
            ("jobs: many\n", "positive integer"),
            ("command_timeout: -1\n", "positive number"),
            ("fail_fast: maybe\n", "must be a boolean"),
        ],
    )
    def test_invalid_values(self, config_file: Path, text: str, match: str) -> None:
        config_file.write_text(text)
        with pytest.raises(ConfigError, match=match):
            read_config_file(config_file)


class TestEnvironment:
    def test_prefixed_variables(self) -> None:
        env = {"CHECKLINTS_FAIL_FAST": "1", "CHECKLINTS_JOBS": "2", "PATH": "/bin"}
        assert read_env(env) == {"fail_fast": True, "jobs": 2}

    def test_unknown_variables_are_ignored(self) -> None:
        assert read_env({"CHECKLINTS_SOMETHING_ELSE": "x"}) == {}

    def test_invalid_boolean(self) -> None:
        with pytest.raises(ConfigError, match="CHECKLINTS_NO_CACHE"):
            read_env({"CHECKLINTS_NO_CACHE": "sometimes"})


class TestLoadSettings:
    def test_defaults(self, config_file: Path) -> None:
        assert load_settings(config_path=config_file, environ={}) == Settings()

    def test_layers_in_order(self, config_file: Path) -> None:
        config_file.write_text("jobs: 2\nfail_fast: true\ncommand_timeout: 5\n")
        settings = load_settings(
            {"jobs": 6, "fail_fast": None},
            config_path=config_file,
            environ={"CHECKLINTS_JOBS": "4", "CHECKLINTS_COMMAND_TIMEOUT": "9"},
        )
        assert settings.jobs == 6
        assert settings.command_timeout == 9.0
        assert settings.fail_fast is True

    def test_no_cache_disables_read_and_write(self, config_file: Path) -> None:
        settings = load_settings(config_path=config_file, environ={"CHECKLINTS_NO_CACHE": "on"})
        assert settings.read_cache is False
        assert settings.write_cache is False

    def test_later_layer_can_reenable_cache(self, config_file: Path) -> None:
        config_file.write_text("no_cache: true\n")
        settings = load_settings(
            config_path=config_file, environ={"CHECKLINTS_READ_CACHE": "true"}
        )
        assert settings.read_cache is True
        assert settings.write_cache is False

    def test_reads_default_config_location(self, tmp_path: Path) -> None:
        # XDG_CONFIG_HOME points into tmp_path (see conftest).
        config_dir = tmp_path / "xdg-config" / "checklints"
        config_dir.mkdir(parents=True)
        (config_dir / "config.yml").write_text("user_checklists: false\n")
        assert load_settings(environ={}).user_checklists is False
