"""Tests for config loading and profiles."""

import json
from pathlib import Path

import pytest

from sheets_setup import config as config_module
from sheets_setup.config import PROFILES, ConfigError, SetupConfig, get_profile, load_config


@pytest.fixture
def default_path(tmp_path, monkeypatch):
    path = tmp_path / "cfg" / "config.json"
    monkeypatch.setattr(config_module, "default_config_path", lambda: path)
    return path


def _write(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


def test_missing_default_file_gives_defaults(default_path):
    config = load_config()
    assert config.repository_url == SetupConfig().repository_url
    assert config.xampp_dir == Path(r"C:\xampp")
    assert config.profile is None


def test_default_file_overrides(default_path):
    _write(default_path, {"npm_scope": "@acme", "php_extensions": ["gd"], "profile": "legacy"})
    config = load_config()
    assert config.npm_scope == "@acme"
    assert config.php_extensions == ("gd",)
    assert config.profile == "legacy"


def test_path_fields_expand_variables(tmp_path, monkeypatch):
    monkeypatch.setenv("SHEETS_TEST_ROOT", str(tmp_path))
    path = _write(tmp_path / "c.json", {"xampp_dir": "$SHEETS_TEST_ROOT/xampp"})
    config = load_config(path)
    assert config.xampp_dir == tmp_path / "xampp"
    assert config.httpd_conf == tmp_path / "xampp" / "apache" / "conf" / "httpd.conf"


def test_explicit_missing_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.json")


@pytest.mark.parametrize("content,message", [
    ("{not json", "Failed to read"),
    ("[1, 2]", "JSON object"),
    ('{"colour": "blue"}', "Unknown configuration keys: colour"),
    ('{"php_extensions": "gd"}', "must be a list"),
    ('{"profile": "ancient"}', "Unknown profile"),
])
def test_invalid_files(tmp_path, content, message):
    path = tmp_path / "c.json"
    path.write_text(content)
    with pytest.raises(ConfigError, match=message):
        load_config(path)


class TestProfiles:

    def test_default_is_current(self):
        assert get_profile(None) is PROFILES["current"]

    def test_lookup_is_case_insensitive(self):
        assert get_profile("Legacy") is PROFILES["legacy"]

    def test_unknown(self):
        with pytest.raises(ConfigError, match="Choose from: current, legacy"):
            get_profile("ancient")

    def test_only_current_publishes_assets(self):
        assert PROFILES["current"].publish_commands
        assert PROFILES["legacy"].publish_commands == ()
