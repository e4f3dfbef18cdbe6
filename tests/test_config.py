"""Tests for configuration helpers."""

import json

import pytest

from forum_explorer.config import ExplorerConfig, load_config, save_config


def test_config_round_trip(tmp_path, monkeypatch):
    """Connection defaults persist to disk and load back."""

    config_path = tmp_path / "config.json"
    monkeypatch.setenv("FORUM_EXPLORER_CONFIG", str(config_path))

    original = ExplorerConfig(base_url="http://forum.internal:3001", viewer_id="human:alice")
    save_config(original)
    loaded = load_config()

    assert loaded.base_url == "http://forum.internal:3001"
    assert loaded.viewer_id == "human:alice"


def test_save_config_does_not_persist_view_state(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    monkeypatch.setenv("FORUM_EXPLORER_CONFIG", str(config_path))

    save_config(ExplorerConfig(ticket="T-9", run_id="run-9"))

    stored = json.loads(config_path.read_text())
    assert set(stored) == {"base_url", "viewer_type", "viewer_id"}


def test_load_config_malformed_falls_back(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text("{not valid json")
    monkeypatch.setenv("FORUM_EXPLORER_CONFIG", str(config_path))

    config = load_config()
    assert config.base_url == ExplorerConfig().base_url
    assert config.result_limit == 300


def test_environment_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"base_url": "http://from-file:1/", "debug_interval": 30}))
    monkeypatch.setenv("FORUM_EXPLORER_CONFIG", str(config_path))
    monkeypatch.setenv("FORUM_EXPLORER_BASE_URL", "http://from-env:2/")
    monkeypatch.setenv("FORUM_EXPLORER_TICKET", " T-1 ")

    config = load_config()

    assert config.base_url == "http://from-env:2"
    assert config.debug_interval == 30.0
    assert config.ticket == "T-1"


def test_invalid_numeric_value_raises(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"result_limit": "lots"}))
    monkeypatch.setenv("FORUM_EXPLORER_CONFIG", str(config_path))

    with pytest.raises(ValueError):
        load_config()
