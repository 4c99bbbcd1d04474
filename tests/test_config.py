"""Tests for connection options and config loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from doclink import config as config_module
from doclink.config import ConnectionOptions, DoclinkConfig, load_config, save_config


def test_connection_options_defaults() -> None:
    options = ConnectionOptions(schema="schema.json", credentials="mongodb://localhost/app")

    assert options.id is None
    assert options.debug is False
    assert options.schema_source == "schema.json"


def test_connection_options_accept_field_name() -> None:
    options = ConnectionOptions(schema_source={"employee": {}}, credentials="mongodb://localhost/app")

    assert options.schema_source == {"employee": {}}


def test_connection_options_require_credentials() -> None:
    with pytest.raises(ValidationError):
        ConnectionOptions(schema="schema.json")  # type: ignore[call-arg]


def test_load_config_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_config()

    assert result == DoclinkConfig()
    assert result.default_options() is None


def test_load_config_reads_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
default_connection = "reporting"

[[connections]]
id = "main-db"
credentials = "mongodb://localhost:27017/app"
schema = "schema.json"

[[connections]]
id = "reporting"
credentials = "mongodb://replica:27017/app"
schema = "schema.json"
debug = true

[[connections]]
id = "broken"
"""
    )

    result = load_config(config_path)

    assert [options.id for options in result.connections] == ["main-db", "reporting"]
    assert result.default_connection == "reporting"
    default = result.default_options()
    assert default is not None and default.debug is True
    assert result.options_for("main-db").credentials == "mongodb://localhost:27017/app"  # type: ignore[union-attr]
    assert result.options_for("missing") is None


def test_load_config_handles_toml_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("default_connection = [unterminated")
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert result == DoclinkConfig()


def test_default_options_falls_back_to_first_entry() -> None:
    config = DoclinkConfig(
        connections=[
            ConnectionOptions(id="a", schema="schema.json", credentials="mongodb://localhost/a"),
            ConnectionOptions(id="b", schema="schema.json", credentials="mongodb://localhost/b"),
        ]
    )

    assert config.default_options().id == "a"  # type: ignore[union-attr]


def test_save_config_round_trips_path_schemas(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "nested" / "config.toml"
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    save_config(
        DoclinkConfig(
            default_connection="main-db",
            connections=[
                ConnectionOptions(id="main-db", schema="schema.json", credentials="mongodb://localhost/app", debug=True),
                ConnectionOptions(id="inline", schema={"employee": {}}, credentials="mongodb://localhost/app"),
            ],
        )
    )

    content = config_path.read_text()
    assert 'default_connection = "main-db"' in content
    assert "[[connections]]" in content
    assert "debug = true" in content
    assert "inline" not in content
    loaded = load_config()
    assert [options.id for options in loaded.connections] == ["main-db"]
    assert loaded.connections[0].schema_source == "schema.json"
