"""Connection options and configuration loading helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_FILE = Path.home() / ".config" / "doclink" / "config.toml"


class ConnectionOptions(BaseModel):
    """Options recognised when constructing a connection."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    schema_source: str | Path | dict[str, Any] = Field(alias="schema")
    credentials: str
    debug: bool = False


class DoclinkConfig(BaseModel):
    """Shape of the configuration file."""

    connections: list[ConnectionOptions] = Field(default_factory=list)
    default_connection: str | None = None

    def options_for(self, connection_id: str) -> ConnectionOptions | None:
        for options in self.connections:
            if options.id == connection_id:
                return options
        return None

    def default_options(self) -> ConnectionOptions | None:
        """Options for ``default_connection``, or the first entry when unset."""

        if self.default_connection:
            return self.options_for(self.default_connection)
        return self.connections[0] if self.connections else None


def load_config(path: Path | None = None) -> DoclinkConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return DoclinkConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return DoclinkConfig()

    connections: list[ConnectionOptions] = []
    for entry in data.get("connections", []):
        try:
            connections.append(ConnectionOptions(**entry))
        except ValidationError:
            continue
    return DoclinkConfig(
        connections=connections,
        default_connection=data.get("default_connection"),
    )


def save_config(config: DoclinkConfig, path: Path | None = None) -> None:
    """Persist configuration to disk.

    Only connections whose schema is a file path are written; in-memory schemas
    cannot be expressed in the config file.
    """

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    if config.default_connection:
        lines.append(f'default_connection = "{config.default_connection}"')
    for options in config.connections:
        if not isinstance(options.schema_source, (str, Path)):
            continue
        lines.append("")
        lines.append("[[connections]]")
        if options.id:
            lines.append(f'id = "{options.id}"')
        lines.append(f'credentials = "{options.credentials}"')
        lines.append(f'schema = "{Path(options.schema_source).as_posix()}"')
        if options.debug:
            lines.append("debug = true")
    target.write_text("\n".join(lines).lstrip("\n") + "\n")


def _read_config_file(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, Any] = {}
    default_connection = raw.get("default_connection")
    if isinstance(default_connection, str):
        data["default_connection"] = default_connection
    connections = raw.get("connections")
    if isinstance(connections, list):
        parsed_connections: list[dict[str, Any]] = []
        for entry in connections:
            if not isinstance(entry, Mapping):
                continue
            parsed: dict[str, Any] = {}
            for key in ("id", "credentials"):
                value = entry.get(key)
                if isinstance(value, str):
                    parsed[key] = value
            schema = entry.get("schema")
            if isinstance(schema, (str, dict)):
                parsed["schema"] = schema
            debug = entry.get("debug")
            if isinstance(debug, bool):
                parsed["debug"] = debug
            parsed_connections.append(parsed)
        data["connections"] = parsed_connections
    return data


__all__ = ["CONFIG_FILE", "ConnectionOptions", "DoclinkConfig", "load_config", "save_config"]
