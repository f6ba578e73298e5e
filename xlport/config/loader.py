from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.jobs import DEFAULT_BATCH_SIZE, DEFAULT_TIMEOUT_SECONDS
from ..models.mapping import FieldMapping

"""Config loader.

- YAML (config/xlport.yml) validated against the bundled config_schema.json
- defaults: batch_size=200, timeout_seconds=300, preview_rows=20
- ``${VAR}`` in connection strings is expanded from the environment (.env is
  loaded by the CLI before this runs); an undefined variable is a ConfigError
- imports / queries must reference a defined connection
"""

__all__ = [
    "ConfigError",
    "Defaults",
    "ImportConfig",
    "QueryConfig",
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "expand_env",
]

DEFAULT_CONFIG_PATH = Path("config/xlport.yml")
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_PREVIEW_ROWS = 20

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Defaults:
    batch_size: int = DEFAULT_BATCH_SIZE
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    preview_rows: int = DEFAULT_PREVIEW_ROWS


@dataclass(frozen=True)
class ImportConfig:
    name: str
    source: Path
    connection: str
    table: str
    sheet: str | None = None
    header_row: int | None = 1  # None -> 自動検出
    clear_before_import: bool = False
    skip_empty_rows: bool = True
    split_each_row: bool = True
    batch_size: int | None = None
    max_rows: int | None = None
    timeout_seconds: int | None = None
    mappings: tuple[FieldMapping, ...] | None = None  # None -> ヘッダから生成


@dataclass(frozen=True)
class QueryConfig:
    name: str
    connection: str
    sql: str
    parameters: dict[str, Any] = field(default_factory=dict)
    output: str | None = None
    output_connection: str | None = None
    clear_before_write: bool = False
    timeout_seconds: int | None = None


@dataclass(frozen=True)
class AppConfig:
    defaults: Defaults
    connections: dict[str, str]
    imports: dict[str, ImportConfig]
    queries: dict[str, QueryConfig]

    def connection(self, name: str) -> str:
        try:
            return self.connections[name]
        except KeyError:
            raise ConfigError(f"unknown connection: {name}") from None


def expand_env(text: str) -> str:
    def _sub(m: re.Match[str]) -> str:
        value = os.environ.get(m.group(1))
        if value is None:
            raise ConfigError(f"environment variable not set: {m.group(1)}")
        return value

    return _ENV_REF_RE.sub(_sub, text)


def _validate_config_schema(data: dict[str, Any]) -> None:
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"config validation failed at {where}: {e.message}") from e


def _mapping(raw: dict[str, Any]) -> FieldMapping:
    return FieldMapping(
        source_column_letter=raw["column"].upper(),
        source_column_name=raw.get("name", raw["field"]),
        target_field_name=raw["field"],
        target_field_type=raw.get("type", "VARCHAR(100)"),
        is_required=bool(raw.get("required", False)),
    )


def _import(name: str, raw: dict[str, Any]) -> ImportConfig:
    mappings = raw.get("mappings")
    return ImportConfig(
        name=name,
        source=Path(raw["source"]),
        connection=raw["connection"],
        table=raw["table"],
        sheet=raw.get("sheet"),
        header_row=raw.get("header_row", 1),
        clear_before_import=raw.get("clear_before_import", False),
        skip_empty_rows=raw.get("skip_empty_rows", True),
        split_each_row=raw.get("split_each_row", True),
        batch_size=raw.get("batch_size"),
        max_rows=raw.get("max_rows"),
        timeout_seconds=raw.get("timeout_seconds"),
        mappings=tuple(_mapping(m) for m in mappings) if mappings else None,
    )


def _query(name: str, raw: dict[str, Any]) -> QueryConfig:
    return QueryConfig(
        name=name,
        connection=raw["connection"],
        sql=raw["sql"],
        parameters=dict(raw.get("parameters") or {}),
        output=raw.get("output"),
        output_connection=raw.get("output_connection"),
        clear_before_write=raw.get("clear_before_write", False),
        timeout_seconds=raw.get("timeout_seconds"),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    d = data.get("defaults") or {}
    defaults = Defaults(
        batch_size=d.get("batch_size", DEFAULT_BATCH_SIZE),
        timeout_seconds=d.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
        preview_rows=d.get("preview_rows", DEFAULT_PREVIEW_ROWS),
    )
    connections = {name: expand_env(cs) for name, cs in data["connections"].items()}
    imports = {name: _import(name, raw) for name, raw in (data.get("imports") or {}).items()}
    queries = {name: _query(name, raw) for name, raw in (data.get("queries") or {}).items()}

    # 参照整合性
    for imp in imports.values():
        if imp.connection not in connections:
            raise ConfigError(f"import '{imp.name}' references unknown connection '{imp.connection}'")
    for q in queries.values():
        for ref in (q.connection, q.output_connection):
            if ref is not None and ref not in connections:
                raise ConfigError(f"query '{q.name}' references unknown connection '{ref}'")

    return AppConfig(defaults=defaults, connections=connections, imports=imports, queries=queries)
