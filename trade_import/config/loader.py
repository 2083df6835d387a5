from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import DatabaseConfig, DuplicatePolicy, ImportConfig
from ..models.field_mapping import FieldMapping

"""Config loader.

Responsibilities:
- Load YAML (config/import.yml by default)
- Validate against the JSON schema shipped next to this module
- Apply defaults for every missing key (ImportConfig field defaults)
- Build the frozen ImportConfig consumed by the pipeline
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "config_from_dict",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: the schema file is missing or not valid JSON, or the
            config data violates it (unknown keys, wrong types, bad enum values)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path)
        raise ConfigError(f"config validation failed{f' at {where}' if where else ''}: {e.message}") from e


def config_from_dict(data: dict[str, Any]) -> ImportConfig:
    """Build an ImportConfig from already validated data."""
    defaults = ImportConfig()

    tz = data.get("timezone", defaults.timezone)
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone: {tz}") from e

    try:
        mapping = FieldMapping().with_overrides(data.get("field_mapping") or {})
    except ValueError as e:
        raise ConfigError(f"field_mapping: {e}") from e

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        batch_size=data.get("batch_size", defaults.batch_size),
        max_workers=data.get("max_workers", defaults.max_workers),
        duplicate_policy=DuplicatePolicy(data.get("duplicate_policy", defaults.duplicate_policy.value)),
        duplicate_tolerance_seconds=data.get(
            "duplicate_tolerance_seconds", defaults.duplicate_tolerance_seconds
        ),
        stale_session_seconds=data.get("stale_session_seconds", defaults.stale_session_seconds),
        future_date_threshold_days=data.get(
            "future_date_threshold_days", defaults.future_date_threshold_days
        ),
        timezone=tz,
        delimiter=data.get("delimiter", defaults.delimiter),
        default_commission=float(data.get("default_commission", defaults.default_commission)),
        commission_rates=data.get("commission_rates"),
        field_mapping=mapping,
        logs_directory=data.get("logs_directory", defaults.logs_directory),
        database=db,
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)
    return config_from_dict(data)
