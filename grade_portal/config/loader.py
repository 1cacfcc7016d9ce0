from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from grade_portal.models.config_models import DatabaseConfig, ImportSettings, PortalConfig

"""Config loader.

Responsibilities:
- Load YAML config/portal.yml
- Validate against grade_portal/contracts/config_schema.json
- Apply defaults (timezone=UTC, import settings) when keys are omitted
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
]

# grade_portal/config/loader.py -> grade_portal/contracts
SCHEMA_PATH = Path(__file__).parent.parent / "contracts" / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/portal.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _build_import_settings(raw: dict[str, Any]) -> ImportSettings:
    defaults = ImportSettings()
    settings = ImportSettings(
        strict_grade_range=raw.get("strict_grade_range", defaults.strict_grade_range),
        grade_min=raw.get("grade_min", defaults.grade_min),
        grade_max=raw.get("grade_max", defaults.grade_max),
        error_summary_limit=raw.get("error_summary_limit", defaults.error_summary_limit),
        legacy_grade_threshold=raw.get("legacy_grade_threshold", defaults.legacy_grade_threshold),
        preview_page_size=raw.get("preview_page_size", defaults.preview_page_size),
    )
    if settings.grade_min > settings.grade_max:
        raise ConfigError(
            f"import.grade_min ({settings.grade_min}) exceeds import.grade_max ({settings.grade_max})"
        )
    return settings


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> PortalConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return PortalConfig(
        timezone=data.get("timezone", "UTC"),
        database=db,
        import_settings=_build_import_settings(data.get("import") or {}),
        logs_directory=data.get("logs_directory", "./logs"),
    )
