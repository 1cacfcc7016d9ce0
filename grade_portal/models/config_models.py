from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the grade portal bulk upload service.

These are the typed results of ``grade_portal.config.loader.load_config``.
Connection values here are only fallbacks; environment variables (including
those loaded from ``.env``) take precedence.
"""

__all__ = [
    "DatabaseConfig",
    "ImportSettings",
    "PortalConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportSettings:
    """Knobs for validation and reporting of bulk grade uploads.

    ``strict_grade_range`` is off by default: bulk import accepts any
    integral grade, unlike the single-entry grade editor which enforces
    ``grade_min``..``grade_max``.
    """
    strict_grade_range: bool = False
    grade_min: int = 0
    grade_max: int = 30
    error_summary_limit: int = 5
    legacy_grade_threshold: float = 100  # 旧3列フォーマット検出用
    preview_page_size: int = 15


@dataclass(frozen=True)
class PortalConfig:
    """Root configuration object."""
    timezone: str = "UTC"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    import_settings: ImportSettings = field(default_factory=ImportSettings)
    logs_directory: str = "./logs"
