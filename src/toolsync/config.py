"""Configuration management.

Two layers:
- EngineSettings: process-level settings read from the environment and
  validated at construction (fail fast, like any bad deployment setting).
- ToolSyncConfig: the shared ``config.json`` in the sync root. Connectors
  and users edit this file by hand, so it is loaded leniently: a field of
  the wrong type falls back to its default and numbers are clamped to
  their documented minimum instead of raising.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from .models import KNOWN_TOOLS, ItemType


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Engine settings constants with documented bounds
DEFAULT_SYNC_ROOT = "~/ToolSync"

DEFAULT_CYCLE_INTERVAL_SECONDS = 300
MIN_CYCLE_INTERVAL_SECONDS = 10
MAX_CYCLE_INTERVAL_SECONDS = 3600

DEFAULT_SUPPRESS_SECONDS = 5
MAX_SUPPRESS_SECONDS = 300

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# config.json lower bounds (values below are clamped, not rejected)
MIN_APPLY_RETRY_COUNT = 0
MIN_APPLY_RETRY_DELAY_SEC = 1
MIN_LOG_MAX_SIZE_KB = 64
MIN_LOG_KEEP_ARCHIVES = 1
MIN_REPORT_TAIL_LINES = 10


def resolve_home_path(value: str) -> Path:
    """Expand a leading ``~/`` to the user's home directory."""
    if value.startswith("~/"):
        return Path.home() / value[2:]
    return Path(value)


@dataclass(frozen=True)
class EngineSettings:
    """Process settings for the reconciliation daemon and CLI.

    All fields are validated at construction time. Invalid settings
    raise ConfigurationError immediately rather than failing mid-cycle.
    """

    sync_root: Path = field(default_factory=lambda: resolve_home_path(DEFAULT_SYNC_ROOT))
    cycle_interval_seconds: int = DEFAULT_CYCLE_INTERVAL_SECONDS
    auto_apply: bool = False
    suppress_seconds: int = DEFAULT_SUPPRESS_SECONDS
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not str(self.sync_root).strip():
            errors.append("TOOLSYNC_ROOT must not be empty")

        if not (
            MIN_CYCLE_INTERVAL_SECONDS
            <= self.cycle_interval_seconds
            <= MAX_CYCLE_INTERVAL_SECONDS
        ):
            errors.append(
                f"TOOLSYNC_INTERVAL must be between {MIN_CYCLE_INTERVAL_SECONDS} "
                f"and {MAX_CYCLE_INTERVAL_SECONDS} seconds"
            )

        if not (0 <= self.suppress_seconds <= MAX_SUPPRESS_SECONDS):
            errors.append(
                f"TOOLSYNC_SUPPRESS_SECONDS must be between 0 and {MAX_SUPPRESS_SECONDS}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"TOOLSYNC_LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Load settings from environment variables.

        Environment Variables:
            TOOLSYNC_ROOT: Sync root directory (default: ~/ToolSync)
            TOOLSYNC_INTERVAL: Seconds between periodic cycles (default: 300)
            TOOLSYNC_AUTO_APPLY: If "true", apply plans after building them (default: false)
            TOOLSYNC_SUPPRESS_SECONDS: Window after an apply during which external
                change notifications are ignored (default: 5)
            TOOLSYNC_LOG_LEVEL: Stdout log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            sync_root=resolve_home_path(os.environ.get("TOOLSYNC_ROOT", DEFAULT_SYNC_ROOT)),
            cycle_interval_seconds=get_int("TOOLSYNC_INTERVAL", DEFAULT_CYCLE_INTERVAL_SECONDS),
            auto_apply=get_bool("TOOLSYNC_AUTO_APPLY", False),
            suppress_seconds=get_int("TOOLSYNC_SUPPRESS_SECONDS", DEFAULT_SUPPRESS_SECONDS),
            log_level=os.environ.get("TOOLSYNC_LOG_LEVEL", "INFO").upper(),
        )


_MINIMUMS: dict[str, int] = {
    "apply_retry_count": MIN_APPLY_RETRY_COUNT,
    "apply_retry_delay_sec": MIN_APPLY_RETRY_DELAY_SEC,
    "log_max_size_kb": MIN_LOG_MAX_SIZE_KB,
    "log_keep_archives": MIN_LOG_KEEP_ARCHIVES,
    "report_tail_lines": MIN_REPORT_TAIL_LINES,
}


class ToolSyncConfig(BaseModel):
    """Shared reconciliation settings stored in ``config.json``."""

    # strict: "5" is a wrong type for an int field and falls back to the default
    model_config = ConfigDict(populate_by_name=True, extra="ignore", strict=True)

    tools: list[str] = Field(default_factory=lambda: list(KNOWN_TOOLS))
    allow_env_keys: list[str] = Field(default_factory=list, alias="allowEnvKeys")
    propagate_delete: bool = Field(False, alias="propagateDelete")
    exclude_extensions: list[str] = Field(default_factory=list, alias="excludeExtensions")
    exclude_mcp: list[str] = Field(default_factory=list, alias="excludeMcp")
    exclude_skills: list[str] = Field(default_factory=list, alias="excludeSkills")
    apply_retry_count: int = Field(2, alias="applyRetryCount")
    apply_retry_delay_sec: int = Field(5, alias="applyRetryDelaySec")
    log_max_size_kb: int = Field(1024, alias="logMaxSizeKb")
    log_keep_archives: int = Field(5, alias="logKeepArchives")
    report_tail_lines: int = Field(200, alias="reportTailLines")

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_wrong_type(cls, value: Any, handler: Any, info: ValidationInfo) -> Any:
        try:
            validated = handler(value)
        except ValidationError:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        minimum = _MINIMUMS.get(info.field_name)
        if minimum is not None and validated < minimum:
            return minimum
        return validated

    @classmethod
    def from_raw(cls, data: Any) -> ToolSyncConfig:
        """Build a config from a parsed ``config.json`` payload.

        Anything that is not a JSON object yields the all-default config.
        """
        if not isinstance(data, dict):
            return cls()
        return cls.model_validate(data)

    def excluded_names(self, category: ItemType) -> frozenset[str]:
        """Names on the exclude list for a category (themes have none)."""
        if category is ItemType.EXTENSION:
            return frozenset(self.exclude_extensions)
        if category is ItemType.MCP:
            return frozenset(self.exclude_mcp)
        if category is ItemType.SKILL:
            return frozenset(self.exclude_skills)
        return frozenset()

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
