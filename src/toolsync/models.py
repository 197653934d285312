"""Pydantic models for snapshots, the registry, and per-tool plans.

These models provide:
1. Type-safe JSON persistence with the camelCase field names used on disk
2. A closed, discriminated action variant (install vs set_env)
3. Shared timestamp helpers so every artifact uses the same ISO-8601 format

Timestamps are strings, not datetimes: the registry compares them
lexically when resolving env conflicts, so they must all share one format.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# Tool ids the original host shipped connectors for. The tool set is open;
# this list only seeds the default configuration.
KNOWN_TOOLS: tuple[str, ...] = (
    "vscode",
    "cursor",
    "codex",
    "antigravity",
    "claude",
    "lmstudio",
)

EPOCH_TIMESTAMP = "1970-01-01T00:00:00.000Z"


class ItemType(str, Enum):
    """Item categories tracked per tool.

    The enumeration is closed. Declaration order is the plan emission order.
    """

    EXTENSION = "extension"
    MCP = "mcp"
    SKILL = "skill"
    TERMINAL_THEME = "terminal_theme"
    EDITOR_THEME = "editor_theme"


ITEM_TYPES: tuple[ItemType, ...] = tuple(ItemType)


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with millisecond precision and Z suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current time in the persisted timestamp format."""
    return format_timestamp(datetime.now(UTC))


def compact_timestamp(moment: datetime | None = None) -> str:
    """Timestamp safe for file names (colons and dots replaced)."""
    stamp = format_timestamp(moment or datetime.now(UTC))
    return stamp.replace(":", "-").replace(".", "-")


class _Persisted(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Snapshot
# =============================================================================


class Snapshot(_Persisted):
    """What one tool reported having during one cycle."""

    tool: str
    updated_at: str = Field(EPOCH_TIMESTAMP, alias="updatedAt")
    extension: list[str] = Field(default_factory=list)
    mcp: list[str] = Field(default_factory=list)
    skill: list[str] = Field(default_factory=list)
    terminal_theme: list[str] = Field(default_factory=list)
    editor_theme: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    def items(self, category: ItemType) -> list[str]:
        return getattr(self, category.value)

    @classmethod
    def empty(cls, tool: str) -> Snapshot:
        return cls(tool=tool)


# =============================================================================
# Registry
# =============================================================================


class EnvEntry(_Persisted):
    """Winning value for one allow-listed env key."""

    value: str
    source_tool: str = Field(alias="sourceTool")
    updated_at: str = Field(alias="updatedAt")


def _empty_by_type() -> dict[ItemType, dict[str, list[str]]]:
    return {category: {} for category in ITEM_TYPES}


class Registry(_Persisted):
    """Canonical cross-tool view for one revision.

    ``by_type[category][name]`` holds the sorted ids of every tool that
    reported ``name``; an entry only exists when that list is non-empty.
    """

    revision: int
    updated_at: str = Field(alias="updatedAt")
    tools: list[str] = Field(default_factory=list)
    by_type: dict[ItemType, dict[str, list[str]]] = Field(
        default_factory=_empty_by_type, alias="byType"
    )
    env: dict[str, EnvEntry] = Field(default_factory=dict)

    def holders(self, category: ItemType, name: str) -> list[str]:
        return self.by_type.get(category, {}).get(name, [])


# =============================================================================
# Plans
# =============================================================================


class InstallAction(_Persisted):
    """Install an item the target tool is missing."""

    action: Literal["install"] = "install"
    type: ItemType
    name: str
    source_tools: list[str] = Field(default_factory=list, alias="sourceTools")

    @property
    def category(self) -> ItemType:
        return self.type


class SetEnvAction(_Persisted):
    """Set an allow-listed env var to its canonical value."""

    action: Literal["set_env"] = "set_env"
    type: Literal["env"] = "env"
    key: str
    value: str
    source_tool: str = Field(alias="sourceTool")


PlanAction = Annotated[InstallAction | SetEnvAction, Field(discriminator="action")]


def describe_action(action: InstallAction | SetEnvAction) -> str:
    """Short human-readable label used in log messages."""
    if isinstance(action, InstallAction):
        return f"install {action.type.value}:{action.name}"
    return f"set_env {action.key}"


class ToolPlan(_Persisted):
    """Ordered corrective actions for one tool."""

    tool: str
    revision: int
    generated_at: str = Field(alias="generatedAt")
    action_count: int = Field(0, alias="actionCount")
    actions: list[PlanAction] = Field(default_factory=list)


# =============================================================================
# Cross-cycle state
# =============================================================================


class SyncState(_Persisted):
    """The only memory the engine keeps between cycles."""

    revision: int = 0
    last_run_at: str | None = Field(None, alias="lastRunAt")
