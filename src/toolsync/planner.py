"""Per-tool plan construction.

Emission order is fixed (categories in enumeration order, names sorted,
then env keys in allow-list order) so consecutive plans diff cleanly.
"""

from __future__ import annotations

from collections.abc import Sequence

from .models import (
    ITEM_TYPES,
    InstallAction,
    Registry,
    SetEnvAction,
    Snapshot,
    ToolPlan,
    utc_now_iso,
)


def build_plan(registry: Registry, tool: str, local: Snapshot | None) -> ToolPlan:
    """Diff the registry against one tool's own snapshot.

    A tool without a snapshot starts maximally out of sync: every
    registry item becomes an install action.
    """
    snapshot = local if local is not None else Snapshot.empty(tool)
    actions: list[InstallAction | SetEnvAction] = []

    for category in ITEM_TYPES:
        for name in sorted(registry.by_type.get(category, {})):
            holders = registry.by_type[category][name]
            if tool not in holders:
                actions.append(
                    InstallAction(type=category, name=name, source_tools=sorted(holders))
                )

    for key, entry in registry.env.items():
        if snapshot.env.get(key) != entry.value:
            actions.append(
                SetEnvAction(key=key, value=entry.value, source_tool=entry.source_tool)
            )

    return ToolPlan(
        tool=tool,
        revision=registry.revision,
        generated_at=utc_now_iso(),
        action_count=len(actions),
        actions=actions,
    )


def build_plans(registry: Registry, snapshots: Sequence[Snapshot]) -> dict[str, ToolPlan]:
    """Build a plan for every configured tool in the registry."""
    by_tool = {s.tool: s for s in snapshots}
    return {
        tool: build_plan(registry, tool, by_tool.get(tool))
        for tool in dict.fromkeys(registry.tools)
    }
