"""Canonical registry construction.

Environment conflicts are resolved last-write-wins: candidates are stable
sorted by ``updatedAt`` (lexical ISO-8601 compare) and the last one wins.
On equal timestamps the snapshot that comes later in input order wins.
Majority agreement between tools is deliberately not considered.
"""

from __future__ import annotations

from collections.abc import Sequence

from .config import ToolSyncConfig
from .models import ITEM_TYPES, EnvEntry, ItemType, Registry, Snapshot, utc_now_iso


def pick_latest_env(snapshots: Sequence[Snapshot], key: str) -> EnvEntry | None:
    """Winning value for ``key`` across ``snapshots``, or None if nobody defines it."""
    candidates = [
        EnvEntry(value=s.env[key], source_tool=s.tool, updated_at=s.updated_at)
        for s in snapshots
        if key in s.env
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda c: c.updated_at)
    return candidates[-1]


def build_registry(
    revision: int,
    config: ToolSyncConfig,
    snapshots: Sequence[Snapshot],
) -> Registry:
    """Union all snapshots into one registry.

    Args:
        revision: Revision to stamp, already incremented by the caller.
        config: Resolved configuration (tool list and env allow-list).
        snapshots: Normalized snapshots, configured tools first.

    Returns:
        Registry covering every snapshot, including unconfigured tools.
    """
    membership: dict[ItemType, dict[str, set[str]]] = {category: {} for category in ITEM_TYPES}

    for snapshot in snapshots:
        for category in ITEM_TYPES:
            bucket = membership[category]
            for name in snapshot.items(category):
                bucket.setdefault(name, set()).add(snapshot.tool)

    by_type = {
        category: {name: sorted(holders) for name, holders in sorted(bucket.items())}
        for category, bucket in membership.items()
    }

    env: dict[str, EnvEntry] = {}
    for key in dict.fromkeys(config.allow_env_keys):
        latest = pick_latest_env(snapshots, key)
        if latest is not None:
            env[key] = latest

    return Registry(
        revision=revision,
        updated_at=utc_now_iso(),
        tools=list(config.tools),
        by_type=by_type,
        env=env,
    )
