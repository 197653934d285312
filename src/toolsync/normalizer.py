"""Snapshot normalization.

A corrupt or hand-edited snapshot must never halt reconciliation for the
other tools, so normalization is total: every field that has the wrong
shape is replaced by its empty default and only that tool's contribution
degrades.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .models import EPOCH_TIMESTAMP, ITEM_TYPES, Snapshot
from .storage import SyncLayout, list_json, read_json_result

logger = logging.getLogger(__name__)


def _unique_sorted(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    return sorted({v for v in values if isinstance(v, str)})


def _string_map(values: Any) -> dict[str, str]:
    if not isinstance(values, dict):
        return {}
    return {k: v for k, v in values.items() if isinstance(k, str) and isinstance(v, str)}


def normalize_snapshot(tool: str, raw: Any) -> Snapshot:
    """Canonicalize a raw snapshot payload for ``tool``.

    Args:
        tool: Tool id the snapshot belongs to. Always wins over any ``tool``
            field inside the payload.
        raw: Parsed JSON payload; ``None`` or a non-object yields an empty snapshot.

    Returns:
        A complete Snapshot with deduplicated, lexicographically sorted
        categories and ``updatedAt`` defaulted to the Unix epoch.
    """
    data = raw if isinstance(raw, dict) else {}

    updated_at = data.get("updatedAt")
    if not isinstance(updated_at, str) or not updated_at:
        updated_at = EPOCH_TIMESTAMP

    categories = {category.value: _unique_sorted(data.get(category.value)) for category in ITEM_TYPES}

    return Snapshot(
        tool=tool,
        updated_at=updated_at,
        env=_string_map(data.get("env")),
        **categories,
    )


def _load(layout: SyncLayout, tool: str) -> Snapshot | None:
    result = read_json_result(layout.snapshot_file(tool))
    if not result.ok:
        if result.error is not None and not result.error.missing:
            logger.warning(
                "Skipping unreadable snapshot",
                extra={"tool": tool, "reason": result.error.reason},
            )
        return None
    if not isinstance(result.value, dict):
        logger.warning("Skipping snapshot that is not a JSON object", extra={"tool": tool})
        return None
    return normalize_snapshot(tool, result.value)


def read_all_snapshots(layout: SyncLayout, tools: Iterable[str]) -> list[Snapshot]:
    """Read every snapshot under the sync root.

    Configured tools come first, in configuration order, followed by any
    other ``snapshots/*.json`` files in file-name order. That order is the
    tie-break order for env values with equal timestamps.
    """
    configured = list(dict.fromkeys(tools))
    snapshots: list[Snapshot] = []

    for tool in configured:
        snapshot = _load(layout, tool)
        if snapshot is not None:
            snapshots.append(snapshot)

    for path in list_json(layout.snapshots_dir):
        tool = path.stem
        if tool in configured:
            continue
        snapshot = _load(layout, tool)
        if snapshot is not None:
            snapshots.append(snapshot)

    return snapshots
