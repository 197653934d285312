"""Connector boundary.

Concrete connectors live with each tool integration. The engine only
needs the four capabilities below; each apply call must be idempotent
("apply once") and signal failure by raising.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from .models import ITEM_TYPES, ItemType, Snapshot, utc_now_iso


class ConnectorError(Exception):
    """Base class for failures raised by connectors."""

    pass


@runtime_checkable
class Connector(Protocol):
    """Capabilities a tool connector must provide."""

    def list_installed(self, category: ItemType) -> set[str]:
        """Names of items of ``category`` currently present in the tool."""
        ...

    def apply_install(self, category: ItemType, name: str) -> None:
        """Install an extension, register an MCP server or skill, or select a theme."""
        ...

    def apply_set_env(self, key: str, value: str) -> None:
        """Set an environment variable in the tool's environment."""
        ...

    def current_env(self, key: str) -> str | None:
        """Current value of ``key`` in the tool's environment, if set."""
        ...


def capture_snapshot(tool: str, connector: Connector, allow_env_keys: Iterable[str]) -> Snapshot:
    """Ask a connector what it has right now.

    Only allow-listed env keys are read; everything else in the tool's
    environment stays private to it.
    """
    categories = {
        category.value: sorted(set(connector.list_installed(category))) for category in ITEM_TYPES
    }
    env: dict[str, str] = {}
    for key in dict.fromkeys(allow_env_keys):
        value = connector.current_env(key)
        if value is not None:
            env[key] = value

    return Snapshot(tool=tool, updated_at=utc_now_iso(), env=env, **categories)
