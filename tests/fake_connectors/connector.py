"""Fake tool connector backed by in-memory sets.

Tracks every apply call for assertions and supports error injection,
either permanently or for the first N attempts of a given item.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from toolsync.connectors import ConnectorError
from toolsync.models import ItemType


class FakeConnectorError(ConnectorError):
    """Injected connector failure."""

    pass


class FakeConnector:
    """Connector whose installed items and env live in memory."""

    def __init__(self, env: dict[str, str] | None = None, **items: Iterable[str]) -> None:
        """Initialize with installed items per category name.

        Args:
            env: Current environment values.
            **items: Category value (e.g. ``extension``) to installed names.
        """
        self.installed: dict[ItemType, set[str]] = {category: set() for category in ItemType}
        for category_name, names in items.items():
            self.installed[ItemType(category_name)] = set(names)
        self.env: dict[str, str] = dict(env or {})
        self.calls: list[tuple[str, Any, Any]] = []
        self._failures: dict[tuple[str, str], int | None] = {}

    def fail_install(self, category: str, name: str, times: int | None = None) -> None:
        """Make installs of ``category:name`` fail ``times`` times (forever if None)."""
        self._failures[(category, name)] = times

    def fail_env(self, key: str, times: int | None = None) -> None:
        """Make setting ``key`` fail ``times`` times (forever if None)."""
        self._failures[("env", key)] = times

    def list_installed(self, category: ItemType) -> set[str]:
        return set(self.installed[category])

    def apply_install(self, category: ItemType, name: str) -> None:
        self.calls.append(("install", category.value, name))
        self._maybe_fail(category.value, name)
        self.installed[category].add(name)

    def apply_set_env(self, key: str, value: str) -> None:
        self.calls.append(("set_env", key, value))
        self._maybe_fail("env", key)
        self.env[key] = value

    def current_env(self, key: str) -> str | None:
        return self.env.get(key)

    def call_count(self, kind: str, target: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind and target in (call[1], call[2]))

    def _maybe_fail(self, scope: str, target: str) -> None:
        key = (scope, target)
        if key not in self._failures:
            return
        remaining = self._failures[key]
        if remaining is None:
            raise FakeConnectorError(f"cannot apply {scope}:{target}")
        if remaining > 0:
            self._failures[key] = remaining - 1
            raise FakeConnectorError(f"transient failure for {scope}:{target}")


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
