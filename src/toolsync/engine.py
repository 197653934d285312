"""Reconciliation engine: the steps of one sync cycle.

The engine owns the sync root and the revision counter. It does not decide
when a cycle runs; CycleScheduler drives these steps and guarantees that
only one cycle is in flight.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .config import ToolSyncConfig
from .connectors import Connector, capture_snapshot
from .diagnostics import DiagnosticsLog, LogPolicy
from .executor import ApplyExecutor, ApplySummary, SleepFn
from .models import Registry, Snapshot, SyncState, ToolPlan, utc_now_iso
from .normalizer import normalize_snapshot, read_all_snapshots
from .planner import build_plans
from .registry import build_registry
from .storage import SyncLayout, ensure_dir, list_json, read_json_result, write_json

logger = logging.getLogger(__name__)


def _same_content(a: Snapshot, b: Snapshot) -> bool:
    return a.model_dump(exclude={"updated_at"}) == b.model_dump(exclude={"updated_at"})


@dataclass
class BuildResult:
    """Registry and plans produced by one plan-build step."""

    registry: Registry
    plans: dict[str, ToolPlan] = field(default_factory=dict)
    snapshots: list[Snapshot] = field(default_factory=list)

    @property
    def revision(self) -> int:
        return self.registry.revision

    def action_counts(self) -> dict[str, int]:
        return {tool: plan.action_count for tool, plan in self.plans.items()}


class SyncEngine:
    """Tool-agnostic reconciliation over a sync root directory.

    Connectors are optional: tools without one in this process are still
    reconciled through the snapshot files other processes write, but
    their plans are left for those processes to apply.
    """

    def __init__(
        self,
        sync_root: Path,
        connectors: Mapping[str, Connector] | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._layout = SyncLayout(Path(sync_root))
        self._connectors: dict[str, Connector] = dict(connectors or {})
        self._sleep = sleep

    @property
    def layout(self) -> SyncLayout:
        return self._layout

    @property
    def connectors(self) -> Mapping[str, Connector]:
        return self._connectors

    def register_connector(self, tool: str, connector: Connector) -> None:
        self._connectors[tool] = connector

    # -------------------------------------------------------------------------
    # Layout, config and state
    # -------------------------------------------------------------------------

    def ensure_layout(self) -> None:
        """Create the sync root directories and a default config if absent."""
        for directory in self._layout.directories():
            ensure_dir(directory)
        if not self._layout.config_file.exists():
            write_json(self._layout.config_file, ToolSyncConfig().to_json_dict())
            logger.info(
                "Wrote default config",
                extra={"path": str(self._layout.config_file)},
            )

    def load_config(self) -> ToolSyncConfig:
        result = read_json_result(self._layout.config_file)
        if not result.ok and result.error is not None and not result.error.missing:
            logger.warning(
                "Config unreadable, using defaults",
                extra={"reason": result.error.reason},
            )
        return ToolSyncConfig.from_raw(result.unwrap_or({}))

    def load_state(self) -> SyncState:
        raw = read_json_result(self._layout.state_file).unwrap_or({})
        if not isinstance(raw, dict):
            return SyncState()
        revision = raw.get("revision")
        last_run_at = raw.get("lastRunAt")
        return SyncState(
            revision=revision if isinstance(revision, int) and not isinstance(revision, bool) else 0,
            last_run_at=last_run_at if isinstance(last_run_at, str) else None,
        )

    def diagnostics(self, config: ToolSyncConfig) -> DiagnosticsLog:
        return DiagnosticsLog(self._layout, LogPolicy.from_config(config))

    # -------------------------------------------------------------------------
    # Cycle steps
    # -------------------------------------------------------------------------

    def capture_snapshots(self, config: ToolSyncConfig) -> list[str]:
        """Write fresh snapshots for every configured tool with a local connector.

        A snapshot whose content matches the file on disk is not rewritten,
        so ``updatedAt`` keeps meaning "last time this tool's state changed".
        A connector that fails keeps its previous snapshot file; the failure
        goes to the error log and the other tools are still captured.

        Returns:
            Tool ids whose snapshot files were written.
        """
        captured: list[str] = []
        for tool in dict.fromkeys(config.tools):
            connector = self._connectors.get(tool)
            if connector is None:
                continue
            try:
                snapshot = capture_snapshot(tool, connector, config.allow_env_keys)
            except Exception as e:
                logger.warning(
                    "Snapshot capture failed, keeping previous snapshot",
                    extra={"tool": tool, "error": str(e)},
                )
                self.diagnostics(config).append_error(
                    "capture",
                    f"Snapshot capture failed for {tool}",
                    error=f"{type(e).__name__}: {e}",
                )
                continue
            path = self._layout.snapshot_file(tool)
            previous = read_json_result(path)
            if previous.ok and _same_content(normalize_snapshot(tool, previous.value), snapshot):
                continue
            write_json(path, snapshot.to_json_dict())
            captured.append(tool)
        return captured

    def snapshot_fingerprint(self) -> dict[str, str]:
        """Content hash per snapshot file, used to detect changes between cycles."""
        fingerprint: dict[str, str] = {}
        for path in list_json(self._layout.snapshots_dir):
            try:
                fingerprint[path.name] = hashlib.sha256(path.read_bytes()).hexdigest()
            except OSError:
                fingerprint[path.name] = ""
        return fingerprint

    def build_and_persist(self, config: ToolSyncConfig) -> BuildResult:
        """Rebuild the registry and all plans, then advance the revision.

        The state file is written last so that a cold start after a
        failed write agrees with the last build that fully succeeded.
        """
        state = self.load_state()
        revision = state.revision + 1

        snapshots = read_all_snapshots(self._layout, config.tools)
        registry = build_registry(revision, config, snapshots)
        plans = build_plans(registry, snapshots)

        write_json(self._layout.registry_file, registry.to_json_dict())
        for tool, plan in plans.items():
            write_json(self._layout.plan_file(tool), plan.to_json_dict())

        write_json(
            self._layout.state_file,
            SyncState(revision=revision, last_run_at=utc_now_iso()).to_json_dict(),
        )

        return BuildResult(registry=registry, plans=plans, snapshots=snapshots)

    async def apply_plans(
        self,
        config: ToolSyncConfig,
        plans: Mapping[str, ToolPlan],
        diagnostics: DiagnosticsLog,
    ) -> dict[str, ApplySummary]:
        """Apply each plan whose tool has a local connector."""
        executor = ApplyExecutor(config, diagnostics, sleep=self._sleep)
        summaries: dict[str, ApplySummary] = {}

        for tool, plan in plans.items():
            connector = self._connectors.get(tool)
            if connector is None:
                if plan.action_count:
                    logger.debug(
                        "No local connector, leaving plan for its owner",
                        extra={"tool": tool, "action_count": plan.action_count},
                    )
                continue
            if not plan.actions:
                continue
            summaries[tool] = await executor.apply_plan(plan, connector)

        return summaries

    def generate_report(self, reason: str) -> Path:
        """Write a diagnostic report using the current config's log policy."""
        return self.diagnostics(self.load_config()).generate_report(reason)
