"""Plan application against a tool connector.

Apply is best-effort: an action that keeps failing after its retries is
recorded as failed and the executor moves on to the next one. Retries
back off linearly (the n-th retry waits n * retry_delay seconds).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import ToolSyncConfig
from .connectors import Connector
from .diagnostics import DiagnosticsLog
from .models import InstallAction, SetEnvAction, ToolPlan, describe_action

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class UnsupportedActionError(Exception):
    """Raised for an action variant the executor does not know.

    This is an engine contract violation, not a connector failure, so it
    is never retried or counted.
    """

    pass


class OutcomeStatus(str, Enum):
    """Final status of one plan action."""

    OK = "ok"
    FAILED = "fail"
    SKIPPED = "skipped"


@dataclass
class ActionOutcome:
    """Result of applying a single action."""

    action: InstallAction | SetEnvAction
    status: OutcomeStatus
    attempts: int = 0
    error: str | None = None


@dataclass
class ApplySummary:
    """Counts for one tool's apply run."""

    tool: str
    revision: int
    outcomes: list[ActionOutcome] = field(default_factory=list)

    @property
    def ok(self) -> int:
        return self._count(OutcomeStatus.OK)

    @property
    def fail(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    def counts(self) -> dict[str, int]:
        return {"ok": self.ok, "fail": self.fail, "skipped": self.skipped}

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a failing action is retried."""

    retry_count: int = 2
    retry_delay_seconds: int = 5

    @classmethod
    def from_config(cls, config: ToolSyncConfig) -> RetryPolicy:
        return cls(
            retry_count=config.apply_retry_count,
            retry_delay_seconds=config.apply_retry_delay_sec,
        )

    def delay_before_retry(self, retry: int) -> float:
        """Wait before the ``retry``-th retry (1-indexed)."""
        return float(retry * self.retry_delay_seconds)


class ApplyExecutor:
    """Executes plans, honoring exclusion lists and the retry policy."""

    def __init__(
        self,
        config: ToolSyncConfig,
        diagnostics: DiagnosticsLog,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Resolved config providing exclude lists and retry settings.
            diagnostics: Log subsystem that records every outcome.
            sleep: Awaitable sleep used between retries (injectable for tests).
        """
        self._config = config
        self._diagnostics = diagnostics
        self._retry = RetryPolicy.from_config(config)
        self._sleep = sleep

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def is_excluded(self, action: InstallAction | SetEnvAction) -> bool:
        if not isinstance(action, InstallAction):
            return False
        return action.name in self._config.excluded_names(action.type)

    async def apply_plan(self, plan: ToolPlan, connector: Connector) -> ApplySummary:
        """Apply every action of ``plan`` in order.

        Raises:
            UnsupportedActionError: If an action variant is not recognized.
        """
        summary = ApplySummary(tool=plan.tool, revision=plan.revision)

        for action in plan.actions:
            if self.is_excluded(action):
                outcome = ActionOutcome(action=action, status=OutcomeStatus.SKIPPED)
                self._diagnostics.append_runtime(
                    "INFO",
                    "apply",
                    f"Skipped excluded {describe_action(action)}",
                    {"tool": plan.tool, "action": action.to_json_dict()},
                )
            else:
                outcome = await self._apply_with_retry(plan.tool, action, connector)
            summary.outcomes.append(outcome)

        self._diagnostics.append_runtime(
            "WARN" if summary.fail else "INFO",
            "apply",
            "Plan applied",
            {"tool": plan.tool, "revision": plan.revision, **summary.counts()},
        )
        return summary

    async def _apply_with_retry(
        self,
        tool: str,
        action: InstallAction | SetEnvAction,
        connector: Connector,
    ) -> ActionOutcome:
        max_attempts = self._retry.retry_count + 1
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                wait_time = self._retry.delay_before_retry(attempt - 1)
                self._diagnostics.append_runtime(
                    "WARN",
                    "apply",
                    f"Retrying {describe_action(action)}",
                    {
                        "tool": tool,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "wait_seconds": wait_time,
                        "error": str(last_error),
                    },
                )
                await self._sleep(wait_time)

            try:
                self._dispatch(action, connector)
            except UnsupportedActionError:
                raise
            except Exception as e:
                last_error = e
                continue

            self._diagnostics.append_runtime(
                "INFO",
                "apply",
                f"Applied {describe_action(action)}",
                {"tool": tool, "attempts": attempt},
            )
            return ActionOutcome(action=action, status=OutcomeStatus.OK, attempts=attempt)

        error_text = f"{type(last_error).__name__}: {last_error}"
        self._diagnostics.append_error(
            "apply",
            f"Failed to {describe_action(action)} for {tool} after {max_attempts} attempts",
            action=action.to_json_dict(),
            error=error_text,
        )
        return ActionOutcome(
            action=action,
            status=OutcomeStatus.FAILED,
            attempts=max_attempts,
            error=error_text,
        )

    @staticmethod
    def _dispatch(action: InstallAction | SetEnvAction, connector: Connector) -> None:
        if isinstance(action, InstallAction):
            connector.apply_install(action.type, action.name)
        elif isinstance(action, SetEnvAction):
            connector.apply_set_env(action.key, action.value)
        else:
            raise UnsupportedActionError(f"Unsupported plan action: {action!r}")
