"""Single-flight cycle scheduling.

Every trigger (periodic timer, external change notifications, CLI
commands) funnels through CycleScheduler.run_cycle. At most one cycle runs
at a time; reasons arriving while a cycle is in flight are parked in a
bounded mailbox and drained into one follow-up cycle tagged
``queued:<reasons>``.

Two mechanisms keep the loop quiet:
- Fast path: a periodic trigger whose snapshot fingerprint is unchanged
  since the last cycle skips the rebuild entirely.
- Self-suppression: before applying plans the scheduler opens a short
  window during which external change notifications are ignored, and
  reopens it when apply returns, so the apply step's own writes do not
  immediately trigger another cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import DEFAULT_CYCLE_INTERVAL_SECONDS, DEFAULT_SUPPRESS_SECONDS
from .engine import SyncEngine

logger = logging.getLogger(__name__)

PERIODIC_REASON = "interval"
STARTUP_REASON = "startup"
QUEUED_REASON_PREFIX = "queued:"

# Mailbox bound; older reasons are dropped first when exceeded
MAX_QUEUED_REASONS = 32


class CycleStatus(str, Enum):
    """How a run_cycle call ended."""

    COMPLETED = "completed"
    UNCHANGED = "unchanged"  # fast path: nothing changed since the last cycle
    QUEUED = "queued"  # another cycle was running; reason parked
    SUPPRESSED = "suppressed"  # external trigger inside the self-suppression window


@dataclass
class CycleResult:
    """Result of a single run_cycle call."""

    reason: str
    status: CycleStatus
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    revision: int | None = None
    action_counts: dict[str, int] = field(default_factory=dict)
    applied: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_log_data(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "status": self.status.value,
            "revision": self.revision,
            "action_counts": self.action_counts,
            "applied": self.applied,
            "duration_seconds": self.duration_seconds,
        }


class CycleScheduler:
    """Controller owning the running flag, mailbox, suppression window and timer."""

    def __init__(
        self,
        engine: SyncEngine,
        *,
        interval_seconds: float = DEFAULT_CYCLE_INTERVAL_SECONDS,
        auto_apply: bool = False,
        suppress_seconds: float = DEFAULT_SUPPRESS_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Engine whose steps make up a cycle.
            interval_seconds: Period of the timer started by start().
            auto_apply: Apply plans through local connectors after building them.
            suppress_seconds: Length of the self-suppression window opened before apply
                and reopened when apply returns.
            clock: Monotonic clock for the suppression window (injectable for tests).
        """
        self._engine = engine
        self._interval = interval_seconds
        self._auto_apply = auto_apply
        self._suppress_seconds = suppress_seconds
        self._clock = clock

        self._running = False
        self._mailbox: deque[str] = deque(maxlen=MAX_QUEUED_REASONS)
        self._suppressed_until: float | None = None
        self._last_fingerprint: dict[str, str] | None = None

        self._shutdown_event = asyncio.Event()
        self._timer_task: asyncio.Task[None] | None = None
        self._followups: set[asyncio.Task[Any]] = set()

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queued_reasons(self) -> list[str]:
        return list(self._mailbox)

    @property
    def suppressed_until(self) -> float | None:
        return self._suppressed_until

    def is_suppressed(self) -> bool:
        return self._suppressed_until is not None and self._clock() < self._suppressed_until

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    async def run_cycle(self, reason: str) -> CycleResult:
        """Run one reconciliation cycle, or park ``reason`` if one is in flight.

        Raises:
            OSError: If a state, registry, plan or log file cannot be written.
        """
        if self._running:
            self._mailbox.append(reason)
            logger.debug("Cycle in flight, queued reason", extra={"reason": reason})
            return CycleResult(reason=reason, status=CycleStatus.QUEUED, end_time=datetime.now(UTC))

        self._running = True
        try:
            return await self._execute(reason)
        except Exception as e:
            self._record_failure(reason, e)
            raise
        finally:
            self._running = False
            self._start_queued_cycle()

    async def notify_external_change(self, reason: str) -> CycleResult:
        """Entry point for configuration-change callbacks from the host."""
        if self.is_suppressed():
            logger.debug("Ignoring change inside suppression window", extra={"reason": reason})
            return CycleResult(
                reason=reason, status=CycleStatus.SUPPRESSED, end_time=datetime.now(UTC)
            )
        return await self.run_cycle(reason)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, initial_reason: str | None = STARTUP_REASON) -> None:
        """Start the periodic timer on the running event loop."""
        if self._timer_task is not None and not self._timer_task.done():
            return
        self._shutdown_event.clear()
        self._timer_task = asyncio.get_running_loop().create_task(
            self._timer_loop(initial_reason)
        )
        logger.info(
            "Scheduler started",
            extra={"interval_seconds": self._interval, "auto_apply": self._auto_apply},
        )

    async def stop(self) -> None:
        """Stop the timer. A cycle already in flight runs to completion."""
        self._shutdown_event.set()
        if self._timer_task is not None:
            await self._timer_task
            self._timer_task = None
        await self.wait_idle()
        logger.info("Scheduler stopped")

    async def wait(self) -> None:
        """Block until stop() is called."""
        await self._shutdown_event.wait()
        if self._timer_task is not None:
            await self._timer_task

    async def wait_idle(self) -> None:
        """Wait for any queued follow-up cycles to finish."""
        while self._followups:
            await asyncio.gather(*list(self._followups))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _execute(self, reason: str) -> CycleResult:
        result = CycleResult(reason=reason, status=CycleStatus.COMPLETED)
        engine = self._engine

        engine.ensure_layout()
        config = engine.load_config()
        diagnostics = engine.diagnostics(config)

        engine.capture_snapshots(config)
        fingerprint = engine.snapshot_fingerprint()
        if reason == PERIODIC_REASON and fingerprint == self._last_fingerprint:
            result.status = CycleStatus.UNCHANGED
            result.end_time = datetime.now(UTC)
            logger.debug("No snapshot changes, skipping rebuild", extra={"reason": reason})
            return result

        build = engine.build_and_persist(config)

        if self._auto_apply:
            self._open_suppression_window()
            summaries = await engine.apply_plans(config, build.plans, diagnostics)
            # Reopened so the window also covers writes made late in a retried apply
            self._open_suppression_window()
            result.applied = {tool: s.counts() for tool, s in summaries.items()}

            engine.capture_snapshots(config)
            build = engine.build_and_persist(config)
            fingerprint = engine.snapshot_fingerprint()

        self._last_fingerprint = fingerprint
        result.revision = build.revision
        result.action_counts = build.action_counts()
        result.end_time = datetime.now(UTC)

        diagnostics.append_runtime(
            "INFO",
            "scheduler",
            "Cycle complete",
            {
                **result.to_log_data(),
                "tools": list(build.registry.tools),
                "propagate_delete": config.propagate_delete,
            },
        )
        return result

    def _open_suppression_window(self) -> None:
        self._suppressed_until = self._clock() + self._suppress_seconds

    def _start_queued_cycle(self) -> None:
        if not self._mailbox:
            return
        reasons = list(self._mailbox)
        self._mailbox.clear()
        reason = QUEUED_REASON_PREFIX + ",".join(reasons)

        task = asyncio.get_running_loop().create_task(self._run_queued(reason))
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)

    async def _run_queued(self, reason: str) -> None:
        try:
            await self.run_cycle(reason)
        except Exception:
            logger.exception("Queued cycle failed", extra={"reason": reason})

    async def _timer_loop(self, initial_reason: str | None) -> None:
        if initial_reason is not None:
            await self._run_guarded(initial_reason)

        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            if self._shutdown_event.is_set():
                break
            await self._run_guarded(PERIODIC_REASON)

    async def _run_guarded(self, reason: str) -> None:
        try:
            await self.run_cycle(reason)
        except Exception:
            logger.exception("Cycle failed", extra={"reason": reason})

    def _record_failure(self, reason: str, error: Exception) -> None:
        try:
            diagnostics = self._engine.diagnostics(self._engine.load_config())
            diagnostics.append_error(
                "scheduler",
                f"Cycle failed ({reason})",
                error=f"{type(error).__name__}: {error}",
            )
        except OSError:
            logger.exception("Could not record cycle failure", extra={"reason": reason})
