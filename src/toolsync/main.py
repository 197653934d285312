"""Main entry point for the ToolSync reconciliation daemon.

Runs the cycle scheduler against the sync root named by TOOLSYNC_ROOT until
SIGTERM/SIGINT. Connectors are supplied by the host process embedding the
engine; the standalone daemon reconciles registry and plans from the
snapshot files connectors write into the sync root.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Mapping
from datetime import UTC, datetime

from .config import ConfigurationError, EngineSettings
from .connectors import Connector
from .engine import SyncEngine
from .scheduler import CycleScheduler

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_RECORD_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def build_scheduler(
    settings: EngineSettings,
    connectors: Mapping[str, Connector] | None = None,
) -> CycleScheduler:
    """Wire an engine and scheduler from process settings."""
    engine = SyncEngine(settings.sync_root, connectors)
    return CycleScheduler(
        engine,
        interval_seconds=settings.cycle_interval_seconds,
        auto_apply=settings.auto_apply,
        suppress_seconds=settings.suppress_seconds,
    )


async def serve(
    settings: EngineSettings,
    connectors: Mapping[str, Connector] | None = None,
) -> int:
    """Run the scheduler until a shutdown signal arrives.

    Returns:
        Exit code (0 for a clean shutdown).
    """
    logger = logging.getLogger(__name__)
    scheduler = build_scheduler(settings, connectors)

    logger.info(
        "Starting ToolSync daemon",
        extra={
            "sync_root": str(settings.sync_root),
            "interval_seconds": settings.cycle_interval_seconds,
            "auto_apply": settings.auto_apply,
        },
    )

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        loop.create_task(scheduler.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    scheduler.start()
    try:
        await scheduler.wait()
        await scheduler.wait_idle()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Daemon stopped")
    return 0


async def main() -> int:
    """Load settings from the environment and run the daemon."""
    try:
        settings = EngineSettings.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(settings.log_level)
    return await serve(settings)


def run() -> None:
    """Entry point for the daemon console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
