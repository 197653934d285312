"""Runtime/error logs with size-based rotation, and diagnostic reports.

Two newline-delimited JSON logs live under ``logs/``:
- runtime.log: every engine event (at, level, source, message, data)
- errors.ndjson: failures only (at, source, message, action, error)

After each append the file size is checked. Once it exceeds the
configured threshold the file is moved to ``logs/archive/<prefix>-<ts>.log``
and a fresh file starts on the next append. Only the newest
``keep_archive_files`` archives per prefix (by mtime) are retained.

Runtime records are mirrored to the stdlib logger ``toolsync.<source>``
so the same events reach stdout when the daemon runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import ToolSyncConfig
from .models import compact_timestamp, utc_now_iso
from .storage import SyncLayout, ensure_dir, read_json_object, write_json

logger = logging.getLogger(__name__)

RUNTIME_LOG_NAME = "runtime.log"
ERROR_LOG_NAME = "errors.ndjson"
RUNTIME_ARCHIVE_PREFIX = "runtime"
ERROR_ARCHIVE_PREFIX = "errors"

_STDLIB_LEVELS = {
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass(frozen=True)
class LogPolicy:
    """Rotation and report settings, taken from ``config.json``."""

    max_log_size_kb: int = 1024
    keep_archive_files: int = 5
    report_tail_lines: int = 200

    @classmethod
    def from_config(cls, config: ToolSyncConfig) -> LogPolicy:
        return cls(
            max_log_size_kb=config.log_max_size_kb,
            keep_archive_files=config.log_keep_archives,
            report_tail_lines=config.report_tail_lines,
        )


def read_tail_lines(path: Path, line_count: int) -> list[str]:
    """Last ``line_count`` non-empty lines of a text file (empty if missing)."""
    if not path.exists():
        return []
    lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line]
    return lines[-line_count:] if line_count > 0 else []


class DiagnosticsLog:
    """Append-only structured logs and on-demand diagnostic reports."""

    def __init__(self, layout: SyncLayout, policy: LogPolicy) -> None:
        self._layout = layout
        self._policy = policy

    @property
    def policy(self) -> LogPolicy:
        return self._policy

    @property
    def runtime_log_file(self) -> Path:
        return self._layout.logs_dir / RUNTIME_LOG_NAME

    @property
    def error_log_file(self) -> Path:
        return self._layout.logs_dir / ERROR_LOG_NAME

    def append_runtime(
        self,
        level: str,
        source: str,
        message: str,
        data: Any = None,
    ) -> None:
        """Append one record to the runtime log and mirror it to stdlib logging.

        Args:
            level: "INFO", "WARN" or "ERROR".
            source: Component that produced the event (e.g. "engine", "apply").
            message: Human-readable summary.
            data: Optional JSON-serializable payload.
        """
        record: dict[str, Any] = {
            "at": utc_now_iso(),
            "level": level,
            "source": source,
            "message": message,
        }
        if data is not None:
            record["data"] = data

        self._append_line(self.runtime_log_file, json.dumps(record, ensure_ascii=False))
        self._rotate_if_needed(self.runtime_log_file, RUNTIME_ARCHIVE_PREFIX)

        logging.getLogger(f"toolsync.{source}").log(
            _STDLIB_LEVELS.get(level, logging.INFO),
            message,
            extra={"data": data} if data is not None else None,
        )

    def append_error(
        self,
        source: str,
        message: str,
        *,
        action: Any = None,
        error: str | None = None,
    ) -> None:
        """Append one failure event to the error log."""
        event: dict[str, Any] = {
            "at": utc_now_iso(),
            "source": source,
            "message": message,
        }
        if action is not None:
            event["action"] = action
        if error is not None:
            event["error"] = error

        self._append_line(self.error_log_file, json.dumps(event, ensure_ascii=False))
        self._rotate_if_needed(self.error_log_file, ERROR_ARCHIVE_PREFIX)

    def generate_report(self, reason: str) -> Path:
        """Bundle config, state, a registry summary and log tails into one report.

        The logs are only read, never modified.

        Returns:
            Path of the written ``reports/diagnostic-<ts>.json``.
        """
        ensure_dir(self._layout.reports_dir)
        report_path = self._unique_path(
            self._layout.reports_dir, f"diagnostic-{compact_timestamp()}", ".json"
        )

        config = read_json_object(self._layout.config_file)
        state = read_json_object(self._layout.state_file)
        registry = read_json_object(self._layout.registry_file)
        tools = registry.get("tools")

        report = {
            "generatedAt": utc_now_iso(),
            "reason": reason,
            "config": config,
            "state": state,
            "registrySummary": {
                "revision": registry.get("revision"),
                "updatedAt": registry.get("updatedAt"),
                "tools": tools if isinstance(tools, list) else [],
            },
            "runtimeTail": read_tail_lines(self.runtime_log_file, self._policy.report_tail_lines),
            "errorTail": read_tail_lines(self.error_log_file, self._policy.report_tail_lines),
        }

        write_json(report_path, report)
        logger.info("Diagnostic report written", extra={"path": str(report_path)})
        return report_path

    def archives(self, prefix: str) -> list[Path]:
        """Archive files for a log prefix, newest first."""
        archive_dir = self._layout.archive_dir
        if not archive_dir.is_dir():
            return []
        files = [p for p in archive_dir.iterdir() if p.is_file() and p.name.startswith(f"{prefix}-")]
        return sorted(files, key=lambda p: (p.stat().st_mtime_ns, p.name), reverse=True)

    def _append_line(self, path: Path, line: str) -> None:
        ensure_dir(path.parent)
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def _rotate_if_needed(self, path: Path, prefix: str) -> None:
        if not path.exists():
            return
        if path.stat().st_size <= self._policy.max_log_size_kb * 1024:
            return

        ensure_dir(self._layout.archive_dir)
        archived = self._unique_path(self._layout.archive_dir, f"{prefix}-{compact_timestamp()}", ".log")
        path.rename(archived)

        for stale in self.archives(prefix)[self._policy.keep_archive_files :]:
            stale.unlink(missing_ok=True)

    @staticmethod
    def _unique_path(directory: Path, stem: str, suffix: str) -> Path:
        candidate = directory / f"{stem}{suffix}"
        counter = 1
        while candidate.exists():
            candidate = directory / f"{stem}-{counter}{suffix}"
            counter += 1
        return candidate
