"""Sync root layout and JSON file primitives.

Reads never raise: a missing or corrupt file is reported as a ParseError
inside a JsonReadResult, and read sites coerce that to a typed default.
Writes are atomic (temp file + rename) and let OSError propagate.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncLayout:
    """Paths inside a sync root."""

    root: Path

    @property
    def config_file(self) -> Path:
        return self.root / "config.json"

    @property
    def state_file(self) -> Path:
        return self.root / "state.json"

    @property
    def registry_file(self) -> Path:
        return self.root / "registry.json"

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def plans_dir(self) -> Path:
        return self.root / "plans"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def archive_dir(self) -> Path:
        return self.logs_dir / "archive"

    @property
    def reports_dir(self) -> Path:
        return self.root / "reports"

    def snapshot_file(self, tool: str) -> Path:
        return self.snapshots_dir / f"{tool}.json"

    def plan_file(self, tool: str) -> Path:
        return self.plans_dir / f"{tool}.json"

    def directories(self) -> tuple[Path, ...]:
        return (
            self.root,
            self.snapshots_dir,
            self.plans_dir,
            self.logs_dir,
            self.archive_dir,
            self.reports_dir,
        )


@dataclass(frozen=True)
class ParseError:
    """Why a JSON file could not be read."""

    path: Path
    reason: str
    missing: bool = False


@dataclass(frozen=True)
class JsonReadResult:
    """Outcome of reading one JSON file: a value or a ParseError."""

    value: Any = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.error is None else default


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_json_result(path: Path) -> JsonReadResult:
    """Read and parse a JSON file without raising."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return JsonReadResult(error=ParseError(path, "file not found", missing=True))
    except OSError as e:
        return JsonReadResult(error=ParseError(path, f"unreadable: {e}"))
    except UnicodeDecodeError as e:
        logger.debug("Ignoring non-UTF-8 file", extra={"path": str(path), "error": str(e)})
        return JsonReadResult(error=ParseError(path, f"invalid encoding: {e}"))

    try:
        return JsonReadResult(value=json.loads(raw))
    except json.JSONDecodeError as e:
        logger.debug("Ignoring malformed JSON", extra={"path": str(path), "error": str(e)})
        return JsonReadResult(error=ParseError(path, f"invalid JSON: {e}"))


def read_json(path: Path, fallback: Any) -> Any:
    """Read a JSON file, returning ``fallback`` when missing or malformed."""
    return read_json_result(path).unwrap_or(fallback)


def read_json_object(path: Path) -> dict[str, Any]:
    """Read a JSON file expected to hold an object; anything else is ``{}``."""
    value = read_json(path, {})
    return value if isinstance(value, dict) else {}


def write_json(path: Path, data: Any) -> None:
    """Atomically write ``data`` as indented JSON with a trailing newline."""
    ensure_dir(path.parent)
    payload = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def list_json(directory: Path) -> list[Path]:
    """JSON files directly inside ``directory``, sorted by name."""
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix == ".json" and p.is_file())
