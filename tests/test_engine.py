"""Tests for the reconciliation engine steps."""

import json
from pathlib import Path

import pytest
from fake_connectors import FakeConnector, RecordingSleep

from toolsync.config import ToolSyncConfig
from toolsync.engine import SyncEngine
from toolsync.models import ItemType
from toolsync.storage import read_json, write_json


def _write_config(engine: SyncEngine, **fields: object) -> ToolSyncConfig:
    config = ToolSyncConfig(**fields)
    write_json(engine.layout.config_file, config.to_json_dict())
    return config


class TestLayoutAndState:
    """Tests for layout creation, config and state loading."""

    def test_ensure_layout_creates_dirs_and_default_config(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path / "root")

        engine.ensure_layout()

        for directory in engine.layout.directories():
            assert directory.is_dir()
        assert read_json(engine.layout.config_file, None) == ToolSyncConfig().to_json_dict()

    def test_ensure_layout_keeps_existing_config(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        write_json(engine.layout.config_file, {"tools": ["only"]})

        engine.ensure_layout()

        assert read_json(engine.layout.config_file, None) == {"tools": ["only"]}

    def test_corrupt_config_uses_defaults(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.layout.config_file.write_text("{broken", encoding="utf-8")

        assert engine.load_config() == ToolSyncConfig()

    def test_non_utf8_config_uses_defaults(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.layout.config_file.write_bytes(b"\xff{}")

        assert engine.load_config() == ToolSyncConfig()

    @pytest.mark.parametrize(
        "content",
        ["", "[]", '{"revision": "3"}', '{"revision": true}'],
    )
    def test_bad_state_defaults_to_zero(self, tmp_path: Path, content: str) -> None:
        engine = SyncEngine(tmp_path)
        engine.layout.state_file.write_text(content, encoding="utf-8")

        state = engine.load_state()

        assert state.revision == 0
        assert state.last_run_at is None


class TestBuildAndPersist:
    """Tests for build_and_persist."""

    def test_revision_increments_by_one_per_build(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.ensure_layout()
        config = _write_config(engine, tools=["A", "B"])

        revisions = [engine.build_and_persist(config).revision for _ in range(3)]

        assert revisions == [1, 2, 3]
        state = read_json(engine.layout.state_file, None)
        assert state["revision"] == 3
        assert state["lastRunAt"] is not None

    def test_cold_start_continues_from_persisted_revision(self, tmp_path: Path) -> None:
        first = SyncEngine(tmp_path)
        first.ensure_layout()
        config = _write_config(first, tools=["A"])
        first.build_and_persist(config)
        first.build_and_persist(config)

        second = SyncEngine(tmp_path)

        assert second.build_and_persist(config).revision == 3

    def test_persists_registry_and_plans(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.ensure_layout()
        config = _write_config(engine, tools=["A", "B"])
        write_json(engine.layout.snapshot_file("A"), {"extension": ["X"]})
        write_json(engine.layout.snapshot_file("B"), {"extension": []})

        build = engine.build_and_persist(config)

        registry = read_json(engine.layout.registry_file, None)
        assert registry["revision"] == build.revision
        assert registry["byType"]["extension"] == {"X": ["A"]}
        plan_b = read_json(engine.layout.plan_file("B"), None)
        assert plan_b["actionCount"] == 1
        assert plan_b["actions"] == [
            {"action": "install", "type": "extension", "name": "X", "sourceTools": ["A"]}
        ]
        assert build.action_counts() == {"A": 0, "B": 1}

    def test_malformed_snapshot_only_degrades_its_tool(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.ensure_layout()
        config = _write_config(engine, tools=["A", "B", "C"])
        write_json(engine.layout.snapshot_file("A"), {"mcp": ["github"]})
        engine.layout.snapshot_file("B").write_text("not json", encoding="utf-8")

        build = engine.build_and_persist(config)

        assert build.plans["B"].action_count == 1
        assert build.plans["C"].action_count == 1


class TestCaptureSnapshots:
    """Tests for snapshot capture through connectors."""

    def test_writes_snapshot_for_local_connectors(self, tmp_path: Path) -> None:
        connector = FakeConnector(
            env={"TZ": "UTC", "HOME": "/home/me"}, extension={"b", "a"}, mcp={"fs"}
        )
        engine = SyncEngine(tmp_path, {"vscode": connector})
        engine.ensure_layout()
        config = _write_config(engine, tools=["vscode", "cursor"], allow_env_keys=["TZ"])

        captured = engine.capture_snapshots(config)

        assert captured == ["vscode"]
        snapshot = read_json(engine.layout.snapshot_file("vscode"), None)
        assert snapshot["tool"] == "vscode"
        assert snapshot["extension"] == ["a", "b"]
        assert snapshot["mcp"] == ["fs"]
        assert snapshot["env"] == {"TZ": "UTC"}
        assert not engine.layout.snapshot_file("cursor").exists()

    def test_unchanged_snapshot_not_rewritten(self, tmp_path: Path) -> None:
        connector = FakeConnector(extension={"a"})
        engine = SyncEngine(tmp_path, {"vscode": connector})
        engine.ensure_layout()
        config = _write_config(engine, tools=["vscode"])

        engine.capture_snapshots(config)
        before = engine.layout.snapshot_file("vscode").read_text(encoding="utf-8")

        assert engine.capture_snapshots(config) == []
        assert engine.layout.snapshot_file("vscode").read_text(encoding="utf-8") == before

        connector.installed[ItemType.EXTENSION].add("b")
        assert engine.capture_snapshots(config) == ["vscode"]

    def test_fingerprint_tracks_content(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.ensure_layout()
        write_json(engine.layout.snapshot_file("A"), {"extension": ["X"]})

        first = engine.snapshot_fingerprint()
        assert engine.snapshot_fingerprint() == first

        write_json(engine.layout.snapshot_file("A"), {"extension": ["Y"]})
        assert engine.snapshot_fingerprint() != first


class TestApplyPlans:
    """Tests for apply_plans."""

    @pytest.mark.asyncio
    async def test_applies_only_tools_with_connectors(self, tmp_path: Path) -> None:
        source = FakeConnector(extension={"X"}, env={"TZ": "UTC"})
        target = FakeConnector()
        engine = SyncEngine(
            tmp_path, {"A": source, "B": target}, sleep=RecordingSleep()
        )
        engine.ensure_layout()
        config = _write_config(engine, tools=["A", "B", "remote"], allow_env_keys=["TZ"])
        engine.capture_snapshots(config)
        build = engine.build_and_persist(config)

        summaries = await engine.apply_plans(config, build.plans, engine.diagnostics(config))

        assert set(summaries) == {"B"}
        assert summaries["B"].counts() == {"ok": 2, "fail": 0, "skipped": 0}
        assert target.installed[ItemType.EXTENSION] == {"X"}
        assert target.env == {"TZ": "UTC"}
        assert build.plans["remote"].action_count == 2

    def test_generate_report(self, tmp_path: Path) -> None:
        engine = SyncEngine(tmp_path)
        engine.ensure_layout()

        path = engine.generate_report("manual")

        report = json.loads(path.read_text(encoding="utf-8"))
        assert report["reason"] == "manual"
        assert report["config"]["tools"] == ToolSyncConfig().tools
