"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for fake_connectors imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from toolsync.storage import SyncLayout  # noqa: E402


@pytest.fixture
def layout(tmp_path: Path) -> SyncLayout:
    """A fresh sync root layout under tmp_path."""
    return SyncLayout(tmp_path / "sync")
