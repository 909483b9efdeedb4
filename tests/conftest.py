"""Shared fixtures for pmflow tests."""

from pathlib import Path
from textwrap import dedent

import pytest
import structlog

from pmflow.models import LocalStoreConfig


@pytest.fixture
def store_dir(tmp_path):
    """Create an empty markdown store."""
    root = tmp_path / ".claude"
    (root / "epics").mkdir(parents=True)
    (root / "prds").mkdir()
    return root


@pytest.fixture
def write_task(store_dir):
    """Write a task file into an epic and return its path."""

    def _write(epic: str, number: str, content: str) -> Path:
        epic_dir = store_dir / "epics" / epic
        epic_dir.mkdir(parents=True, exist_ok=True)
        path = epic_dir / f"{number}.md"
        path.write_text(dedent(content).lstrip(), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def store_config(store_dir):
    """LocalStoreConfig pointing at the temporary store."""
    return LocalStoreConfig(store_dir=store_dir)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration made by CLI invocations."""
    yield
    structlog.reset_defaults()
