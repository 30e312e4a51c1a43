"""
Pytest configuration and shared fixtures for Tidemark tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator

# Add src and the repository root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from tidemark.models import Collection, CollectionSpec
from tidemark.storage import MemoryStore
from tidemark.sync import SyncEngine
from tidemark.utils.config import SyncConfig
from tidemark.utils.logging import setup_logging

from tests.fixtures import FakeRemote, RecordFixtures


@pytest.fixture(scope="session", autouse=True)
def test_logging() -> Generator[Path, None, None]:
    """Route structured logs to files so stdout stays clean."""
    log_dir = Path(tempfile.mkdtemp())
    setup_logging(
        app_name="tidemark-test",
        log_level="DEBUG",
        log_dir=log_dir,
        enable_console=False,
        enable_metrics=False,
    )
    yield log_dir
    shutil.rmtree(log_dir, ignore_errors=True)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def todos() -> Collection:
    """A bare todos collection."""
    return Collection(CollectionSpec(**RecordFixtures.TODOS))


@pytest.fixture
def make_engine(store, remote):
    """Factory for engines with the todos collection declared.

    Push sync is off unless requested so tests drive cycles explicitly.
    """
    def _make(store=store, transport=remote, collections=(RecordFixtures.TODOS,), **overrides) -> SyncEngine:
        overrides.setdefault("push_sync", False)
        engine = SyncEngine(store=store, transport=transport, config=SyncConfig(**overrides))
        for declaration in collections:
            engine.declare_collection(**declaration)
        return engine
    return _make


@pytest.fixture
async def engine(make_engine):
    """A ready engine that has completed one empty cycle."""
    engine = make_engine()
    await engine.sync()
    yield engine
    await engine.stop()
