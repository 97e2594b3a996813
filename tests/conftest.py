import os
import sys
from datetime import datetime

import pytest

# Make the package and the shared test helpers importable without installing
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.abspath(os.path.join(TESTS_DIR, '..', 'src')))
sys.path.insert(0, TESTS_DIR)

from backup_retention.engine.clock import FixedClock
from backup_retention.engine.state import EventLog
from backup_retention.storage.catalog import BackupUnitCatalog

from common.fixtures import GB, FakeAccountant, FakeArchiver, FakeCopier, make_pool


@pytest.fixture
def now():
    """Monday 19 October 2026, 12:00"""
    return datetime(2026, 10, 19, 12, 0, 0)


@pytest.fixture
def clock(now):
    return FixedClock(now)


@pytest.fixture
def catalog():
    return BackupUnitCatalog(timeout=30)


@pytest.fixture
def accountant():
    return FakeAccountant(default=100 * GB)


@pytest.fixture
def copier():
    return FakeCopier()


@pytest.fixture
def archiver():
    return FakeArchiver()


@pytest.fixture
def event_log(tmp_path):
    return EventLog(tmp_path / "state" / "events.jsonl")


@pytest.fixture
def source_dir(tmp_path):
    """A small project tree to back up."""
    source = tmp_path / "prj"
    (source / "app").mkdir(parents=True)
    (source / "app" / "main.py").write_text("print('hello')\n")
    (source / "README.md").write_text("# prj\n")
    return source


@pytest.fixture
def snapshot_pool(tmp_path, source_dir):
    return make_pool(tmp_path / "snapshots", "snapshot", policy="snapshot", source=source_dir)
