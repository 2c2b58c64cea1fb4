"""Shared fixtures."""

import pytest
from datetime import datetime, timezone
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from database import DatabaseManager
from executors import CommandCatalog, CallableExecutor
from scheduler import SchedulerManager
from scheduler.locks import DatabaseLockService
from scheduler.maintenance import MaintenanceMode


class FakeClock:
    """Settable clock handed to the scheduler instead of utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int, day: int = 1):
        self.now = datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def db_manager():
    """In-memory database, tables created."""
    manager = DatabaseManager("sqlite://")
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def calls():
    """Parameters received by the test commands, in call order."""
    return []


@pytest.fixture
def commands(calls):
    def record(parameters):
        calls.append(parameters)
        return f"ran {parameters}".strip()

    def fail(parameters):
        calls.append(parameters)
        return 3

    def boom(parameters):
        raise RuntimeError("boom")

    catalog = CommandCatalog()
    catalog.register("record", CallableExecutor(record), "Record the call")
    catalog.register("fail", CallableExecutor(fail), "Exit with code 3")
    catalog.register("boom", CallableExecutor(boom), "Raise an error")
    return catalog


@pytest.fixture
def clock():
    return FakeClock(at(10, 0))


@pytest.fixture
def maintenance(tmp_path):
    return MaintenanceMode(str(tmp_path / "maintenance"))


@pytest.fixture
def scheduler(db_manager, commands, clock, maintenance):
    """Scheduler on the shared in-memory database, not started."""
    return SchedulerManager(
        db_manager,
        commands=commands,
        lock_service=DatabaseLockService(db_manager),
        maintenance=maintenance,
        server_id="server-a",
        clock=clock,
        timezone="UTC"
    )
