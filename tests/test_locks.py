"""Tests for scheduler locks, maintenance mode and notifications."""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from models import ExecutionResult, ResultStatus, ScheduleLock, TaskSnapshot, FrequencySchedule
from scheduler.locks import DatabaseLockService, InMemoryLockService, one_server_key, overlap_key
from scheduler.notifications import NotificationDispatcher


@pytest.fixture(params=["memory", "database"])
def lock_service(request, db_manager):
    if request.param == "memory":
        return InMemoryLockService()
    return DatabaseLockService(db_manager)


class TestLocks:
    def test_keys(self):
        due = datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc)
        assert one_server_key(7, due) == "one-server:7:2024-01-01T10:05:00+00:00"
        assert overlap_key(7) == "overlap:7"

    def test_acquire_is_exclusive(self, lock_service):
        assert lock_service.acquire("job", "server-a", ttl=60) is True
        assert lock_service.acquire("job", "server-b", ttl=60) is False
        assert lock_service.is_held("job") is True

    def test_holder_can_reacquire(self, lock_service):
        assert lock_service.acquire("job", "server-a", ttl=60) is True
        assert lock_service.acquire("job", "server-a", ttl=60) is True

    def test_release(self, lock_service):
        lock_service.acquire("job", "server-a", ttl=60)

        assert lock_service.release("job", "server-b") is False
        assert lock_service.is_held("job") is True

        assert lock_service.release("job", "server-a") is True
        assert lock_service.is_held("job") is False
        assert lock_service.acquire("job", "server-b", ttl=60) is True

    def test_keys_are_independent(self, lock_service):
        assert lock_service.acquire("one", "server-a", ttl=60) is True
        assert lock_service.acquire("two", "server-b", ttl=60) is True

    def test_expired_lease_can_be_taken(self, lock_service):
        # A zero TTL lease is already expired
        assert lock_service.acquire("job", "server-a", ttl=0) is True
        assert lock_service.is_held("job") is False
        assert lock_service.acquire("job", "server-b", ttl=60) is True

    def test_database_lease_row(self, db_manager):
        service = DatabaseLockService(db_manager)
        service.acquire("job", "server-a", ttl=60)

        with db_manager.get_session() as session:
            row = session.get(ScheduleLock, "job")
            assert row.owner == "server-a"
            assert row.expires_at - row.acquired_at == timedelta(seconds=60)


    def test_expired_leases_of_other_keys_are_purged(self, db_manager):
        service = DatabaseLockService(db_manager)
        # left behind by a holder that crashed mid-run
        service.acquire("one-server:3:2024-01-01T10:05:00+00:00", "server-a", ttl=0)
        service.acquire("overlap:4", "server-a", ttl=60)

        service.acquire("job", "server-b", ttl=60)

        with db_manager.get_session() as session:
            keys = sorted(row.lock_key for row in session.query(ScheduleLock).all())
        assert keys == ["job", "overlap:4"]


class TestMaintenanceMode:
    def test_flag_file(self, maintenance):
        assert maintenance.is_active() is False
        assert maintenance.message() == ""

        maintenance.enable("Database upgrade")
        assert maintenance.is_active() is True
        assert maintenance.message() == "Database upgrade"
        assert maintenance.flag_file.exists()

        maintenance.disable()
        assert maintenance.is_active() is False

    def test_disable_when_inactive(self, maintenance):
        maintenance.disable()
        assert maintenance.is_active() is False


def make_snapshot(**overrides):
    fields = dict(
        id=1,
        description="Backup",
        command="record",
        parameters="",
        schedule=FrequencySchedule("daily"),
        timezone="UTC",
    )
    fields.update(overrides)
    return TaskSnapshot(**fields)


def make_result(status=ResultStatus.FAILURE):
    now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    return ExecutionResult(task_id=1, status=status, started_at=now, finished_at=now,
                           duration=1.5, server_id="server-a", error="Exit code: 1")


class TestNotifications:
    def test_emit_to_listeners(self):
        listener = Mock()
        dispatcher = NotificationDispatcher([listener])
        task = make_snapshot(notification_slack_webhook="https://hooks.slack.com/services/T/B/X")

        intent = dispatcher.emit(task, make_result())

        listener.assert_called_once_with(intent)
        assert intent.targets == {"webhook": "https://hooks.slack.com/services/T/B/X"}
        assert intent.summary == "Task 'Backup' finished with failure in 1.50 seconds"
        assert intent.to_dict()["result"]["status"] == "failure"

    def test_no_targets_no_intent(self):
        listener = Mock()
        dispatcher = NotificationDispatcher([listener])

        assert dispatcher.emit(make_snapshot(), make_result()) is None
        listener.assert_not_called()

    def test_skipped_run_is_not_notified(self):
        listener = Mock()
        dispatcher = NotificationDispatcher([listener])
        task = make_snapshot(notification_email_address="ops@example.com")

        assert dispatcher.emit(task, make_result(ResultStatus.SKIPPED_OVERLAP)) is None
        listener.assert_not_called()

    def test_failing_listener_is_isolated(self):
        broken = Mock(side_effect=RuntimeError("smtp down"))
        listener = Mock()
        dispatcher = NotificationDispatcher([broken, listener])
        task = make_snapshot(notification_phone_number="4915112345678")

        intent = dispatcher.emit(task, make_result())

        broken.assert_called_once()
        listener.assert_called_once_with(intent)
