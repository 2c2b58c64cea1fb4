"""Tests for API endpoints."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import Mock, patch, AsyncMock
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api.http_server import app
from api.endpoints import get_scheduler
from exceptions import RetentionIOError
from models import ExecutionResult, ResultStatus

from conftest import at


@pytest.fixture
def client(scheduler):
    """Test client bound to the in-memory scheduler."""
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


def create(client, **overrides):
    payload = {
        "description": "Sync invoices",
        "command": "record",
        "frequency": "everyFiveMinutes",
    }
    payload.update(overrides)
    return client.post("/api/v1/tasks", json=payload)


class TestTaskEndpoints:
    """Test task-related endpoints."""

    def test_create_task(self, client):
        response = create(client, frequency="every five minutes", parameters="--all")

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == 1
        assert data["type"] == "frequency"
        assert data["frequency"] == "everyFiveMinutes"
        assert data["expression"] is None
        assert data["parameters"] == "--all"
        assert data["next_run_at"] == "2024-01-01T10:05:00+00:00"
        assert data["schedule_description"] == "Every Five Minutes"
        assert data["status"] == "idle"

    def test_create_with_type_drops_other_schedule(self, client):
        response = create(client, type="cron", expression="0 12 * * *")

        assert response.status_code == 201
        data = response.json()
        assert data["type"] == "cron"
        assert data["frequency"] is None
        assert data["next_run_at"] == "2024-01-01T12:00:00+00:00"

    def test_create_with_both_schedules(self, client):
        response = create(client, expression="0 12 * * *")

        assert response.status_code == 422
        assert response.json()["error"] == "ScheduleConflict"

    @pytest.mark.parametrize("overrides,error", [
        ({"frequency": None, "expression": "99 * * * *"}, "InvalidExpression"),
        ({"frequency": "fortnightly"}, "UnknownFrequency"),
        ({"timezone": "Moon/Base"}, "InvalidTimezone"),
        ({"command": "format-disk"}, "UnknownCommand"),
        ({"notification_phone_number": "123"}, "TaskValidationError"),
    ])
    def test_create_invalid_task(self, client, overrides, error):
        response = create(client, **overrides)

        assert response.status_code == 422
        assert response.json()["error"] == error

    def test_create_missing_fields(self, client):
        response = client.post("/api/v1/tasks", json={"command": "record"})
        assert response.status_code == 422

    def test_list_tasks(self, client):
        create(client, description="Task 1")
        create(client, description="Task 2", is_active=False)

        response = client.get("/api/v1/tasks")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [t["description"] for t in data["tasks"]] == ["Task 1", "Task 2"]

        response = client.get("/api/v1/tasks", params={"is_active": True})
        assert response.json()["total"] == 1

    def test_get_task(self, client):
        create(client)

        response = client.get("/api/v1/tasks/1")

        assert response.status_code == 200
        assert response.json()["description"] == "Sync invoices"

    def test_get_task_not_found(self, client):
        response = client.get("/api/v1/tasks/999")

        assert response.status_code == 404
        assert response.json()["detail"] == "Task 999 not found"

    def test_update_task(self, client):
        create(client)

        response = client.put("/api/v1/tasks/1", json={"type": "cron", "expression": "30 10 * * *"})

        assert response.status_code == 200
        data = response.json()
        assert data["expression"] == "30 10 * * *"
        assert data["frequency"] is None
        assert data["next_run_at"] == "2024-01-01T10:30:00+00:00"

    def test_update_null_timezone_falls_back_to_default(self, client):
        create(client)

        response = client.put("/api/v1/tasks/1", json={"timezone": None})

        assert response.status_code == 200
        assert response.json()["timezone"] == "UTC"

    def test_update_invalid(self, client):
        create(client)

        response = client.put("/api/v1/tasks/1", json={"expression": "nope"})

        assert response.status_code == 422
        assert client.get("/api/v1/tasks/1").json()["frequency"] == "everyFiveMinutes"

    def test_delete_task(self, client):
        create(client)

        response = client.delete("/api/v1/tasks/1")

        assert response.status_code == 200
        assert response.json()["message"] == "Task deleted successfully"
        assert client.get("/api/v1/tasks/1").status_code == 404

    def test_disable_and_enable(self, client):
        create(client)

        data = client.post("/api/v1/tasks/1/disable").json()
        assert data["is_active"] is False
        assert data["next_run_at"] is None

        data = client.post("/api/v1/tasks/1/enable").json()
        assert data["is_active"] is True
        assert data["next_run_at"] == "2024-01-01T10:05:00+00:00"


class TestExecutionEndpoints:
    def test_execute_task(self, client, calls):
        create(client, parameters="now")

        response = client.post("/api/v1/tasks/1/execute")

        assert response.status_code == 200
        data = response.json()
        assert data["result"]["status"] == "success"
        assert data["result"]["output"] == "ran now"
        assert calls == ["now"]

        results = client.get("/api/v1/tasks/1/results").json()
        assert results["total"] == 1
        assert results["results"][0]["server_id"] == "server-a"

        task = client.get("/api/v1/tasks/1").json()
        assert task["status"] == "succeeded"
        assert task["average_runtime"] is not None
        assert task["last_result"]["status"] == "success"

    def test_execute_failing_task(self, client):
        create(client, command="fail")

        response = client.post("/api/v1/tasks/1/execute")

        assert response.status_code == 200
        assert response.json()["result"]["status"] == "failure"

        results = client.get("/api/v1/tasks/1/results", params={"status": "success"}).json()
        assert results["total"] == 0

    def test_execute_while_running(self, client, scheduler):
        create(client, dont_overlap=True)
        skipped = ExecutionResult(
            task_id=1,
            status=ResultStatus.SKIPPED_OVERLAP,
            started_at=at(10, 0),
            finished_at=at(10, 0),
            duration=0.0,
            server_id="server-a"
        )

        with patch.object(scheduler, "execute_task_now", AsyncMock(return_value=skipped)):
            response = client.post("/api/v1/tasks/1/execute")

        assert response.status_code == 409

    def test_execute_not_found(self, client):
        assert client.post("/api/v1/tasks/5/execute").status_code == 404

    def test_results_not_found(self, client):
        assert client.get("/api/v1/tasks/5/results").status_code == 404

    def test_cleanup(self, client):
        create(client, auto_cleanup_type="results", auto_cleanup_num=1)
        client.post("/api/v1/tasks/1/execute")
        client.post("/api/v1/tasks/1/execute")

        response = client.post("/api/v1/tasks/1/cleanup")

        assert response.status_code == 200
        assert response.json() == {"deleted": 1}
        assert client.get("/api/v1/tasks/1/results").json()["total"] == 1

    def test_cleanup_storage_error(self, client, scheduler):
        create(client, auto_cleanup_type="results", auto_cleanup_num=1)

        with patch.object(scheduler.retention, "apply_retention", side_effect=RetentionIOError("disk full")):
            response = client.post("/api/v1/tasks/1/cleanup")

        assert response.status_code == 503


class TestCatalogEndpoints:
    def test_list_frequencies(self, client):
        response = client.get("/api/v1/frequencies")

        assert response.status_code == 200
        frequencies = response.json()["frequencies"]
        assert frequencies[0] == {"interval": "everyMinute", "label": "Every Minute", "expression": "* * * * *"}
        assert "twiceDaily" in [f["interval"] for f in frequencies]

    def test_list_commands(self, client):
        commands = client.get("/api/v1/commands").json()["commands"]

        assert [c["name"] for c in commands] == ["boom", "fail", "record"]
        assert commands[2]["description"] == "Record the call"

    def test_list_timezones(self, client):
        data = client.get("/api/v1/timezones").json()

        assert data["default"] == "UTC"
        assert "Europe/Berlin" in data["timezones"]


class TestMaintenanceEndpoints:
    def test_toggle_maintenance(self, client, maintenance):
        assert client.get("/api/v1/maintenance").json() == {"enabled": False, "message": ""}

        response = client.post("/api/v1/maintenance", json={"enabled": True, "message": "Upgrading"})
        assert response.json() == {"enabled": True, "message": "Upgrading"}
        assert maintenance.is_active() is True

        response = client.post("/api/v1/maintenance", json={"enabled": False})
        assert response.json()["enabled"] is False


class TestSchedulerEndpoints:
    """Test scheduler-related endpoints."""

    def test_get_scheduler_status(self, client):
        response = client.get("/api/v1/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        assert data["running"] is False
        assert data["server_id"] == "server-a"
        assert data["maintenance"] is False


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "CronKeeper"
        assert data["status"] == "running"

    def test_health_endpoint(self, client):
        with patch('api.http_server.scheduler_manager') as mock_scheduler:
            mock_scheduler.get_scheduler_status.return_value = {"running": True}

            response = client.get("/health")

            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "healthy"
            assert data["scheduler"]["running"] is True

    def test_health_without_scheduler(self, client):
        with patch('api.http_server.scheduler_manager', None):
            response = client.get("/health")

        assert response.json()["scheduler"] == {"running": False}
