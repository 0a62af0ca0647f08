"""
API tests through FastAPI TestClient.

The whole service graph is replaced with the in-memory test container via
app.dependency_overrides[get_container]; startup events are not run, so no
Redis connection is attempted.

Tests validate:
- Happy path: register → heartbeat → availability → rent → stop
- Error mapping: error_code → HTTP status with ErrorResponse body
- Device and webhook endpoints
- Admin endpoints (override, reset, users, jobs)
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from vacuum_backend.core.dependency import get_container
from vacuum_backend.main import app
from vacuum_backend.exceptions import PaymentGatewayError
from vacuum_backend.models.enums import MachineStatus, PaymentStatus
from vacuum_backend.services.payment_service import Deferred, PaymentState


@pytest.fixture
def client(container):
    app.dependency_overrides[get_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def pix_gateway(container):
    gateway = AsyncMock()
    gateway.create_charge.return_value = Deferred(payment_id="mp-77", amount=Decimal("10.00"), qr_code="000201PIX")
    container.payment_service.pix_gateway = gateway
    return gateway


def register(client, code="VAC-001", **overrides):
    body = {"code": code, "location": "Posto Teste", "maintenance_interval_hours": 100, **overrides}
    response = client.post("/api/admin/machines", json=body)
    assert response.status_code == 201
    return response.json()


def create_user(client, email="cliente@example.com", balance=100):
    response = client.post("/api/admin/users", json={"email": email, "name": "Cliente", "initial_balance": balance})
    assert response.status_code == 201
    return response.json()


def heartbeat(client, machine_id):
    response = client.post(f"/api/devices/{machine_id}/heartbeat", json={"controller_id": "rpi-1", "temperature": 38.0})
    assert response.status_code == 200
    return response.json()


class TestRentalFlow:

    def test_register_heartbeat_rent_stop(self, client, container, clock):
        machine = register(client)
        assert machine["status"] == "offline"

        beat = heartbeat(client, machine["id"])
        assert beat["success"] is True
        assert beat["status"] == "offline"

        availability = client.get(f"/api/machines/{machine['id']}/availability").json()
        assert availability["available"] is True
        assert availability["machine"]["status"] == "online"

        user = create_user(client)
        response = client.post("/api/sessions", json={
            "user_id": user["id"],
            "machine_id": machine["id"],
            "duration_minutes": 10,
            "payment_method": "balance"
        })
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["session"]["status"] == "active"
        session_id = body["session"]["id"]

        active = client.get(f"/api/machines/{machine['id']}/active-session").json()
        assert active["id"] == session_id

        clock.advance(minutes=2)
        heartbeat(client, machine["id"])
        stopped = client.post(f"/api/sessions/{session_id}/stop")
        assert stopped.status_code == 200
        assert stopped.json()["status"] == "completed"
        assert stopped.json()["actual_minutes_used"] == 2
        assert stopped.json()["termination_cause"] == "user_stop"

        stored = client.get(f"/api/machines/{machine['id']}").json()
        assert stored["status"] == "online"
        assert stored["current_operating_minutes"] == 2

        sessions = client.get(f"/api/users/{user['id']}/sessions").json()
        assert [s["id"] for s in sessions] == [session_id]

    def test_second_rental_conflict(self, client, make_machine, make_user):
        machine = make_machine()
        first = make_user(email="a@example.com")
        second = make_user(email="b@example.com")
        payload = {"machine_id": machine.id, "duration_minutes": 10, "payment_method": "balance"}

        assert client.post("/api/sessions", json={**payload, "user_id": first.id}).status_code == 201
        response = client.post("/api/sessions", json={**payload, "user_id": second.id})

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "MACHINE_BUSY"

    def test_lookup_by_code(self, client, make_machine):
        machine = make_machine(code="VAC-042")

        response = client.get("/api/machines/code/vac-042")

        assert response.status_code == 200
        assert response.json()["id"] == machine.id


class TestErrorMapping:

    def test_invalid_duration_400(self, client, make_machine, make_user):
        machine = make_machine()
        user = make_user()

        response = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 0
        })

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_insufficient_balance_402(self, client, make_machine, make_user):
        machine = make_machine()
        user = make_user(balance=Decimal("1.00"))

        response = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 10
        })

        assert response.status_code == 402
        assert response.json()["error"] == "PAYMENT_DECLINED"

    def test_unknown_machine_404(self, client):
        response = client.get("/api/machines/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "MACHINE_NOT_FOUND"

    def test_maintenance_blocked_409(self, client, make_machine, make_user):
        machine = make_machine(status=MachineStatus.MAINTENANCE)
        user = make_user()

        response = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 5
        })

        assert response.status_code == 409
        assert response.json()["error"] == "MAINTENANCE_BLOCKED"

    def test_heartbeat_required_409(self, client, make_machine, make_user):
        machine = make_machine(status=MachineStatus.OFFLINE, heartbeat_age_seconds=None)
        user = make_user()

        response = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 5
        })

        assert response.status_code == 409
        assert response.json()["error"] == "HEARTBEAT_REQUIRED"
        assert response.json()["data"]["age_seconds"] is None

    def test_stop_unknown_session_404(self, client):
        response = client.post("/api/sessions/nope/stop")

        assert response.status_code == 404
        assert response.json()["error"] == "SESSION_NOT_FOUND"


class TestDeviceAndWebhook:

    def test_session_report_for_other_machine_400(self, client, container, make_machine, make_user):
        machine = make_machine(code="VAC-001")
        other = make_machine(code="VAC-002")
        user = make_user()
        created = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 10
        }).json()

        response = client.post(
            f"/api/devices/{other.id}/session-report",
            json={"session_id": created["session"]["id"], "minutes_run": 4}
        )

        assert response.status_code == 400

    def test_session_report_completes_session(self, client, clock, make_machine, make_user):
        machine = make_machine()
        user = make_user()
        created = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 10
        }).json()

        clock.advance(minutes=10)
        heartbeat(client, machine.id)
        response = client.post(
            f"/api/devices/{machine.id}/session-report",
            json={"session_id": created["session"]["id"], "minutes_run": 10}
        )

        assert response.status_code == 200
        assert response.json()["termination_cause"] == "device_report"
        assert response.json()["actual_minutes_used"] == 10

    def test_unknown_payment_404(self, client):
        response = client.post(
            "/api/webhooks/payments",
            json={"payment_id": "mp-unknown", "status": "approved", "amount": "10.00"}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "PAYMENT_NOT_FOUND"

    def test_webhook_settles_from_gateway_record(self, client, make_machine, make_user, pix_gateway, device):
        machine = make_machine()
        user = make_user()
        created = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 10, "payment_method": "pix"
        })
        assert created.status_code == 201
        assert created.json()["session"]["status"] == "pending"
        pix_gateway.get_payment.return_value = PaymentState("mp-77", PaymentStatus.REJECTED, Decimal("10.00"))

        # Notification claims approval; Mercado Pago says otherwise
        response = client.post("/api/webhooks/payments", json={"payment_id": "mp-77", "status": "approved"})

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        pix_gateway.get_payment.assert_awaited_once_with("mp-77")
        assert device.commands == []

    def test_webhook_lookup_failure_502(self, client, make_machine, make_user, pix_gateway):
        machine = make_machine()
        user = make_user()
        client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 10, "payment_method": "pix"
        })
        pix_gateway.get_payment.side_effect = PaymentGatewayError("Mercado Pago unreachable")

        response = client.post("/api/webhooks/payments", json={"payment_id": "mp-77"})

        assert response.status_code == 502
        assert response.json()["error"] == "PAYMENT_GATEWAY_ERROR"


class TestAdmin:

    def test_admin_cannot_set_in_use(self, client, make_machine):
        machine = make_machine()

        response = client.post(
            f"/api/admin/machines/{machine.id}/status",
            json={"status": "in_use", "admin_id": "admin-1"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

    def test_override_requires_reason(self, client, make_machine):
        machine = make_machine(status=MachineStatus.MAINTENANCE)

        response = client.post(
            f"/api/admin/machines/{machine.id}/override",
            json={"active": True, "admin_id": "admin-1"}
        )

        assert response.status_code == 400

    def test_override_then_maintenance_due_listing(self, client, make_machine):
        machine = make_machine(status=MachineStatus.MAINTENANCE, operating_minutes=6000)

        response = client.post(
            f"/api/admin/machines/{machine.id}/override",
            json={"active": True, "reason": "scheduled tomorrow", "admin_id": "admin-1"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "online"
        due = client.get("/api/admin/maintenance/due").json()
        assert [m["id"] for m in due] == [machine.id]

    def test_reset_without_heartbeat_409(self, client, make_machine):
        machine = make_machine(status=MachineStatus.MAINTENANCE, heartbeat_age_seconds=None)

        response = client.post(
            f"/api/admin/machines/{machine.id}/maintenance/reset",
            json={"admin_id": "tech-1", "type": "cleaning"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "HEARTBEAT_REQUIRED"

    def test_reset_and_logs(self, client, make_machine):
        machine = make_machine(status=MachineStatus.MAINTENANCE, operating_minutes=6000)

        response = client.post(
            f"/api/admin/machines/{machine.id}/maintenance/reset",
            json={"admin_id": "tech-1", "type": "cleaning", "description": "Full cleaning"}
        )

        assert response.status_code == 200
        assert response.json()["operating_minutes_at_reset"] == 6000
        logs = client.get(f"/api/admin/machines/{machine.id}/maintenance/logs").json()
        assert len(logs) == 1
        assert logs[0]["type"] == "cleaning"

    def test_credit_user(self, client):
        user = create_user(client, balance=0)

        response = client.post(f"/api/admin/users/{user['id']}/credit", json={"amount": "25.50"})

        assert response.status_code == 200
        assert Decimal(response.json()["account_balance"]) == Decimal("25.50")

    def test_force_terminate(self, client, make_machine, make_user):
        machine = make_machine()
        user = make_user()
        created = client.post("/api/sessions", json={
            "user_id": user.id, "machine_id": machine.id, "duration_minutes": 10
        }).json()

        response = client.post(
            f"/api/admin/sessions/{created['session']['id']}/terminate",
            json={"admin_id": "admin-1"}
        )

        assert response.status_code == 200
        assert response.json()["termination_cause"] == "admin_force"
        stats = client.get("/api/admin/sessions/stats").json()
        assert stats["completed"] == 1

    def test_jobs_listed(self, client):
        jobs = client.get("/api/admin/jobs").json()

        assert {j["name"] for j in jobs} == {
            "liveness_tick",
            "expire_pending_sessions",
            "terminate_expired_sessions",
            "retry_failed_notifications"
        }
        assert all(j["running"] is False for j in jobs)

    def test_run_job_now(self, client, clock, make_machine, make_user):
        machine = make_machine()
        user = make_user()
        client.post("/api/sessions", json={"user_id": user.id, "machine_id": machine.id, "duration_minutes": 10})
        clock.advance(minutes=10)
        heartbeat(client, machine.id)

        response = client.post("/api/admin/jobs/terminate_expired_sessions/run")

        assert response.status_code == 200
        job = response.json()
        assert job["name"] == "terminate_expired_sessions"
        assert job["runs"] == 1
        assert job["last_error"] is None
        assert client.get("/api/admin/sessions/stats").json()["completed"] == 1

    def test_run_unknown_job_404(self, client):
        response = client.post("/api/admin/jobs/compact_database/run")

        assert response.status_code == 404


class TestHealthAndRealtime:

    def test_health_degraded_without_redis(self, client, make_machine):
        make_machine()

        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["redis"]["status"] == "unhealthy"
        assert body["machines"]["total"] == 1

    def test_sse_unavailable_without_redis(self, client):
        response = client.get("/api/sse/stream")

        assert response.status_code == 503
