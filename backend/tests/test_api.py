"""HTTP surface: request/response shapes, error rendering, admin and cron auth."""
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

from config.settings import Settings
from fakes import OFFICE_LON, PASSWORD, fix_at
from schemas.session import SessionStatus
from server import build_services, create_app

INTERNAL_SECRET = "internal-cron-secret"
CRON_SECRET = "platform-cron-secret"


def _settings(**overrides):
    base = dict(
        ENV="dev",
        SCHEDULER_ENABLED=False,
        INTERNAL_CRON_SECRET=INTERNAL_SECRET,
        CRON_SECRET=CRON_SECRET,
    )
    base.update(overrides)
    return Settings(_env_file=None, **base)


@contextmanager
def _client(settings, sessions, directory, clock):
    """Run the app lifespan, then swap in the in-memory stores."""
    app = create_app(settings=settings, db=MagicMock(), clock=clock)
    with TestClient(app) as client:
        build_services(app, settings, sessions, directory, clock)
        yield client


@pytest.fixture
def client(sessions, directory, clock):
    with _client(_settings(), sessions, directory, clock) as c:
        yield c


def _location(north_m=0.0, accuracy=10.0):
    fix = fix_at(north_m, accuracy)
    return {"lat": fix.lat, "lon": fix.lon, "accuracy": fix.accuracy, "locationStatus": "granted"}


def _login(client, username="asha", device="dev-1", north_m=20.0):
    return client.post("/api/auth/login", json={
        "username": username,
        "password": PASSWORD,
        "deviceId": device,
        "location": _location(north_m),
    })


def _admin_headers(client):
    r = _login(client, username="admin", device="admin-web")
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['sessionId']}"}


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["scheduler_running"] is False


class TestAttendanceEndpoints:
    def test_full_day(self, client, clock, sessions):
        r = _login(client)
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["ok"] is True
        assert body["expiresIn"] == 43200
        session_id = body["sessionId"]

        clock.advance(minutes=5)
        r = client.post("/api/heartbeat", json={
            "sessionId": session_id, "deviceId": "dev-1", "location": _location(10),
        })
        assert r.status_code == 200
        assert r.json()["status"] == "active"

        r = client.post("/api/auth/verify-session", json={"sessionId": session_id})
        assert r.json()["valid"] is True

        clock.advance(hours=1)
        r = client.post("/api/auth/logout", json={"sessionId": session_id, "deviceId": "dev-1"})
        assert r.status_code == 200
        assert r.json()["status"] == "logged_out"
        assert r.json()["message"] == "Logged out successfully"
        assert sessions.docs[session_id].status == SessionStatus.LOGGED_OUT

    def test_login_outside_fence_renders_error_body(self, client):
        r = _login(client, north_m=200)
        assert r.status_code == 403
        body = r.json()
        assert body["ok"] is False
        assert body["error"] == "NOT_WITHIN_ALLOCATED_LOCATION"
        assert body["locationName"] == "HQ"
        assert "message" in body

    def test_conflicting_login(self, client):
        assert _login(client).status_code == 200
        r = _login(client)
        assert r.status_code == 409
        assert r.json()["error"] == "ACTIVE_SESSION_EXISTS"

    def test_malformed_body(self, client):
        r = client.post("/api/auth/login", json={"username": "asha", "password": PASSWORD})
        assert r.status_code == 422

    def test_out_of_range_coordinates(self, client):
        r = client.post("/api/auth/login", json={
            "username": "asha", "password": PASSWORD, "deviceId": "dev-1",
            "location": {"lat": 123.0, "lon": OFFICE_LON, "accuracy": 5},
        })
        assert r.status_code == 422

    def test_heartbeat_timeout_is_401(self, client, clock):
        session_id = _login(client).json()["sessionId"]
        clock.advance(minutes=30)
        r = client.post("/api/heartbeat", json={
            "sessionId": session_id, "deviceId": "dev-1", "location": _location(),
        })
        assert r.status_code == 401
        assert r.json()["error"] == "HEARTBEAT_TIMEOUT"

    def test_poor_accuracy_warning(self, client):
        session_id = _login(client).json()["sessionId"]
        r = client.post("/api/heartbeat", json={
            "sessionId": session_id, "deviceId": "dev-1", "location": _location(accuracy=500),
        })
        assert r.status_code == 200
        assert r.json()["warning"] == "POOR_LOCATION_ACCURACY"

    def test_store_outage_is_500(self, client):
        client.app.state.engine.verify_session = AsyncMock(side_effect=ServerSelectionTimeoutError("no primary"))
        r = client.post("/api/auth/verify-session", json={"sessionId": "x"})
        assert r.status_code == 500
        assert r.json() == {"ok": False, "message": "Internal server error.", "error": "INTERNAL_ERROR"}


class TestAdminEndpoints:
    def test_requires_bearer(self, client):
        r = client.get("/api/sessions")
        assert r.status_code == 401
        assert r.json()["error"] == "UNAUTHORIZED"

    def test_employee_is_forbidden(self, client):
        session_id = _login(client).json()["sessionId"]
        r = client.get("/api/sessions", headers={"Authorization": f"Bearer {session_id}"})
        assert r.status_code == 403

    def test_closed_admin_session_is_rejected(self, client, clock):
        headers = _admin_headers(client)
        clock.advance(minutes=30)
        r = client.get("/api/sessions", headers=headers)
        assert r.status_code == 401

    def test_list_sessions(self, client):
        _login(client)
        headers = _admin_headers(client)

        r = client.get("/api/sessions", params={"status": "active"}, headers=headers)

        assert r.status_code == 200
        users = {s["userId"] for s in r.json()["sessions"]}
        assert users == {"u-asha", "u-admin"}

    def test_invalid_status_filter(self, client):
        r = client.get("/api/sessions", params={"status": "active,nope"}, headers=_admin_headers(client))
        assert r.status_code == 400
        assert r.json()["error"] == "INVALID_STATUS_FILTER"

    def test_other_company_is_forbidden(self, client):
        r = client.get("/api/sessions", params={"companyId": "globex"}, headers=_admin_headers(client))
        assert r.status_code == 403

    def test_resolve_suspect(self, client, sessions):
        session_id = _login(client).json()["sessionId"]
        sessions.docs[session_id].status = SessionStatus.SUSPECT

        r = client.post(f"/api/admin/sessions/{session_id}/resolve", headers=_admin_headers(client))

        assert r.status_code == 200
        assert r.json()["status"] == "active"

    def test_daily_totals(self, client, clock):
        session_id = _login(client).json()["sessionId"]
        clock.advance(hours=2)
        client.post("/api/auth/logout", json={"sessionId": session_id, "deviceId": "dev-1"})

        day = clock().date().isoformat()
        r = client.get(
            "/api/sessions/daily",
            params={"userId": "u-asha", "from": day, "to": day},
            headers=_admin_headers(client),
        )

        assert r.status_code == 200
        assert r.json()["days"] == [
            {"date": day, "workedSeconds": 7200, "workedMinutes": 120, "sessions": 1},
        ]


class TestCronEndpoints:
    def test_rejects_missing_secret(self, client):
        r = client.post("/internal/cron/auto-logout")
        assert r.status_code == 401

    def test_rejects_wrong_secret(self, client):
        r = client.post("/internal/cron/auto-logout", headers={"x-internal-cron-secret": "guess"})
        assert r.status_code == 401

    def test_internal_header(self, client, clock):
        _login(client)
        clock.advance(minutes=20)
        r = client.post("/internal/cron/auto-logout", headers={"x-internal-cron-secret": INTERNAL_SECRET})
        assert r.status_code == 200
        assert r.json() == {"ok": True, "autoLoggedOutCount": 1}

    def test_bearer_cron_secret(self, client):
        r = client.post("/internal/cron/stale-sweep", headers={"Authorization": f"Bearer {CRON_SECRET}"})
        assert r.json() == {"ok": True, "autoLoggedOutCount": 0}

    def test_daily_aggregate(self, client):
        _login(client)
        r = client.post("/internal/cron/daily-aggregate", headers={"x-internal-cron-secret": INTERNAL_SECRET})
        assert r.json() == {"ok": True, "closedSessions": 1, "splitRecords": 0}

    def test_metrics(self, client):
        headers = {"x-internal-cron-secret": INTERNAL_SECRET}
        client.post("/internal/cron/stale-sweep", headers=headers)
        r = client.post("/internal/metrics", headers=headers)
        metrics = r.json()["metrics"]
        assert metrics["jobs"]["stale_heartbeat_sweep"]["runs"] == 1
        assert "by_status" in metrics["sessions"]

    def test_unconfigured_secret_is_500(self, sessions, directory, clock):
        with _client(_settings(INTERNAL_CRON_SECRET="", CRON_SECRET=""), sessions, directory, clock) as c:
            r = c.post("/internal/cron/auto-logout", headers={"x-internal-cron-secret": "anything"})
        assert r.status_code == 500
