"""Session lifecycle: login admission, logout, verify and suspect review."""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from core.exceptions import AuthError, ErrorKind, LocationError, SessionError
from fakes import PASSWORD, T0, fix_at
from schemas.directory import User
from schemas.session import Session, SessionStatus


async def _login(engine, username="asha", device="dev-1", north_m=50.0, **kwargs):
    return await engine.login(username, PASSWORD, device, fix_at(north_m), **kwargs)


class TestLogin:
    async def test_login_within_allocated_location(self, engine, sessions, directory):
        result = await _login(engine, north_m=50)

        body = result.to_body()
        assert body["ok"] is True
        assert body["expiresIn"] == 12 * 3600
        assert body["companyId"] == "acme"

        stored = sessions.docs[result.session.session_id]
        assert stored.status == SessionStatus.ACTIVE
        assert stored.login_at == T0
        assert stored.last_heartbeat == T0
        assert stored.consecutive_poor_heartbeats == 0

    async def test_login_200m_from_allocated_location_is_refused(self, engine, sessions):
        with pytest.raises(LocationError) as exc:
            await _login(engine, north_m=200)

        assert exc.value.code == ErrorKind.NOT_WITHIN_ALLOCATED_LOCATION
        assert exc.value.status_code == 403
        assert exc.value.context["locationName"] == "HQ"
        assert exc.value.context["distanceMeters"] == pytest.approx(200, abs=1)
        assert sessions.docs == {}

    @pytest.mark.parametrize("username,password", [("asha", "wrong"), ("nobody", PASSWORD)])
    async def test_bad_credentials(self, engine, username, password):
        with pytest.raises(AuthError) as exc:
            await engine.login(username, password, "dev-1", fix_at())
        assert exc.value.code == ErrorKind.INVALID_CREDENTIALS
        assert exc.value.status_code == 401

    async def test_unassigned_device_is_refused(self, engine):
        with pytest.raises(AuthError) as exc:
            await _login(engine, device="dev-2")
        assert exc.value.code == ErrorKind.DEVICE_NOT_ASSIGNED

    async def test_user_without_device_is_refused(self, engine, directory, password_hash):
        directory.users["u-new"] = User(
            user_id="u-new", company_id="acme", username="newbie", password_hash=password_hash,
        )
        with pytest.raises(AuthError) as exc:
            await _login(engine, username="newbie", device="dev-9")
        assert exc.value.code == ErrorKind.NO_DEVICE_ASSIGNED

    async def test_explicit_opt_out_skips_geofence(self, engine):
        result = await _login(engine, north_m=5000, validate_location=False)
        assert result.session.status == SessionStatus.ACTIVE

    async def test_user_preference_skips_geofence(self, engine, directory):
        directory.users["u-asha"].location_validation_required = False
        result = await _login(engine, north_m=5000)
        assert result.session.status == SessionStatus.ACTIVE

    async def test_company_wide_user_may_use_any_location(self, engine):
        result = await _login(engine, username="ravi", device="dev-2", north_m=2050)
        assert result.session.user_id == "u-ravi"

    async def test_company_wide_user_outside_every_location(self, engine):
        with pytest.raises(LocationError) as exc:
            await _login(engine, username="ravi", device="dev-2", north_m=1000)
        assert exc.value.code == ErrorKind.LOCATION_NOT_ALLOWED
        assert {loc["name"] for loc in exc.value.context["allowedLocations"]} == {"HQ", "Annex"}

    async def test_company_without_locations(self, engine, directory):
        directory.locations.clear()
        with pytest.raises(LocationError) as exc:
            await _login(engine, username="ravi", device="dev-2")
        assert exc.value.code == ErrorKind.NO_LOCATIONS_CONFIGURED

    async def test_missing_allocated_location(self, engine, directory):
        del directory.locations["loc-hq"]
        with pytest.raises(LocationError) as exc:
            await _login(engine)
        assert exc.value.code == ErrorKind.ALLOCATED_LOCATION_NOT_FOUND
        assert exc.value.status_code == 500

    async def test_login_touches_device(self, engine, directory, clock):
        clock.advance(minutes=3)
        await _login(engine)
        assert directory.devices["dev-1"].last_seen == T0 + timedelta(minutes=3)


class TestSingleLiveSession:
    async def test_second_login_within_grace_window_is_refused(self, engine, clock):
        first = await _login(engine)
        clock.advance(minutes=1)

        with pytest.raises(SessionError) as exc:
            await _login(engine)

        assert exc.value.code == ErrorKind.ACTIVE_SESSION_EXISTS
        assert exc.value.status_code == 409
        assert exc.value.context["activeSessionId"] == first.session.session_id
        assert exc.value.context["retryAfterSeconds"] == 9 * 60

    async def test_second_login_after_grace_supersedes_stale_session(self, engine, sessions, clock):
        first = await _login(engine)
        clock.advance(minutes=11)

        second = await _login(engine)

        assert second.session.session_id != first.session.session_id
        old = sessions.docs[first.session.session_id]
        assert old.status == SessionStatus.HEARTBEAT_TIMEOUT
        assert old.logout_at == T0 + timedelta(minutes=11)
        live = [s for s in sessions.docs.values() if s.live]
        assert [s.session_id for s in live] == [second.session.session_id]

    async def test_hard_expired_session_is_closed_as_expired(self, engine, sessions, clock):
        stale = Session(
            user_id="u-asha", company_id="acme", device_id="dev-1",
            login_at=T0 - timedelta(hours=13), last_heartbeat=T0 - timedelta(minutes=1),
            login_location=fix_at(),
        )
        await sessions.insert(stale)

        await _login(engine)

        assert sessions.docs[stale.session_id].status == SessionStatus.EXPIRED

    async def test_concurrent_login_race_maps_to_conflict(self, engine, sessions):
        winner = (await _login(engine)).session
        # The losing request checked before the winner's insert landed.
        sessions.find_live_for_user = AsyncMock(side_effect=[None, winner])

        with pytest.raises(SessionError) as exc:
            await _login(engine)

        assert exc.value.code == ErrorKind.ACTIVE_SESSION_EXISTS
        assert exc.value.context["activeSessionId"] == winner.session_id
        assert sum(1 for s in sessions.docs.values() if s.live) == 1

    async def test_admin_relogin_closes_previous_sessions(self, engine, sessions, clock):
        first = await _login(engine, username="admin", device="admin-laptop", north_m=9000)
        clock.advance(minutes=1)

        second = await _login(engine, username="admin", device="admin-phone", north_m=9000)

        assert sessions.docs[first.session.session_id].status == SessionStatus.AUTO_LOGGED_OUT
        assert sessions.docs[second.session.session_id].status == SessionStatus.ACTIVE
        assert second.to_body()["role"] == "admin"


class TestLogout:
    async def test_logout_closes_session(self, engine, sessions, clock):
        session = (await _login(engine)).session
        clock.advance(hours=2)

        closed = await engine.logout(session.session_id, "dev-1", fix_at(20))

        assert closed.status == SessionStatus.LOGGED_OUT
        assert closed.logout_at == T0 + timedelta(hours=2)
        assert closed.logout_location is not None
        assert closed.logout_location.lat == pytest.approx(fix_at(20).lat)

    async def test_logout_unknown_session(self, engine):
        with pytest.raises(SessionError) as exc:
            await engine.logout("missing", "dev-1")
        assert (exc.value.code, exc.value.status_code) == (ErrorKind.SESSION_NOT_FOUND, 404)

    async def test_logout_from_other_device(self, engine):
        session = (await _login(engine)).session
        with pytest.raises(SessionError) as exc:
            await engine.logout(session.session_id, "dev-2")
        assert (exc.value.code, exc.value.status_code) == (ErrorKind.DEVICE_MISMATCH, 403)

    async def test_logout_twice(self, engine):
        session = (await _login(engine)).session
        await engine.logout(session.session_id, "dev-1")
        with pytest.raises(SessionError) as exc:
            await engine.logout(session.session_id, "dev-1")
        assert (exc.value.code, exc.value.status_code) == (ErrorKind.SESSION_NOT_ACTIVE, 400)


class TestVerifySession:
    async def test_live_session_reports_remaining_lifetime(self, engine, clock):
        session = (await _login(engine)).session
        clock.advance(minutes=4)

        result = await engine.verify_session(session.session_id)

        assert result.valid is True
        assert result.expires_in == 12 * 3600 - 4 * 60

    async def test_stale_session_expires_lazily(self, engine, sessions, clock):
        session = (await _login(engine)).session
        clock.advance(minutes=15)

        result = await engine.verify_session(session.session_id)

        assert result.valid is False
        assert result.expires_in == 0
        assert result.session.status == SessionStatus.HEARTBEAT_TIMEOUT
        assert sessions.docs[session.session_id].status == SessionStatus.HEARTBEAT_TIMEOUT

    async def test_unknown_session(self, engine):
        with pytest.raises(SessionError) as exc:
            await engine.verify_session("missing")
        assert exc.value.status_code == 404


class TestResolveSuspect:
    async def test_suspect_is_restored(self, engine, sessions):
        session = (await _login(engine)).session
        stored = sessions.docs[session.session_id]
        stored.status, stored.consecutive_poor_heartbeats = SessionStatus.SUSPECT, 7

        resolved = await engine.resolve_suspect(session.session_id)

        assert resolved.status == SessionStatus.ACTIVE
        assert resolved.consecutive_poor_heartbeats == 0

    async def test_only_suspect_sessions_can_be_resolved(self, engine):
        session = (await _login(engine)).session
        with pytest.raises(SessionError) as exc:
            await engine.resolve_suspect(session.session_id)
        assert (exc.value.code, exc.value.status_code) == (ErrorKind.SESSION_NOT_ACTIVE, 409)

    async def test_unknown_session(self, engine):
        with pytest.raises(SessionError) as exc:
            await engine.resolve_suspect("missing")
        assert (exc.value.code, exc.value.status_code) == (ErrorKind.SESSION_NOT_FOUND, 404)
