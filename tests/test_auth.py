"""Tests for the circuit breaker, auth session guard and session provider."""

import json
import time
from unittest.mock import Mock

import httpx
import jwt
import pytest

from helpdesk_core.auth import AuthSessionGuard, CircuitBreaker, Session, SessionProvider
from helpdesk_core.auth.session_provider import session_from_token_response
from helpdesk_core.errors import AuthCircuitOpenError, SessionExpiredError
from helpdesk_core.infrastructure import MemoryLocalStorage


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(clock=clock)


@pytest.fixture
def guard(breaker, clock):
    return AuthSessionGuard(breaker, storage=MemoryLocalStorage(), clock=clock)


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_inactive_by_default(self, breaker):
        assert breaker.is_active().active is False

    def test_lifecycle(self, breaker, clock):
        """Test activation, remaining time and self-clearing on expiry."""
        status = breaker.activate("init loop", minutes=1)

        assert status.active is True
        assert status.reason == "init loop"
        assert status.remaining_seconds == 60

        clock.advance(59.5)
        assert breaker.is_active().remaining_seconds == 1

        clock.advance(0.5)
        assert breaker.is_active().active is False
        assert breaker.state.active is False

    def test_clear(self, breaker):
        breaker.activate("x")
        breaker.clear()

        assert breaker.is_active().active is False


class TestAuthSessionGuard:
    """Tests for AuthSessionGuard."""

    def test_init_loop_trips_breaker(self, guard, clock):
        """Test that more than five initializations inside a minute trip the breaker."""
        for _ in range(5):
            assert guard.record_initialization().active is False
            clock.advance(1)

        status = guard.record_initialization()

        assert status.active is True
        assert guard.should_attempt() is False

    def test_old_initializations_leave_the_window(self, guard, clock):
        """Test that initializations older than the window are not counted."""
        for _ in range(5):
            guard.record_initialization()
        clock.advance(61)

        assert guard.record_initialization().active is False

    def test_consecutive_errors_trip_breaker(self, guard):
        """Test that three consecutive auth errors trip the breaker."""
        guard.record_error(RuntimeError("401"))
        guard.record_error(RuntimeError("401"))
        assert guard.should_attempt() is True

        status = guard.record_error(RuntimeError("401"))

        assert status.active is True
        assert "3 consecutive" in status.reason

    def test_success_clears_and_resets(self, guard, breaker, clock):
        """Test that a success clears the breaker and resets error counting."""
        for _ in range(3):
            guard.record_error()
        assert breaker.is_active().active

        guard.record_success()

        assert guard.should_attempt() is True
        clock.advance(60)
        guard.record_error()
        guard.record_error()
        assert guard.should_attempt() is True

    def test_recent_success_overrides_init_loop(self, guard, clock):
        """Test that initializations right after a success do not trip the breaker."""
        guard.record_success()

        for _ in range(8):
            clock.advance(0.5)
            assert guard.record_initialization().active is False

    def test_success_grace_expires(self, guard, clock):
        """Test that the grace override only lasts success_grace_seconds."""
        guard.record_success()
        clock.advance(11)

        statuses = [guard.record_initialization() for _ in range(6)]

        assert statuses[-1].active is True

    def test_breaker_expires_after_cooldown(self, guard, clock):
        """Test that attempts are allowed again once the cooldown passes."""
        for _ in range(3):
            guard.record_error()
        assert guard.should_attempt() is False

        clock.advance(60)

        assert guard.should_attempt() is True

    def test_fails_open_when_storage_breaks(self, breaker, clock):
        """Test that a bookkeeping failure allows authentication."""
        storage = Mock()
        storage.get_item.side_effect = OSError("disk gone")
        guard = AuthSessionGuard(breaker, storage=storage, clock=clock)

        assert guard.record_initialization().active is False
        assert guard.record_error().active is False
        assert guard.should_attempt() is True

    def test_schema_mismatch_discards_state(self, breaker, clock):
        """Test that stored data from another schema version is ignored."""
        storage = MemoryLocalStorage()
        guard = AuthSessionGuard(breaker, storage=storage, clock=clock, namespace="t")
        storage.set_item(
            guard.storage_key,
            json.dumps({"schema_version": 1, "consecutive_errors": 99, "init_timestamps": []}),
        )

        guard.record_error()

        assert guard.should_attempt() is True
        assert guard.storage_key == "t:auth-health"
        stored = json.loads(storage.get_item("t:auth-health"))
        assert stored["consecutive_errors"] == 1

    def test_token_staleness(self, guard, clock):
        """Test that tokens expiring within ten minutes are stale."""
        assert guard.is_token_stale(clock() + 300) is True
        assert guard.is_token_stale(clock() + 3600) is False
        assert guard.is_token_stale(None) is False

    def test_reset(self, guard):
        for _ in range(3):
            guard.record_error()

        guard.reset()

        assert guard.should_attempt() is True
        assert guard.storage.get_item(guard.storage_key) is None


def _token(exp, sub="user-1"):
    return jwt.encode({"exp": int(exp), "sub": sub}, "secret", algorithm="HS256")


class TestSessionFromTokenResponse:
    """Tests for token response parsing."""

    def test_expires_in(self):
        session = session_from_token_response(
            {"access_token": _token(0), "refresh_token": "r", "expires_in": 3600, "user": {"id": "u"}},
            now=1000.0,
        )

        assert session.expires_at == 4600.0
        assert session.user_id == "u"

    def test_falls_back_to_exp_claim(self):
        """Test that expiry and subject come from the token when the response omits them."""
        session = session_from_token_response({"access_token": _token(5000, sub="abc")}, now=1000.0)

        assert session.expires_at == 5000.0
        assert session.user_id == "abc"


class TestSessionProvider:
    """Tests for SessionProvider."""

    def _provider(self, guard, clock, handler, session=None):
        return SessionProvider(
            auth_url="http://backend/auth/v1",
            api_key="anon",
            guard=guard,
            session=session,
            transport=httpx.MockTransport(handler),
            clock=clock,
        )

    async def test_sign_in(self, guard, clock):
        """Test password sign-in records a success with the guard."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={"access_token": _token(clock() + 3600), "refresh_token": "r1", "expires_in": 3600},
            )

        provider = self._provider(guard, clock, handler)
        session = await provider.sign_in("a@example.com", "pw")

        assert session.refresh_token == "r1"
        assert seen[0].url.params["grant_type"] == "password"
        assert seen[0].headers["apikey"] == "anon"
        assert await provider.get_access_token() == session.access_token

    async def test_refreshes_inside_buffer(self, guard, clock):
        """Test that a token about to expire is refreshed once."""
        calls = []

        def handler(request):
            calls.append(json.loads(request.content))
            return httpx.Response(
                200, json={"access_token": "new-token", "refresh_token": "r2", "expires_in": 3600}
            )

        old = Session(access_token="old-token", refresh_token="r1", expires_at=clock() + 30)
        provider = self._provider(guard, clock, handler, session=old)

        assert await provider.get_access_token() == "new-token"
        assert await provider.get_access_token() == "new-token"
        assert calls == [{"refresh_token": "r1"}]

    async def test_no_session(self, guard, clock):
        provider = self._provider(guard, clock, lambda request: httpx.Response(500))

        with pytest.raises(SessionExpiredError):
            await provider.get_access_token()

    async def test_refresh_errors_trip_breaker(self, guard, clock):
        """Test that repeated refresh failures suppress further attempts."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"message": "invalid refresh token"})

        expired = Session(access_token="t", refresh_token="r", expires_at=clock() - 1)
        provider = self._provider(guard, clock, handler, session=expired)

        for _ in range(3):
            with pytest.raises(SessionExpiredError):
                await provider.get_access_token()

        with pytest.raises(AuthCircuitOpenError) as exc_info:
            await provider.get_access_token()

        assert len(calls) == 3
        assert exc_info.value.remaining_seconds > 0

    async def test_invalidate_forces_refresh(self, guard, clock):
        def handler(request):
            return httpx.Response(200, json={"access_token": "fresh", "refresh_token": "r", "expires_in": 600})

        session = Session(access_token="t", refresh_token="r", expires_at=clock() + 3600)
        provider = self._provider(guard, clock, handler, session=session)

        await provider.invalidate()

        assert await provider.get_access_token() == "fresh"

    async def test_sign_out_clears_session(self, guard, clock):
        """Test that the local session is dropped even if the backend fails."""

        def handler(request):
            raise httpx.ConnectError("offline")

        session = Session(access_token="t", refresh_token="r", expires_at=time.time() + 3600)
        provider = self._provider(guard, clock, handler, session=session)

        await provider.sign_out(scope="global")

        assert provider.session is None
        with pytest.raises(ValueError):
            await provider.sign_out(scope="everyone")
