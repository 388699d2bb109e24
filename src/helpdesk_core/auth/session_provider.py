"""User session provider with automatic refresh, gated by the auth guard."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
import jwt
from pydantic import BaseModel

from helpdesk_core.auth.session_guard import AuthSessionGuard
from helpdesk_core.errors import (
    AuthCircuitOpenError,
    HelpdeskError,
    SessionExpiredError,
    TransientBackendError,
    error_from_response,
)

logger = logging.getLogger(__name__)


class Session(BaseModel):
    """Session issued by the identity provider"""

    access_token: str
    refresh_token: str
    expires_at: float
    user_id: Optional[str] = None


def decode_token_claims(token: str) -> Dict[str, Any]:
    """Read claims from an access token without verifying it.

    Only used for client-side bookkeeping (expiry, subject); the backend
    verifies tokens itself.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.debug(f"Unable to decode access token claims: {e}")
        return {}


def session_from_token_response(data: Dict[str, Any], now: Optional[float] = None) -> Session:
    """Build a ``Session`` from an auth token endpoint response.

    Expiry comes from ``expires_at``, else ``expires_in``, else the
    token's ``exp`` claim.
    """
    now = time.time() if now is None else now
    access_token = data["access_token"]
    claims = decode_token_claims(access_token)

    expires_at = data.get("expires_at")
    if expires_at is None and data.get("expires_in") is not None:
        expires_at = now + float(data["expires_in"])
    if expires_at is None:
        expires_at = float(claims.get("exp", now))

    user = data.get("user") or {}
    return Session(
        access_token=access_token,
        refresh_token=data.get("refresh_token", ""),
        expires_at=float(expires_at),
        user_id=user.get("id") or claims.get("sub"),
    )


class SessionProvider:
    """Keeps a user session valid for backend calls.

    This class handles:
    1. Refreshing the session before it expires (``refresh_buffer_seconds``)
    2. Serializing concurrent refreshes behind an asyncio lock
    3. Reporting initializations, successes and errors to the auth guard
    4. Refusing to refresh while the guard's circuit breaker is active

    Usage:
        provider = SessionProvider(auth_url=settings.auth_url, api_key=settings.anon_key, guard=guard)
        await provider.sign_in("user@example.com", "secret")
        token = await provider.get_access_token()
    """

    def __init__(
        self,
        auth_url: str,
        api_key: str,
        guard: AuthSessionGuard,
        session: Optional[Session] = None,
        refresh_buffer_seconds: float = 60.0,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.auth_url = auth_url.rstrip("/")
        self.api_key = api_key
        self.guard = guard
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._clock = clock

        self._session = session
        self._lock = asyncio.Lock()

        logger.info(f"Initialized SessionProvider: auth_url={self.auth_url}")

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def user_id(self) -> Optional[str]:
        return self._session.user_id if self._session else None

    def _needs_refresh(self) -> bool:
        return self._clock() >= self._session.expires_at - self.refresh_buffer_seconds

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _ensure_allowed(self) -> None:
        status = self.guard.status()
        if status.active:
            raise AuthCircuitOpenError(status.reason or "auth unstable", status.remaining_seconds)

    async def _token_request(self, grant_type: str, payload: Dict[str, str]) -> Session:
        self._ensure_allowed()
        self.guard.record_initialization()
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.auth_url}/token",
                    params={"grant_type": grant_type},
                    json=payload,
                    headers=self._headers(),
                )
            if response.is_error:
                raise error_from_response(response)
            session = session_from_token_response(response.json(), now=self._clock())
        except httpx.TransportError as e:
            self.guard.record_error(e)
            raise TransientBackendError(f"Auth endpoint unreachable: {e}") from e
        except HelpdeskError as e:
            self.guard.record_error(e)
            raise

        self.guard.record_success()
        self._session = session
        logger.info(
            f"Session established for user {session.user_id} "
            f"(expires in {int(session.expires_at - self._clock())}s)"
        )
        return session

    async def sign_in(self, email: str, password: str) -> Session:
        """Password sign-in."""
        async with self._lock:
            return await self._token_request("password", {"email": email, "password": password})

    async def get_access_token(self) -> str:
        """Current access token, refreshed first if it is about to expire.

        Raises:
            SessionExpiredError: If there is no session to refresh
            AuthCircuitOpenError: If refreshing is suppressed by the breaker
        """
        if self._session is None:
            raise SessionExpiredError("No active session")

        if self._needs_refresh():
            async with self._lock:
                # Another task may have refreshed while we waited
                if self._session is None:
                    raise SessionExpiredError("Session was signed out")
                if self._needs_refresh():
                    logger.info(f"Refreshing session for user {self._session.user_id}")
                    await self._token_request(
                        "refresh_token", {"refresh_token": self._session.refresh_token}
                    )

        return self._session.access_token

    async def sign_out(self, scope: str = "local") -> None:
        """Sign out; ``scope="global"`` revokes every session of the user.

        The local session is dropped even if the backend call fails.
        """
        if scope not in ("local", "global", "others"):
            raise ValueError(f"Invalid sign-out scope: {scope}")

        session, self._session = self._session, None
        self.guard.reset()
        if session is None:
            return

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.auth_url}/logout",
                    params={"scope": scope},
                    headers=self._headers(session.access_token),
                )
            if response.is_error:
                logger.warning(f"Sign-out returned {response.status_code}; local session cleared")
        except httpx.TransportError as e:
            logger.warning(f"Sign-out request failed; local session cleared: {e}")

    async def invalidate(self) -> None:
        """Force a refresh on the next ``get_access_token()`` call.

        Useful after a 401 (the token may have been revoked).
        """
        async with self._lock:
            if self._session is not None:
                logger.info(f"Invalidating session token for user {self._session.user_id}")
                self._session = self._session.model_copy(update={"expires_at": 0.0})
