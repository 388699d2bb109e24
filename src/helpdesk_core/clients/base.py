"""Base client for the hosted helpdesk backend."""

import logging
from typing import Any, Dict, Optional

import httpx

from helpdesk_core.errors import TransientBackendError, error_from_response

logger = logging.getLogger(__name__)


class BaseBackendClient:
    """Base class for HTTP clients talking to the hosted backend.

    Every request carries the public API key; when a session provider is
    configured the user's access token is sent as the bearer token, so
    row-level security applies to the signed-in user. Failed responses are
    translated into the library error taxonomy in one place.

    Usage:
        class ThreadDataClient(BaseBackendClient):
            async def fetch_notes(self, case_id: str) -> List[Note]:
                rows = await self._request("GET", "/notes", params={"case_id": f"eq.{case_id}"})
                return [Note(**row) for row in rows]
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        session_provider=None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize backend client.

        Args:
            base_url: Service base URL (e.g. https://project.example.co/rest/v1)
            api_key: Public API key sent as the ``apikey`` header
            session_provider: Optional ``SessionProvider`` supplying the bearer token
            timeout: Request timeout in seconds (default: 10.0)
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session_provider = session_provider
        self.timeout = timeout
        self._transport = transport

        logger.info(f"Initialized {self.__class__.__name__} with base_url={self.base_url}")

    async def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Generate request headers with API key and bearer token.

        Without a signed-in session the anon key is sent as the bearer token.
        """
        token = self.api_key
        if self.session_provider is not None and self.session_provider.session is not None:
            token = await self.session_provider.get_access_token()

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """HTTP client with configured timeout, ready for ``async with``."""
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Raises:
            TransientBackendError: On transport failures, timeouts, 5xx, 408, 429
            SessionExpiredError / AccessDeniedError / BackendRequestError: On other errors
        """
        url = f"{self.base_url}{path}"
        request_headers = await self._headers(headers)
        try:
            async with self._get_client() as client:
                response = await client.request(
                    method, url, params=params, json=json, content=content, headers=request_headers
                )
        except httpx.TransportError as e:
            logger.warning(f"{method} {url} failed: {e!r}")
            raise TransientBackendError(f"Backend unreachable: {e}", details={"url": url}) from e

        if response.is_error:
            error = error_from_response(response)
            logger.warning(f"{method} {url} returned {response.status_code}: {error.message}")
            if response.status_code == 401 and self.session_provider is not None:
                await self.session_provider.invalidate()
            raise error
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body (None for empty bodies)."""
        response = await self._send(method, path, **kwargs)
        if not response.content:
            return None
        return response.json()

    async def close(self):
        """Close any persistent connections.

        Clients open one ``httpx.AsyncClient`` per call, so there is nothing to close.
        """
        pass
