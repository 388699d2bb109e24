"""HTTP client for the object storage service holding case attachments."""

import logging
from urllib.parse import quote

from helpdesk_core.clients.base import BaseBackendClient
from helpdesk_core.errors import BackendRequestError

logger = logging.getLogger(__name__)


class StorageClient(BaseBackendClient):
    """Upload files and build download URLs for one bucket.

    Usage:
        storage = StorageClient(base_url=settings.storage_url, api_key=settings.anon_key,
                                bucket="case-attachments", session_provider=provider)
        path = await storage.upload("user-1/case-1/reply/1700000000000-log.txt", data, "text/plain")
        url = await storage.create_signed_url(path, expires_in=3600)
    """

    def __init__(self, base_url: str, api_key: str, bucket: str = "case-attachments", **kwargs):
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)
        self.bucket = bucket

    def _object_path(self, path: str) -> str:
        return f"{self.bucket}/{quote(path.lstrip('/'), safe='/')}"

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` (no overwrite) and return the stored path."""
        await self._send(
            "POST",
            f"/object/{self._object_path(path)}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false", "cache-control": "3600"},
        )
        logger.info(f"Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return path

    async def create_signed_url(self, path: str, expires_in: int = 3600) -> str:
        """Short-lived download URL for a private object."""
        body = await self._request(
            "POST", f"/object/sign/{self._object_path(path)}", json={"expiresIn": expires_in}
        )
        signed = (body or {}).get("signedURL") or (body or {}).get("signedUrl")
        if not signed:
            raise BackendRequestError("Storage did not return a signed URL", details={"path": path})
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/{signed.lstrip('/')}"

    def public_url(self, path: str) -> str:
        """URL of an object in a public bucket (no request made)."""
        return f"{self.base_url}/object/public/{self._object_path(path)}"
