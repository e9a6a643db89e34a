"""Object storage uploads (Supabase-compatible storage REST API)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import httpx
import structlog

from citadel.config import Settings, get_settings

logger = structlog.get_logger()


class StorageError(Exception):
    """Upload failed or storage is not configured."""


class StorageClient:
    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> StorageClient:
        settings = settings or get_settings()
        return cls(settings.storage_url, settings.storage_service_key)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str = "image/jpeg") -> str:
        """Store ``content`` at ``bucket/path`` and return its public URL."""
        if not self.base_url or not self.service_key:
            msg = "Object storage is not configured"
            raise StorageError(msg)
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/storage/v1/object/{bucket}/{path}",
                    headers={
                        "Authorization": f"Bearer {self.service_key}",
                        "Content-Type": content_type,
                        "x-upsert": "false",
                    },
                    content=content,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                msg = f"Upload to {bucket}/{path} failed: {e}"
                raise StorageError(msg) from e
        logger.info("storage_uploaded", bucket=bucket, path=path, size=len(content))
        return self.public_url(bucket, path)


def object_name(owner_id: int, suffix: str = "jpg") -> str:
    """Unique object key of the form ``<owner>/<timestamp>-<rand>.<suffix>``."""
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{owner_id}/{stamp}-{uuid.uuid4().hex[:8]}.{suffix}"
