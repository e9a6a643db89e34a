"""Web Push delivery with VAPID, via pywebpush.

pywebpush is synchronous (it uses ``requests``), so each delivery runs
in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from pywebpush import WebPushException, webpush

from citadel.config import Settings, get_settings

logger = structlog.get_logger()

EXPIRED_STATUS_CODES = frozenset({404, 410})


class PushDeliveryError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def subscription_expired(self) -> bool:
        return self.status_code in EXPIRED_STATUS_CODES


class WebPushSender:
    def __init__(self, vapid_private_key: str, vapid_subject: str, ttl: int = 3600) -> None:
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> WebPushSender:
        settings = settings or get_settings()
        return cls(settings.vapid_private_key, settings.vapid_subject)

    def _send_sync(self, endpoint: str, keys: dict[str, str], payload: dict[str, Any]) -> None:
        try:
            webpush(
                subscription_info={"endpoint": endpoint, "keys": keys},
                data=json.dumps(payload),
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                ttl=self.ttl,
            )
        except WebPushException as e:
            status = e.response.status_code if e.response is not None else None
            raise PushDeliveryError(str(e), status_code=status) from e

    async def send(self, endpoint: str, keys: dict[str, str], payload: dict[str, Any]) -> None:
        """Deliver ``payload`` to one subscription; raises PushDeliveryError."""
        if not self.vapid_private_key:
            msg = "VAPID keys are not configured"
            raise PushDeliveryError(msg)
        await asyncio.to_thread(self._send_sync, endpoint, keys, payload)
