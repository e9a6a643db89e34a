"""
Discord REST client authenticated with the bot token.

Covers the handful of endpoints the service needs: posting channel
messages (JSON or multipart with attachments), reading a message for its
reactions, opening a DM channel, and looking up guild members.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from citadel.config import Settings, get_settings

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 10.0


class DiscordError(Exception):
    """A Discord API call failed or returned a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    description: str | None = None


class DiscordClient:
    """Thin async wrapper over the Discord v10 REST API."""

    def __init__(
        self,
        api_url: str,
        bot_token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.bot_token = bot_token
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DiscordClient:
        settings = settings or get_settings()
        return cls(settings.discord_api_url, settings.discord_bot_token)

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        if not self.configured:
            msg = "Discord bot token is not configured"
            raise DiscordError(msg)
        headers = {"Authorization": f"Bot {self.bot_token}"}
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            try:
                response = await client.request(method, f"{self.api_url}{path}", headers=headers, **kwargs)
            except httpx.HTTPError as e:
                msg = f"Discord request failed: {e}"
                raise DiscordError(msg) from e
        if response.is_error:
            logger.warning(
                "discord_api_error",
                method=method,
                path=path,
                status=response.status_code,
                body=response.text[:500],
            )
            msg = f"Discord API error {response.status_code}"
            raise DiscordError(msg, status_code=response.status_code)
        return response

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(self, channel_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", f"/channels/{channel_id}/messages", json=payload)
        return response.json()

    async def create_message_with_files(
        self,
        channel_id: str,
        payload: dict[str, Any],
        attachments: list[Attachment],
    ) -> dict[str, Any]:
        """Post a message with uploaded files referenced as ``attachment://<filename>``."""
        body = dict(payload)
        body["attachments"] = [
            {"id": i, "filename": a.filename, **({"description": a.description} if a.description else {})}
            for i, a in enumerate(attachments)
        ]
        files = {
            f"files[{i}]": (a.filename, a.content, a.content_type) for i, a in enumerate(attachments)
        }
        response = await self._request(
            "POST",
            f"/channels/{channel_id}/messages",
            data={"payload_json": json.dumps(body)},
            files=files,
        )
        return response.json()

    async def get_message(self, channel_id: str, message_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/channels/{channel_id}/messages/{message_id}")
        return response.json()

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    async def open_dm_channel(self, recipient_id: str) -> str:
        response = await self._request("POST", "/users/@me/channels", json={"recipient_id": recipient_id})
        return str(response.json()["id"])

    async def send_dm(self, recipient_id: str, *payloads: dict[str, Any]) -> None:
        """Open (or reuse) the DM channel and post each payload in order."""
        channel_id = await self.open_dm_channel(recipient_id)
        for payload in payloads:
            await self.create_message(channel_id, payload)

    # ------------------------------------------------------------------
    # Guild
    # ------------------------------------------------------------------

    async def get_guild_member(self, guild_id: str, user_id: str) -> dict[str, Any] | None:
        """Return the member object, or None when the user is not in the guild."""
        try:
            response = await self._request("GET", f"/guilds/{guild_id}/members/{user_id}")
        except DiscordError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json()
