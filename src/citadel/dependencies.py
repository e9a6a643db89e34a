"""Shared FastAPI dependencies.

External collaborators are provided through dependencies so tests can
swap them with ``app.dependency_overrides``.
"""

from citadel.auth.discord_oauth import DiscordOAuthClient
from citadel.discord.client import DiscordClient
from citadel.payments.blink import BlinkClient
from citadel.push.sender import WebPushSender
from citadel.storage import StorageClient


def get_oauth_client() -> DiscordOAuthClient:
    return DiscordOAuthClient()


def get_discord_client() -> DiscordClient:
    return DiscordClient.from_settings()


def get_blink_client() -> BlinkClient:
    return BlinkClient.from_settings()


def get_storage_client() -> StorageClient:
    return StorageClient.from_settings()


def get_push_sender() -> WebPushSender:
    return WebPushSender.from_settings()
