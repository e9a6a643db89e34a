"""Best-effort channel announcements for personal POWs.

Run as background tasks after the response is sent. They open their own
session, log every failure and never raise: the POW record is already
committed and is the source of truth.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select

from citadel.config import get_settings
from citadel.database import get_session_factory
from citadel.db.models import DiscordReaction, PowRecord, User
from citadel.discord.client import Attachment, DiscordClient, DiscordError
from citadel.discord.embeds import (
    CERTIFICATION_FILENAME,
    accumulated_donation_message,
    pow_completed_message,
)

logger = structlog.get_logger()


def media_attachments(files: list[tuple[bytes, str]]) -> list[Attachment]:
    """Name uploaded media ``media-<n>.mp4`` / ``media-<n>.jpg`` by content type."""
    attachments = []
    for index, (content, content_type) in enumerate(files, start=1):
        ext = "mp4" if content_type.startswith("video/") else "jpg"
        attachments.append(
            Attachment(f"media-{index}.{ext}", content, content_type, description=f"Media {index}")
        )
    return attachments


async def announce_completion(
    discord: DiscordClient,
    pow_record_id: int,
    certification_card: bytes | None = None,
    media: list[Attachment] | None = None,
) -> None:
    """Post the completed POW to the POW channel and start tracking its reactions."""
    channel_id = get_settings().discord_pow_channel_id
    if not channel_id or not discord.configured:
        logger.info("pow_announcement_skipped", pow_record_id=pow_record_id, reason="discord not configured")
        return

    try:
        async with get_session_factory()() as db:
            row = (
                await db.execute(
                    select(PowRecord, User).join(User, User.id == PowRecord.user_id).where(PowRecord.id == pow_record_id)
                )
            ).one_or_none()
            if row is None:
                return
            record, user = row

            attachments: list[Attachment] = []
            if certification_card:
                attachments.append(
                    Attachment(CERTIFICATION_FILENAME, certification_card, "image/jpeg", description="Certification card")
                )
            attachments.extend(media or [])

            payload = pow_completed_message(user, record, with_image=bool(certification_card))
            if attachments:
                message = await discord.create_message_with_files(channel_id, payload, attachments)
            else:
                message = await discord.create_message(channel_id, payload)

            message_id = str(message["id"])
            record.discord_message_id = message_id
            db.add(
                DiscordReaction(
                    pow_record_id=record.id,
                    discord_message_id=message_id,
                    total_reactions=0,
                    reaction_details={},
                    last_updated_at=datetime.now(timezone.utc),
                )
            )
            await db.commit()
            logger.info("pow_announced", pow_record_id=record.id, discord_message_id=message_id)
    except (DiscordError, KeyError):
        logger.warning("pow_announcement_failed", pow_record_id=pow_record_id, exc_info=True)
    except Exception:
        logger.exception("pow_announcement_error", pow_record_id=pow_record_id)


async def announce_accumulated_donation(discord: DiscordClient, user_id: int, amount: int) -> None:
    channel_id = get_settings().discord_pow_channel_id
    if not channel_id or not discord.configured:
        return
    try:
        async with get_session_factory()() as db:
            user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
            if user is None:
                return
            await discord.create_message(channel_id, accumulated_donation_message(user, amount))
    except DiscordError:
        logger.warning("donation_announcement_failed", user_id=user_id, exc_info=True)
    except Exception:
        logger.exception("donation_announcement_error", user_id=user_id)
