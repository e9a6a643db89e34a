"""Best-effort fanout for group POW events.

Each function runs as a background task with its own session. A failure
for one participant is logged and the loop moves on; nothing here can
undo a committed transition.
"""

from __future__ import annotations

import structlog

from citadel.config import get_settings
from citadel.database import get_session_factory
from citadel.discord.client import DiscordClient, DiscordError
from citadel.discord.embeds import (
    group_pow_announcement,
    group_pow_cancelled_dm,
    group_pow_invoice_dm,
    group_pow_started_dm,
    invoice_code_message,
)
from citadel.group_pow.service import get_group_pow, list_participant_users, record_invoice
from citadel.payments.blink import BlinkClient, PaymentProviderError
from citadel.push.sender import WebPushSender
from citadel.push.service import notify_users

logger = structlog.get_logger()


async def announce_created(discord: DiscordClient, group_pow_id: int) -> None:
    channel_id = get_settings().discord_group_pow_channel_id
    if not channel_id or not discord.configured:
        return
    try:
        async with get_session_factory()() as db:
            group = await get_group_pow(db, group_pow_id)
            message = await discord.create_message(channel_id, group_pow_announcement(group))
            group.discord_message_id = str(message.get("id")) if message.get("id") else None
            await db.commit()
    except DiscordError:
        logger.warning("group_pow_announcement_failed", group_pow_id=group_pow_id, exc_info=True)
    except Exception:
        logger.exception("group_pow_announcement_error", group_pow_id=group_pow_id)


async def notify_started(discord: DiscordClient, sender: WebPushSender, group_pow_id: int) -> None:
    """DM and push every participant to check in their attendance."""
    try:
        async with get_session_factory()() as db:
            group = await get_group_pow(db, group_pow_id)
            members = await list_participant_users(db, group_pow_id)
            if discord.configured:
                for _participant, user in members:
                    try:
                        await discord.send_dm(user.discord_id, group_pow_started_dm(group.title))
                    except DiscordError:
                        logger.warning("attendance_dm_failed", group_pow_id=group_pow_id, user_id=user.id)
            if sender.vapid_private_key:
                await notify_users(
                    db,
                    sender,
                    [user.id for _participant, user in members],
                    {
                        "title": "📣 Group POW started!",
                        "body": f"{group.title} has started. Check in your attendance.",
                        "tag": f"group-pow-{group_pow_id}",
                        "data": {"url": "/group-pow"},
                    },
                )
                await db.commit()
    except Exception:
        logger.exception("group_pow_start_fanout_error", group_pow_id=group_pow_id)


async def send_settlement_invoices(discord: DiscordClient, blink: BlinkClient, group_pow_id: int) -> None:
    """Create one invoice per participant owing sats and DM it to them."""
    try:
        async with get_session_factory()() as db:
            group = await get_group_pow(db, group_pow_id)
            members = await list_participant_users(db, group_pow_id)
            rate = group.achievement_rate or 0.0
            for participant, user in members:
                amount = participant.actual_sats or 0
                if amount <= 0:
                    continue
                try:
                    invoice = await blink.create_invoice_on_behalf_of_recipient(
                        amount, f"{group.title} group POW donation"
                    )
                except PaymentProviderError:
                    logger.warning("settlement_invoice_failed", group_pow_id=group_pow_id, user_id=user.id)
                    continue
                await record_invoice(db, participant.id, invoice.payment_request)
                if not discord.configured:
                    continue
                try:
                    await discord.send_dm(
                        user.discord_id,
                        group_pow_invoice_dm(group.title, rate, amount),
                        invoice_code_message(invoice.payment_request),
                    )
                except DiscordError:
                    logger.warning("settlement_dm_failed", group_pow_id=group_pow_id, user_id=user.id)
    except Exception:
        logger.exception("group_pow_settlement_fanout_error", group_pow_id=group_pow_id)


async def notify_cancelled(discord: DiscordClient, group_pow_id: int) -> None:
    if not discord.configured:
        return
    try:
        async with get_session_factory()() as db:
            group = await get_group_pow(db, group_pow_id)
            for _participant, user in await list_participant_users(db, group_pow_id):
                if user.id == group.creator_id:
                    continue
                try:
                    await discord.send_dm(user.discord_id, group_pow_cancelled_dm(group.title))
                except DiscordError:
                    logger.warning("cancel_dm_failed", group_pow_id=group_pow_id, user_id=user.id)
    except Exception:
        logger.exception("group_pow_cancel_fanout_error", group_pow_id=group_pow_id)
