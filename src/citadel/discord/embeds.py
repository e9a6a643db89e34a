"""Message payload builders for channel announcements and DMs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from citadel.pow.fields import get_field

if TYPE_CHECKING:
    from citadel.db.models import GroupPow, PowRecord, User

EMBED_COLOR = 0xFF6B35
CERTIFICATION_FILENAME = "certification.jpg"

_DISPLAY_TZ = timezone(timedelta(hours=9), "KST")


def format_duration(seconds: int) -> str:
    """``MM:SS``, or ``HH:MM:SS`` once there is at least an hour."""
    hours, rest = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_sats(amount: int) -> str:
    return f"{amount:,}"


def format_rate(rate: float) -> str:
    """50.0 -> "50", 33.3 -> "33.3"."""
    return f"{rate:g}"


def format_datetime(value: datetime) -> str:
    return value.astimezone(_DISPLAY_TZ).strftime("%Y-%m-%d %H:%M KST")


def mention(user: User) -> str:
    return f"<@{user.discord_id}>" if user.discord_id else user.discord_username


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Personal POW
# ---------------------------------------------------------------------------


def pow_completed_message(user: User, record: PowRecord, *, with_image: bool) -> dict[str, Any]:
    field = get_field(record.field)
    verb = "banked" if record.status == "accumulated" else "donated"
    content = f"{mention(user)} completed a **{field.label}** POW!"
    if record.memo:
        content += f'\n\n💬 **Note**: "{record.memo}"'
    embed: dict[str, Any] = {
        "title": f"{field.emoji} {field.label} POW",
        "description": (
            f"**{record.goal_content}**\n\n"
            f"🎯 `{format_duration(record.goal_time)}` → ✅ `{format_duration(record.actual_time)}` "
            f"({format_rate(record.achievement_rate)}%) | 💰 {format_sats(record.actual_sats)} sats {verb}"
        ),
        "color": EMBED_COLOR,
        "timestamp": _timestamp(),
    }
    if with_image:
        embed["image"] = {"url": f"attachment://{CERTIFICATION_FILENAME}"}
    return {"content": content, "embeds": [embed]}


def accumulated_donation_message(user: User, amount: int) -> dict[str, Any]:
    return {
        "content": (
            f"💸 {mention(user)} donated **{format_sats(amount)} sats** from their accumulated balance!"
            "\n\nThank you! 🙏"
        ),
    }


# ---------------------------------------------------------------------------
# Group POW
# ---------------------------------------------------------------------------


def group_pow_announcement(group: GroupPow) -> dict[str, Any]:
    field = get_field(group.field)
    fields = [
        {"name": "📅 When", "value": format_datetime(group.planned_date), "inline": True},
        {"name": "⏱️ Duration", "value": format_duration(group.planned_duration), "inline": True},
        {"name": "🎯 Target", "value": f"{format_sats(group.target_sats)} sats", "inline": True},
    ]
    if group.location:
        fields.append({"name": "📍 Location", "value": group.location, "inline": True})
    embed: dict[str, Any] = {
        "title": f"{field.emoji} New group POW!",
        "description": group.title,
        "color": EMBED_COLOR,
        "fields": fields,
        "footer": {"text": "Join in the app!"},
        "timestamp": _timestamp(),
    }
    if group.thumbnail_url:
        embed["thumbnail"] = {"url": group.thumbnail_url}
    return {"embeds": [embed]}


def group_pow_started_dm(title: str) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": "📣 Group POW started!",
                "description": f"**{title}** has started.\n\nPlease check in your attendance.",
                "color": EMBED_COLOR,
                "footer": {"text": "Open the app to check in."},
                "timestamp": _timestamp(),
            }
        ]
    }


def group_pow_cancelled_dm(title: str) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": "🚫 Group POW cancelled",
                "description": f"**{title}** was cancelled by its host. No donation is due.",
                "color": EMBED_COLOR,
                "timestamp": _timestamp(),
            }
        ]
    }


def group_pow_invoice_dm(title: str, achievement_rate: float, amount: int) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": "✅ Group POW completed!",
                "description": f"**{title}** is done!\n\n💰 Please donate **{format_sats(amount)} sats**.",
                "color": EMBED_COLOR,
                "fields": [
                    {"name": "Achievement", "value": f"{format_rate(achievement_rate)}%", "inline": True},
                    {"name": "Donation", "value": f"{format_sats(amount)} sats", "inline": True},
                ],
                "footer": {"text": "Pay with the invoice below."},
                "timestamp": _timestamp(),
            }
        ]
    }


def invoice_code_message(payment_request: str) -> dict[str, Any]:
    return {"content": f"```\n{payment_request}\n```"}
