"""Discord message payload builders."""

from __future__ import annotations

from datetime import datetime, timezone

from citadel.db.models import GroupPow, PowRecord, User
from citadel.discord.embeds import (
    accumulated_donation_message,
    format_datetime,
    format_duration,
    format_rate,
    format_sats,
    group_pow_announcement,
    group_pow_invoice_dm,
    invoice_code_message,
    pow_completed_message,
)


def _user() -> User:
    return User(id=1, discord_id="42", discord_username="satoshi")


def _record(**overrides) -> PowRecord:
    values = {
        "field": "study",
        "goal_content": "Read the whitepaper",
        "goal_time": 3600,
        "actual_time": 1800,
        "achievement_rate": 50.0,
        "target_sats": 1000,
        "actual_sats": 500,
        "mode": "immediate",
        "status": "donated_immediate",
        "memo": None,
    }
    values.update(overrides)
    return PowRecord(**values)


class TestFormatting:
    def test_duration_under_an_hour(self):
        assert format_duration(59) == "00:59"
        assert format_duration(1800) == "30:00"

    def test_duration_with_hours(self):
        assert format_duration(3600) == "01:00:00"
        assert format_duration(5025) == "01:23:45"

    def test_negative_duration(self):
        assert format_duration(-10) == "00:00"

    def test_rate(self):
        assert format_rate(50.0) == "50"
        assert format_rate(33.3) == "33.3"

    def test_sats(self):
        assert format_sats(1234567) == "1,234,567"

    def test_datetime_in_kst(self):
        assert format_datetime(datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc)) == "2026-10-18 19:00 KST"


class TestPowMessages:
    def test_completed_message(self):
        payload = pow_completed_message(_user(), _record(), with_image=False)
        assert "<@42>" in payload["content"]
        assert "**Study**" in payload["content"]
        description = payload["embeds"][0]["description"]
        assert "`01:00:00`" in description
        assert "`30:00`" in description
        assert "(50%)" in description
        assert "500 sats donated" in description
        assert "image" not in payload["embeds"][0]

    def test_memo_and_image(self):
        payload = pow_completed_message(_user(), _record(memo="gm"), with_image=True)
        assert '"gm"' in payload["content"]
        assert payload["embeds"][0]["image"] == {"url": "attachment://certification.jpg"}

    def test_accumulated_record_is_banked(self):
        payload = pow_completed_message(_user(), _record(status="accumulated", mode="accumulated"), with_image=False)
        assert "500 sats banked" in payload["embeds"][0]["description"]

    def test_accumulated_donation(self):
        payload = accumulated_donation_message(_user(), 12000)
        assert "12,000 sats" in payload["content"]


class TestGroupPowMessages:
    def test_announcement(self):
        group = GroupPow(
            title="Sunday study",
            field="study",
            planned_date=datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc),
            planned_duration=5400,
            target_sats=10000,
            location="Cafe",
        )
        embed = group_pow_announcement(group)["embeds"][0]
        values = {f["name"]: f["value"] for f in embed["fields"]}
        assert embed["description"] == "Sunday study"
        assert values["⏱️ Duration"] == "01:30:00"
        assert values["🎯 Target"] == "10,000 sats"
        assert values["📍 Location"] == "Cafe"

    def test_invoice_dm(self):
        embed = group_pow_invoice_dm("Run", 50.0, 500)["embeds"][0]
        values = [f["value"] for f in embed["fields"]]
        assert values == ["50%", "500 sats"]

    def test_invoice_code_block(self):
        assert invoice_code_message("lnbc1xyz") == {"content": "```\nlnbc1xyz\n```"}
