"""Integration tests: group POW lifecycle via API."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select, update

from citadel.db.models import GroupPow, GroupPowParticipant, PowRecord


def _form(**overrides) -> dict:
    planned = datetime.now(timezone.utc) + timedelta(minutes=5)
    form = {
        "title": "Sunday study",
        "field": "study",
        "planned_date": planned.isoformat(),
        "planned_duration": "3600",
        "target_sats": "10000",
        "creator_pledged_sats": "1000",
    }
    form.update(overrides)
    return form


async def _create(client: AsyncClient, headers: dict, files: dict | None = None, **overrides) -> httpx.Response:
    return await client.post("/api/v1/group-pow", data=_form(**overrides), files=files, headers=headers)


async def _rewind_start(session_factory, group_pow_id: int, seconds: int) -> None:
    """Pretend the group POW started ``seconds`` ago."""
    async with session_factory() as db:
        await db.execute(
            update(GroupPow)
            .where(GroupPow.id == group_pow_id)
            .values(started_at=datetime.now(timezone.utc) - timedelta(seconds=seconds))
        )
        await db.commit()


@pytest_asyncio.fixture
async def host(make_user):
    return await make_user("host")


@pytest_asyncio.fixture
async def guest(make_user):
    return await make_user("guest")


@pytest_asyncio.fixture
async def group_pow(client: AsyncClient, host, guest) -> dict:
    """An upcoming group POW inside its start window, with one guest joined."""
    created = await _create(client, host[1])
    assert created.status_code == 201, created.text
    group = created.json()
    joined = await client.post(f"/api/v1/group-pow/{group['id']}/join", json={"pledged_sats": 500}, headers=guest[1])
    assert joined.status_code == 200, joined.text
    return group


class TestCreate:
    async def test_create(self, client: AsyncClient, host, discord_api):
        response = await _create(client, host[1], description="Bring books", location="Cafe")
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["status"] == "upcoming"
        assert data["actual_sats_collected"] == 1000
        assert data["participant_count"] == 1
        assert data["creator"]["discord_username"] == "host"
        assert data["location"] == "Cafe"

        posts = discord_api.posts_to("group-channel")
        assert len(posts) == 1
        assert json.loads(posts[0].content)["embeds"][0]["description"] == "Sunday study"

    async def test_thumbnail(self, client: AsyncClient, host, storage_api):
        files = {"thumbnail": ("thumb.png", b"png", "image/png")}
        data = (await _create(client, host[1], files=files)).json()
        assert "/group-pow-thumbnails/" in data["thumbnail_url"]
        assert storage_api.uploads[0][1] == b"png"

    async def test_naive_planned_date_rejected(self, client: AsyncClient, host):
        response = await _create(client, host[1], planned_date="2026-10-24T20:00:00")
        assert response.status_code == 400
        assert "timezone" in response.json()["detail"]

    async def test_pledge_minimum(self, client: AsyncClient, host):
        response = await _create(client, host[1], creator_pledged_sats="99")
        assert response.status_code == 400
        assert response.json()["detail"] == "Pledge must be at least 100 sats"

    async def test_title_too_long(self, client: AsyncClient, host):
        response = await _create(client, host[1], title="x" * 51)
        assert response.status_code == 400

    async def test_unknown_field(self, client: AsyncClient, host):
        response = await _create(client, host[1], field="gaming")
        assert response.status_code == 400

    async def test_requires_member_role(self, client: AsyncClient, make_user):
        _, headers = await make_user(role_status=0)
        assert (await _create(client, headers)).status_code == 403


class TestJoin:
    async def test_join_adds_pledge(self, client: AsyncClient, group_pow, make_user):
        _, headers = await make_user("late")
        response = await client.post(
            f"/api/v1/group-pow/{group_pow['id']}/join", json={"pledged_sats": 250}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["actual_sats_collected"] == 1750

        detail = (await client.get(f"/api/v1/group-pow/{group_pow['id']}")).json()
        assert detail["participant_count"] == 3
        assert [p["pledged_sats"] for p in detail["participants"]] == [1000, 500, 250]

    async def test_join_twice(self, client: AsyncClient, group_pow, guest):
        response = await client.post(
            f"/api/v1/group-pow/{group_pow['id']}/join", json={"pledged_sats": 500}, headers=guest[1]
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Already joined this group POW"

    async def test_pledge_below_minimum(self, client: AsyncClient, group_pow, make_user):
        _, headers = await make_user()
        response = await client.post(
            f"/api/v1/group-pow/{group_pow['id']}/join", json={"pledged_sats": 50}, headers=headers
        )
        assert response.status_code == 400

    async def test_unknown_group(self, client: AsyncClient, guest):
        response = await client.post("/api/v1/group-pow/999/join", json={"pledged_sats": 500}, headers=guest[1])
        assert response.status_code == 404


class TestStart:
    async def test_start_notifies_participants(
        self, client: AsyncClient, group_pow, host, guest, discord_api, push_sender
    ):
        await client.post(
            "/api/v1/push/subscribe",
            json={"endpoint": "https://push.test/guest", "keys": {"p256dh": "k", "auth": "a"}},
            headers=guest[1],
        )

        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        assert response.status_code == 200, response.text
        assert response.json()["success"] is True

        detail = (await client.get(f"/api/v1/group-pow/{group_pow['id']}")).json()
        assert detail["status"] == "ongoing"
        assert detail["started_at"] is not None

        for user, _ in (host, guest):
            dms = discord_api.posts_to(f"dm-{user.discord_id}")
            assert len(dms) == 1
            assert json.loads(dms[0].content)["embeds"][0]["title"] == "📣 Group POW started!"
        assert [endpoint for endpoint, _ in push_sender.sent] == ["https://push.test/guest"]

    async def test_only_creator_can_start(self, client: AsyncClient, group_pow, guest):
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=guest[1])
        assert response.status_code == 403

    async def test_too_early(self, client: AsyncClient, host):
        planned = datetime.now(timezone.utc) + timedelta(hours=2)
        group = (await _create(client, host[1], planned_date=planned.isoformat())).json()

        response = await client.post(f"/api/v1/group-pow/{group['id']}/start", headers=host[1])
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert 104 <= detail["minutes_remaining"] <= 105
        assert datetime.fromisoformat(detail["can_start_at"]) == planned - timedelta(minutes=15)

    async def test_too_late(self, client: AsyncClient, host):
        planned = datetime.now(timezone.utc) - timedelta(minutes=20)
        group = (await _create(client, host[1], planned_date=planned.isoformat())).json()

        response = await client.post(f"/api/v1/group-pow/{group['id']}/start", headers=host[1])
        assert response.status_code == 400
        assert response.json()["detail"] == {"message": "The start window for this group POW has passed"}

    async def test_start_twice(self, client: AsyncClient, group_pow, host):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        again = await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        assert again.status_code == 400
        assert again.json()["detail"] == "Invalid transition: ongoing -> ongoing"

    async def test_join_after_start(self, client: AsyncClient, group_pow, host, make_user):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        _, headers = await make_user()
        response = await client.post(
            f"/api/v1/group-pow/{group_pow['id']}/join", json={"pledged_sats": 500}, headers=headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Can only join an upcoming group POW"


class TestAttendance:
    async def test_check_once(self, client: AsyncClient, group_pow, host, guest):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        url = f"/api/v1/group-pow/{group_pow['id']}/attendance"

        first = await client.post(url, headers=guest[1])
        assert first.status_code == 200
        assert first.json()["success"] is True

        second = await client.post(url, headers=guest[1])
        assert second.status_code == 400
        assert second.json()["detail"]["already_checked"] is True
        assert second.json()["detail"]["attendance_checked_at"] is not None

        status = (await client.get(url, headers=guest[1])).json()
        assert status["is_participant"] is True
        assert status["attendance_checked"] is True
        assert status["pledged_sats"] == 500

    async def test_not_started(self, client: AsyncClient, group_pow, guest):
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/attendance", headers=guest[1])
        assert response.status_code == 400

    async def test_non_participant(self, client: AsyncClient, group_pow, host, make_user):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        _, headers = await make_user()
        url = f"/api/v1/group-pow/{group_pow['id']}/attendance"
        assert (await client.post(url, headers=headers)).status_code == 403
        assert (await client.get(url, headers=headers)).json() == {
            "is_participant": False,
            "attendance_checked": False,
            "attendance_checked_at": None,
            "pledged_sats": None,
        }


class TestEnd:
    async def test_settlement(self, client: AsyncClient, group_pow, host, guest, session_factory, discord_api, blink_api):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        await _rewind_start(session_factory, group_pow["id"], 1800)

        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/end", headers=host[1])
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["achievement_rate"] == 50.0
        assert data["total_actual_sats"] == 750

        detail = (await client.get(f"/api/v1/group-pow/{group_pow['id']}")).json()
        assert detail["status"] == "completed"
        assert detail["actual_sats_collected"] == 750
        assert [p["actual_sats"] for p in detail["participants"]] == [500, 250]
        assert sum(p["actual_sats"] for p in detail["participants"]) == data["total_actual_sats"]

        # One invoice per participant; the guest already holds the start DM
        assert [b["variables"]["input"]["amount"] for b in blink_api.bodies] == [500, 250]
        guest_dms = discord_api.posts_to(f"dm-{guest[0].discord_id}")
        assert len(guest_dms) == 3
        assert json.loads(guest_dms[2].content)["content"] == "```\nlnbc250n1test2\n```"

        async with session_factory() as db:
            participants = (
                await db.execute(select(GroupPowParticipant).order_by(GroupPowParticipant.id))
            ).scalars().all()
        assert [p.invoice_id for p in participants] == ["lnbc500n1test1", "lnbc250n1test2"]

    async def test_invoice_paid(self, client: AsyncClient, group_pow, host, guest, session_factory):
        url = f"/api/v1/group-pow/{group_pow['id']}/invoice/paid"
        assert (await client.post(url, headers=guest[1])).status_code == 400

        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        await _rewind_start(session_factory, group_pow["id"], 3600)
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/end", headers=host[1])

        response = await client.post(url, headers=guest[1])
        assert response.json() == {"success": True}
        detail = (await client.get(f"/api/v1/group-pow/{group_pow['id']}")).json()
        assert [p["invoice_paid"] for p in detail["participants"]] == [False, True]

    async def test_blink_failure_skips_invoices(self, client: AsyncClient, group_pow, host, session_factory, blink_api):
        blink_api.fail = True
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        await _rewind_start(session_factory, group_pow["id"], 3600)

        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/end", headers=host[1])
        assert response.status_code == 200
        async with session_factory() as db:
            invoices = (await db.execute(select(GroupPowParticipant.invoice_id))).scalars().all()
        assert invoices == [None, None]

    async def test_end_requires_ongoing(self, client: AsyncClient, group_pow, host):
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/end", headers=host[1])
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid transition: upcoming -> completed"

    async def test_only_creator_can_end(self, client: AsyncClient, group_pow, host, guest):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/end", headers=guest[1])
        assert response.status_code == 403


class TestCancel:
    async def test_cancel_upcoming(self, client: AsyncClient, group_pow, host, guest, discord_api):
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/cancel", headers=host[1])
        assert response.status_code == 200
        assert response.json()["success"] is True

        # Only the other participants hear about it
        assert len(discord_api.posts_to(f"dm-{guest[0].discord_id}")) == 1
        assert discord_api.posts_to(f"dm-{host[0].discord_id}") == []

        listing = (await client.get("/api/v1/group-pow")).json()
        assert [g["id"] for g in listing["finished"]] == [group_pow["id"]]
        assert listing["finished"][0]["status"] == "cancelled"

    async def test_cannot_cancel_ongoing(self, client: AsyncClient, group_pow, host):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/start", headers=host[1])
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/cancel", headers=host[1])
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot cancel an ongoing group POW"

    async def test_cannot_cancel_twice(self, client: AsyncClient, group_pow, host):
        await client.post(f"/api/v1/group-pow/{group_pow['id']}/cancel", headers=host[1])
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/cancel", headers=host[1])
        assert response.status_code == 400
        assert response.json()["detail"] == "Group POW is already finished"

    async def test_only_creator_can_cancel(self, client: AsyncClient, group_pow, guest):
        response = await client.post(f"/api/v1/group-pow/{group_pow['id']}/cancel", headers=guest[1])
        assert response.status_code == 403


class TestListing:
    async def test_buckets(self, client: AsyncClient, host, group_pow):
        later = datetime.now(timezone.utc) + timedelta(days=3)
        future = (await _create(client, host[1], planned_date=later.isoformat(), title="Later")).json()

        listing = (await client.get("/api/v1/group-pow")).json()
        assert [g["id"] for g in listing["upcoming"]][-1] == future["id"]
        soon_ids = [g["id"] for g in listing["today"] + listing["upcoming"]]
        assert group_pow["id"] in soon_ids
        soon = next(g for g in listing["today"] + listing["upcoming"] if g["id"] == group_pow["id"])
        assert soon["participant_count"] == 2
        assert soon["creator"]["discord_username"] == "host"

    async def test_detail_not_found(self, client: AsyncClient):
        assert (await client.get("/api/v1/group-pow/999")).status_code == 404


class TestLinkedCompletion:
    """Personal POW records that point at a group POW."""

    @staticmethod
    async def _complete(client: AsyncClient, headers: dict, group_pow_id: int) -> httpx.Response:
        pow_data = {
            "field": "study",
            "goal_content": "Group reading",
            "goal_time": 1800,
            "actual_time": 1800,
            "target_sats": 500,
            "mode": "immediate",
            "group_pow_id": group_pow_id,
        }
        return await client.post("/api/v1/pow/complete", data={"pow_data": json.dumps(pow_data)}, headers=headers)

    async def test_participant_links_record(self, client: AsyncClient, group_pow, guest):
        response = await self._complete(client, guest[1], group_pow["id"])
        assert response.status_code == 201, response.text
        assert response.json()["group_pow_id"] == group_pow["id"]

    async def test_unknown_group_pow(self, client: AsyncClient, guest, session_factory):
        response = await self._complete(client, guest[1], 999)
        assert response.status_code == 404
        assert response.json()["detail"] == "Group POW not found"
        async with session_factory() as db:
            assert (await db.execute(select(PowRecord))).scalars().all() == []

    async def test_non_participant_rejected(self, client: AsyncClient, group_pow, make_user):
        _, outsider = await make_user("outsider")
        response = await self._complete(client, outsider, group_pow["id"])
        assert response.status_code == 403
