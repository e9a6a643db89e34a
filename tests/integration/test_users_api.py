"""Integration tests: profile, stats and role re-sync."""

from __future__ import annotations

import json

from httpx import AsyncClient

BITCOINER = "1456691252329447517"
FULLNODER = "1456691566306656329"


async def _certify(client: AsyncClient, **overrides) -> dict:
    pow_data = {
        "field": "study",
        "goal_content": "Notes",
        "goal_time": 1000,
        "actual_time": 500,
        "target_sats": 1000,
        "mode": "immediate",
    }
    pow_data.update(overrides)
    response = await client.post("/api/v1/pow/complete", data={"pow_data": json.dumps(pow_data)})
    assert response.status_code == 201, response.text
    return response.json()


class TestProfile:
    async def test_me(self, authed_client: AsyncClient, member):
        data = (await authed_client.get("/api/v1/users/me")).json()
        assert data["id"] == member[0].id
        assert data["discord_username"] == "satoshi"
        assert data["role_status"] == 1

    async def test_stats(self, authed_client: AsyncClient):
        record = await _certify(authed_client)
        await authed_client.post("/api/v1/pow/donate", json={"mode": "immediate", "pow_record_id": record["id"]})
        await _certify(authed_client, field="reading", actual_time=1000)

        stats = (await authed_client.get("/api/v1/users/me/stats")).json()
        assert stats["pow_count"] == 2
        assert stats["total_pow_time"] == 1500
        assert stats["total_donated_sats"] == 500
        assert stats["average_achievement_rate"] == 75.0
        assert stats["group_pow_count"] == 0
        assert [(f["field"], f["total_time"], f["donated_sats"]) for f in stats["fields"]] == [
            ("reading", 1000, 0),
            ("study", 500, 500),
        ]

    async def test_stats_empty(self, authed_client: AsyncClient):
        stats = (await authed_client.get("/api/v1/users/me/stats")).json()
        assert stats["pow_count"] == 0
        assert stats["fields"] == []


class TestSyncRole:
    async def test_promotes_to_fullnoder(self, authed_client: AsyncClient, member, discord_api):
        discord_api.members[member[0].discord_id] = {"roles": [BITCOINER, FULLNODER]}
        response = await authed_client.post("/api/v1/users/me/sync-role")
        assert response.status_code == 200
        assert response.json()["role_status"] == 2
        assert response.json()["user"]["role_status"] == 2

    async def test_role_removed(self, authed_client: AsyncClient, member, discord_api):
        discord_api.members[member[0].discord_id] = {"roles": []}
        response = await authed_client.post("/api/v1/users/me/sync-role")
        assert response.json()["role_status"] == 0

        profile = (await authed_client.get("/api/v1/users/me")).json()
        assert profile["role_status"] == 0
        assert profile["discord_roles"] == []

    async def test_not_in_guild(self, authed_client: AsyncClient):
        response = await authed_client.post("/api/v1/users/me/sync-role")
        assert response.status_code == 404
        assert response.json()["detail"] == "Not a member of the Discord server"
