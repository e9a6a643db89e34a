"""Integration tests for the Discord login flow and token lifecycle."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from httpx import AsyncClient

FULLNODER = "1456691566306656329"


async def _login(client: AsyncClient) -> dict:
    login = await client.get("/api/v1/auth/discord/login")
    state = login.json()["state"]
    response = await client.post("/api/v1/auth/discord/callback", json={"code": "abc", "state": state})
    assert response.status_code == 200, response.text
    return response.json()


class TestDiscordLogin:
    async def test_login_url_carries_state(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/discord/login")
        assert response.status_code == 200
        data = response.json()
        query = parse_qs(urlparse(data["authorize_url"]).query)
        assert query["state"] == [data["state"]]
        assert query["scope"] == ["identify guilds guilds.members.read"]

    async def test_callback_creates_user(self, client: AsyncClient):
        data = await _login(client)
        assert data["created"] is True
        assert data["token_type"] == "bearer"
        assert data["user"]["discord_id"] == "200000000000000001"
        assert data["user"]["discord_username"] == "hal"
        assert data["user"]["role_status"] == 1
        assert data["user"]["discord_avatar_url"].endswith("/embed/avatars/1.png")

    async def test_second_login_updates_profile(self, client: AsyncClient, oauth_handler: dict):
        first = await _login(client)
        oauth_handler["profile"] = {"id": "200000000000000001", "username": "hal2", "avatar": "abc"}
        oauth_handler["roles"] = [FULLNODER]

        second = await _login(client)
        assert second["created"] is False
        assert second["user"]["id"] == first["user"]["id"]
        assert second["user"]["discord_username"] == "hal2"
        assert second["user"]["role_status"] == 2

    async def test_state_is_single_use(self, client: AsyncClient):
        state = (await client.get("/api/v1/auth/discord/login")).json()["state"]
        ok = await client.post("/api/v1/auth/discord/callback", json={"code": "abc", "state": state})
        assert ok.status_code == 200

        replay = await client.post("/api/v1/auth/discord/callback", json={"code": "abc", "state": state})
        assert replay.status_code == 400
        assert replay.json()["detail"] == "Invalid or expired OAuth state"

    async def test_unknown_state(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/discord/callback", json={"code": "abc", "state": "forged"})
        assert response.status_code == 400

    async def test_rejected_code(self, client: AsyncClient, oauth_handler: dict):
        oauth_handler["token_status"] = 400
        state = (await client.get("/api/v1/auth/discord/login")).json()["state"]
        response = await client.post("/api/v1/auth/discord/callback", json={"code": "bad", "state": state})
        assert response.status_code == 401

    async def test_non_member_gets_no_role(self, client: AsyncClient, oauth_handler: dict):
        oauth_handler["roles"] = None
        data = await _login(client)
        assert data["user"]["role_status"] == 0

    async def test_access_token_resolves_profile(self, client: AsyncClient):
        data = await _login(client)
        response = await client.get(
            "/api/v1/users/me", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert response.status_code == 200
        assert response.json()["discord_username"] == "hal"


class TestTokenRefresh:
    async def test_rotation(self, client: AsyncClient):
        tokens = await _login(client)
        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["refresh_token"] != tokens["refresh_token"]

    async def test_reuse_revokes_family(self, client: AsyncClient):
        tokens = await _login(client)
        rotated = (
            await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        ).json()

        reuse = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert reuse.status_code == 401
        assert reuse.json()["detail"] == "Refresh token has been revoked"

        # The legitimately rotated token died with the family
        after = await client.post("/api/v1/auth/refresh", json={"refresh_token": rotated["refresh_token"]})
        assert after.status_code == 401

    async def test_access_token_cannot_refresh(self, client: AsyncClient):
        tokens = await _login(client)
        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert response.status_code == 401

    async def test_garbage_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": "not-a-jwt"})
        assert response.status_code == 401


class TestLogout:
    async def test_logout_revokes_refresh_token(self, client: AsyncClient):
        tokens = await _login(client)
        response = await client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert response.json() == {"status": "logged_out"}

        refresh = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401

    async def test_logout_ignores_bad_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/logout", json={"refresh_token": "junk"})
        assert response.status_code == 200

    async def test_logout_all(self, client: AsyncClient):
        first = await _login(client)
        second = await _login(client)
        response = await client.post(
            "/api/v1/auth/logout-all", headers={"Authorization": f"Bearer {second['access_token']}"}
        )
        assert response.json() == {"status": "all_sessions_revoked", "revoked_count": 2}
        refresh = await client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert refresh.status_code == 401

    async def test_protected_route_requires_token(self, client: AsyncClient):
        response = await client.get("/api/v1/users/me")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"
