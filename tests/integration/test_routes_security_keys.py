"""Integration tests for the security key HTTP routes."""

from __future__ import annotations

import base64

import pytest
from httpx import ASGITransport, AsyncClient
from webauthn.helpers import base64url_to_bytes

from keyward.storage.repositories.accounts import DatabaseAccountRepository
from keyward.storage.repositories.security_keys import DatabaseSecurityKeyRepository
from keyward.web.app import create_app
from keyward.web.auth.session import SESSION_COOKIE, get_session_auth
from keyward.web.dependencies import get_registration_orchestrator, get_security_key_repo

BASE = "/api/account/security-keys"


@pytest.fixture()
def app(orchestrator, async_engine):
    app = create_app(init_database=False)
    app.dependency_overrides[get_registration_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_security_key_repo] = lambda: DatabaseSecurityKeyRepository(
        async_engine
    )
    return app


@pytest.fixture()
async def client(app, account):
    """An AsyncClient logged in as ``account``."""
    token = get_session_auth().create_session(account.id)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", cookies={SESSION_COOKIE: token}
    ) as c:
        yield c


async def _register(client: AsyncClient, authenticator, name: str = "laptop", **kwargs):
    begun = await client.post(f"{BASE}/register", json={"display_name": name})
    assert begun.status_code == 200
    data = begun.json()["data"]
    registration = authenticator.register(data["credentials"], **kwargs)
    return data["token_id"], registration


@pytest.mark.integration
class TestSecurityKeyRoutes:
    async def test_requires_session(self, app) -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as anon:
            resp = await anon.get(BASE)
        assert resp.status_code == 401

    async def test_begin_returns_token_and_options(self, client: AsyncClient) -> None:
        resp = await client.post(f"{BASE}/register", json={"display_name": "laptop"})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token_id"]
        assert data["credentials"]["rp"]["id"] == "localhost"
        assert data["credentials"]["user"]["displayName"] == "laptop"
        assert len(base64url_to_bytes(data["credentials"]["challenge"])) >= 16

    async def test_begin_without_body(self, client: AsyncClient) -> None:
        resp = await client.post(f"{BASE}/register")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token_id"]
        assert data["credentials"]["user"]["displayName"] == "alice"

    async def test_full_registration(self, client: AsyncClient, authenticator) -> None:
        token_id, registration = await _register(client, authenticator)

        resp = await client.post(
            BASE, json={"token_id": token_id, "registration": registration, "name": "laptop"}
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["name"] == "laptop"
        assert data["public_key_id"] == base64.b64encode(
            base64url_to_bytes(registration["rawId"])
        ).decode()
        assert set(data) == {"id", "name", "public_key_id", "created_at", "updated_at"}

        listed = (await client.get(BASE)).json()["data"]
        assert [k["id"] for k in listed] == [data["id"]]

    async def test_unknown_token(self, client: AsyncClient, authenticator) -> None:
        _, registration = await _register(client, authenticator)
        resp = await client.post(
            BASE, json={"token_id": "nope", "registration": registration, "name": "laptop"}
        )
        assert resp.status_code == 400
        assert resp.json()["reason"] == "expired_challenge"
        assert "please try your request again" in resp.json()["detail"]

    async def test_verification_failure_is_generic(
        self, client: AsyncClient, authenticator
    ) -> None:
        token_id, registration = await _register(
            client, authenticator, origin="https://evil.example"
        )
        resp = await client.post(
            BASE, json={"token_id": token_id, "registration": registration, "name": "laptop"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Registration failed.", "reason": "verification_failed"}
        assert (await client.get(BASE)).json()["data"] == []

    async def test_duplicate_credential(
        self, app, client: AsyncClient, authenticator, async_engine
    ) -> None:
        credential_id = b"\x02" * 32
        token_id, registration = await _register(
            client, authenticator, credential_id=credential_id
        )
        await client.post(
            BASE, json={"token_id": token_id, "registration": registration, "name": "a"}
        )

        other = await DatabaseAccountRepository(async_engine).create(username="bob")
        session = get_session_auth().create_session(other.id)
        transport = ASGITransport(app=app)
        async with AsyncClient(
            transport=transport, base_url="http://test", cookies={SESSION_COOKIE: session}
        ) as bob:
            token_id, registration = await _register(bob, authenticator, credential_id=credential_id)
            resp = await bob.post(
                BASE, json={"token_id": token_id, "registration": registration, "name": "b"}
            )
            assert resp.status_code == 409
            assert resp.json()["reason"] == "duplicate_credential"
            assert (await bob.get(BASE)).json()["data"] == []

    async def test_delete(self, client: AsyncClient, authenticator) -> None:
        token_id, registration = await _register(client, authenticator)
        created = await client.post(
            BASE, json={"token_id": token_id, "registration": registration, "name": "laptop"}
        )
        key_id = created.json()["data"]["id"]

        assert (await client.delete(f"{BASE}/{key_id}")).status_code == 204
        assert (await client.get(BASE)).json()["data"] == []
        assert (await client.delete(f"{BASE}/{key_id}")).status_code == 404

    async def test_request_id_header(self, client: AsyncClient) -> None:
        resp = await client.get(BASE, headers={"x-request-id": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"
