"""
Unit tests for the remote state client.
"""

import httpx
import pytest
import pytest_asyncio
from httpx import Request, Response

from triple_helix.errors import InvalidPayload, PermanentRejection, TransientNetworkFailure
from triple_helix.persistence.remote import RemoteStateClient
from triple_helix.persistence.schemas import encode_payload, to_payload

BASE_URL = "http://localhost:3000"
ENDPOINT = "/api/v1/user-state"


@pytest_asyncio.fixture
async def client():
    """Remote client with an open httpx client."""
    client = RemoteStateClient(BASE_URL, api_key="secret", endpoint=ENDPOINT, timeout_seconds=2)
    await client._ensure_client()
    yield client
    await client.close()


def respond(status: int, json=None, method: str = "POST"):
    """Build a fake request coroutine returning a canned response."""

    async def fake_request(*args, **kwargs):
        return Response(status, json=json, request=Request(method, f"{BASE_URL}{ENDPOINT}"))

    return fake_request


class TestClientSetup:
    @pytest.mark.asyncio
    async def test_headers(self, client):
        assert client.client.headers["X-API-Key"] == "secret"
        assert str(client.client.base_url).startswith(BASE_URL)

    @pytest.mark.asyncio
    async def test_context_manager_closes(self):
        async with RemoteStateClient(BASE_URL) as remote:
            assert remote.client is not None
        assert remote.client is None


class TestPushState:
    """Tests for push_state."""

    @pytest.mark.asyncio
    async def test_success_sends_camel_case_envelope(self, client, seeded_state, monkeypatch):
        captured = {}

        async def fake_request(method, url, **kwargs):
            captured.update(method=method, url=url, **kwargs)
            return Response(200, json={"ok": True}, request=Request(method, f"{BASE_URL}{url}"))

        monkeypatch.setattr(client.client, "request", fake_request)

        await client.push_state(seeded_state)

        assert captured["method"] == "POST"
        assert captured["url"] == ENDPOINT
        assert captured["json"]["state"]["userId"] == "user-123"
        assert "activeTubeNumber" in captured["json"]["state"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    async def test_retryable_status(self, client, seeded_state, monkeypatch, status):
        monkeypatch.setattr(client.client, "request", respond(status))

        with pytest.raises(TransientNetworkFailure) as exc_info:
            await client.push_state(seeded_state)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403, 409, 422])
    async def test_rejected_status(self, client, seeded_state, monkeypatch, status):
        monkeypatch.setattr(client.client, "request", respond(status, json={"detail": "user mismatch"}))

        with pytest.raises(PermanentRejection, match="user mismatch") as exc_info:
            await client.push_state(seeded_state)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_timeout(self, client, seeded_state, monkeypatch):
        async def fake_request(*args, **kwargs):
            raise httpx.ReadTimeout("timed out")

        monkeypatch.setattr(client.client, "request", fake_request)

        with pytest.raises(TransientNetworkFailure, match="timed out"):
            await client.push_state(seeded_state)

    @pytest.mark.asyncio
    async def test_connection_error(self, client, seeded_state, monkeypatch):
        async def fake_request(*args, **kwargs):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(client.client, "request", fake_request)

        with pytest.raises(TransientNetworkFailure, match="connection refused"):
            await client.push_state(seeded_state)


class TestFetchState:
    """Tests for fetch_state."""

    @pytest.mark.asyncio
    async def test_found(self, client, seeded_state, monkeypatch):
        body = {"state": encode_payload(to_payload(seeded_state))}
        monkeypatch.setattr(client.client, "request", respond(200, json=body, method="GET"))

        assert await client.fetch_state("user-123") == seeded_state

    @pytest.mark.asyncio
    async def test_not_found(self, client, monkeypatch):
        monkeypatch.setattr(client.client, "request", respond(404, json={"detail": "none"}, method="GET"))
        assert await client.fetch_state("user-123") is None

    @pytest.mark.asyncio
    async def test_empty_state(self, client, monkeypatch):
        monkeypatch.setattr(client.client, "request", respond(200, json={"state": None}, method="GET"))
        assert await client.fetch_state("user-123") is None

    @pytest.mark.asyncio
    async def test_invalid_state(self, client, monkeypatch):
        monkeypatch.setattr(
            client.client, "request", respond(200, json={"state": {"userId": "x"}}, method="GET")
        )
        with pytest.raises(InvalidPayload):
            await client.fetch_state("user-123")
