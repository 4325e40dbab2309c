"""
Remote state storage.

StatePort is the single storage port the sync manager retries against.
RemoteStateClient implements it over HTTP:

    POST {endpoint}            body: {"state": <payload>}
    GET  {endpoint}?userId=... 200 -> {"state": <payload>}, 404 -> no state

Failures are classified once here: timeouts, connection errors, 429 and
5xx are TransientNetworkFailure; any other 4xx is PermanentRejection.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
from loguru import logger

from triple_helix.errors import InvalidPayload, PermanentRejection, TransientNetworkFailure
from triple_helix.scheduling.models import SchedulerState

from .schemas import decode_payload, encode_payload, from_payload, to_payload


class StatePort(Protocol):
    """Where synced state lives off-device."""

    async def push_state(self, state: SchedulerState) -> None: ...

    async def fetch_state(self, user_id: str) -> SchedulerState | None: ...


class RemoteStateClient:
    """
    HTTP client for the user-state endpoint.

    Usage:
        async with RemoteStateClient(base_url, api_key=key) as remote:
            await remote.push_state(state)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        endpoint: str = "/api/v1/user-state",
        timeout_seconds: float = 10.0,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> RemoteStateClient:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["X-API-Key"] = self.api_key

            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    @property
    def client(self) -> httpx.AsyncClient | None:
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Requests
    # =========================================================================

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(method, self.endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkFailure(f"{method} {self.endpoint} timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientNetworkFailure(f"{method} {self.endpoint} failed: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientNetworkFailure(f"{method} {self.endpoint} returned {status}", status_code=status)
        if status >= 400 and status != 404:
            detail = _error_detail(response)
            raise PermanentRejection(
                f"{method} {self.endpoint} rejected with {status}: {detail}", status_code=status
            )
        return response

    async def push_state(self, state: SchedulerState) -> None:
        """
        Upload the full state document.

        Raises:
            TransientNetworkFailure: Retryable failure
            PermanentRejection: The server refused the write
        """
        response = await self._request("POST", json={"state": encode_payload(to_payload(state))})
        if response.status_code == 404:
            raise PermanentRejection(f"State endpoint {self.endpoint} not found", status_code=404)
        logger.debug(f"Pushed state for {state.user_id} ({response.status_code})")

    async def fetch_state(self, user_id: str) -> SchedulerState | None:
        """
        Download the remote copy for a user.

        Returns:
            The remote state, or None when the server has none
        """
        response = await self._request("GET", params={"userId": user_id})
        if response.status_code == 404:
            return None

        try:
            body = response.json()
        except ValueError as e:
            raise InvalidPayload(f"Remote state for {user_id} is not JSON: {e}") from e

        data = body.get("state") if isinstance(body, dict) else None
        if data is None:
            return None
        if not isinstance(data, dict):
            raise InvalidPayload(f"Remote state for {user_id} is not an object")
        return from_payload(decode_payload(data))


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)
