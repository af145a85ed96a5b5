# ABOUTME: Authentication module for LNbits
# ABOUTME: Bearer token cache with request coalescing, and the HTTP session used by fetchers

import asyncio
import logging
from typing import Any

import httpx

from zapfeed.config import Settings
from zapfeed.exceptions import AuthError, FetchError

logger = logging.getLogger(__name__)

AUTH_PATH = "/api/v1/auth"


def _consume_exception(task: asyncio.Task) -> None:
    # Read the error so an abandoned fetch does not log "never retrieved"
    if not task.cancelled():
        task.exception()


class TokenCache:
    """
    Acquires and memoizes LNbits bearer tokens.

    Tokens are cached per username until ``invalidate()`` is called; there is
    no expiry handling. Concurrent callers asking for the same username while
    a request is in flight share that request instead of issuing their own.
    """

    def __init__(self, base_url: str, transport: httpx.AsyncBaseTransport | None = None,
                 timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout
        self._tokens: dict[str, str] = {}
        self._pending: dict[str, asyncio.Task] = {}

    def cached(self, username: str) -> str | None:
        return self._tokens.get(username)

    async def get_or_fetch(self, username: str, password: str) -> str:
        """Return the cached token for ``username``, fetching it if needed."""
        token = self._tokens.get(username)
        if token:
            return token

        pending = self._pending.get(username)
        if pending is None:
            logger.debug("No cached access token, requesting a new one")
            pending = asyncio.ensure_future(self._fetch(username, password))
            pending.add_done_callback(_consume_exception)
            self._pending[username] = pending
        else:
            logger.debug("Joining in-flight access token request")

        # Shield so one cancelled waiter does not cancel the shared request
        return await asyncio.shield(pending)

    def invalidate(self, username: str | None = None) -> None:
        """Drop one cached token, or all of them."""
        if username is None:
            self._tokens.clear()
        else:
            self._tokens.pop(username, None)

    async def _fetch(self, username: str, password: str) -> str:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                transport=self._transport,
                timeout=self._timeout,
            ) as client:
                try:
                    response = await client.post(
                        AUTH_PATH,
                        json={"username": username, "password": password},
                        headers={"Accept": "application/json"},
                    )
                except httpx.HTTPError as e:
                    raise AuthError(f"Auth request failed: {e}") from e

            if response.status_code != 200:
                raise AuthError(
                    f"Auth failed with status {response.status_code}: {response.text}"
                )

            content_type = response.headers.get("content-type", "")
            if "application/json" not in content_type:
                raise AuthError("Auth response is not JSON")

            try:
                data = response.json()
            except ValueError as e:
                raise AuthError("Auth response is not valid JSON") from e

            token = data.get("access_token") if isinstance(data, dict) else None
            if not token:
                raise AuthError("Auth response did not contain an access token")

            self._tokens[username] = token
            logger.info("Obtained LNbits access token")
            return token
        finally:
            self._pending.pop(username, None)


class LNbitsSession:
    """
    An HTTP session against one LNbits node.

    Admin endpoints are called with the bearer token from ``TokenCache``;
    wallet endpoints are called with the wallet's own key in ``X-Api-Key``.
    Transport failures, timeouts, non-2xx statuses and bad JSON all surface
    as ``FetchError``.
    """

    def __init__(
        self,
        settings: Settings,
        token_cache: TokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self.token_cache = token_cache or TokenCache(
            settings.node_url, transport=transport, timeout=settings.timeout
        )
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the underlying HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.node_url,
                transport=self._transport,
                timeout=self.settings.timeout,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def token(self) -> str:
        username, password = self.settings.credentials()
        return await self.token_cache.get_or_fetch(username, password)

    def invalidate_token(self) -> None:
        self.token_cache.invalidate(self.settings.username)

    async def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        resource_id: str | None,
        **kwargs: Any,
    ) -> Any:
        client = self._get_client()
        try:
            response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise FetchError(f"{method} {path} timed out", resource_id=resource_id) from e
        except httpx.HTTPError as e:
            raise FetchError(f"{method} {path} failed: {e}", resource_id=resource_id) from e

        if response.status_code >= 400:
            raise FetchError(
                f"{method} {path} returned status {response.status_code}",
                resource_id=resource_id,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                f"{method} {path} returned invalid JSON",
                resource_id=resource_id,
                status_code=response.status_code,
            ) from e

    async def admin_get(self, path: str, resource_id: str | None = None, **kwargs: Any) -> Any:
        """GET an admin endpoint with the bearer token."""
        token = await self.token()
        headers = {"Authorization": f"Bearer {token}"}
        return await self._request("GET", path, headers, resource_id, **kwargs)

    async def wallet_get(
        self, path: str, api_key: str, resource_id: str | None = None, **kwargs: Any
    ) -> Any:
        """GET a wallet endpoint with the wallet's key."""
        return await self._request("GET", path, {"X-Api-Key": api_key}, resource_id, **kwargs)

    async def wallet_post(
        self, path: str, api_key: str, resource_id: str | None = None, **kwargs: Any
    ) -> Any:
        """POST to a wallet endpoint with the wallet's key."""
        return await self._request("POST", path, {"X-Api-Key": api_key}, resource_id, **kwargs)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
