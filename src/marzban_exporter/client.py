"""Authenticated client for the Marzban admin API.

Obtains a bearer token with the admin credentials, caches it, and retries a
request once with a fresh token when the panel answers 401 Unauthorized.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import aiohttp

from marzban_exporter.auth import TokenStore
from marzban_exporter.errors import (
    AuthenticationFailed,
    MalformedResponse,
    RequestFailed,
    TransportError,
    body_excerpt,
)
from marzban_exporter.models import (
    CoreStatus,
    Node,
    NodeUsage,
    ResourceSnapshot,
    SystemStats,
    User,
)

logger = logging.getLogger(__name__)

# Default total timeout for a single HTTP request, in seconds
DEFAULT_REQUEST_TIMEOUT = 10.0

TOKEN_PATH = "/api/admin/token"

# Resource endpoints, relative to {base_url}/api
NODES_ENDPOINT = "/nodes"
NODES_USAGE_ENDPOINT = "/nodes/usage"
SYSTEM_ENDPOINT = "/system"
CORE_ENDPOINT = "/core"
USERS_ENDPOINT = "/users"


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _as_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


class MarzbanClient:
    """Client for the read-only endpoints the exporter polls."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        token_store: TokenStore | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Panel URL, e.g. ``https://panel.example.com:8000``.
            username: Admin username.
            password: Admin password.
            timeout: Total timeout for each HTTP request in seconds.
            token_store: Shared token cell. A new empty one by default.
        """
        self._base_url = base_url.rstrip("/")
        self._username = username
        self._password = password
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._tokens = token_store if token_store is not None else TokenStore()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def token_store(self) -> TokenStore:
        return self._tokens

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def authenticate(self) -> str:
        """Log in and store a new access token, replacing any cached one.

        Returns:
            The new token.

        Raises:
            AuthenticationFailed: If the panel rejects the credentials.
            TransportError: On network failures or timeout.
            MalformedResponse: If the token response cannot be parsed.
        """
        async with self._tokens.login_lock:
            return await self._login()

    async def ensure_token(self) -> str:
        """Return the cached token, logging in first if there is none."""
        token = self._tokens.get()
        if token is not None:
            return token

        async with self._tokens.login_lock:
            # Another caller may have logged in while we waited
            token = self._tokens.get()
            if token is not None:
                return token
            return await self._login()

    async def _login(self) -> str:
        url = f"{self._base_url}{TOKEN_PATH}"
        logger.info(f"Fetching new access token from {url}")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    data={"username": self._username, "password": self._password},
                    timeout=self._timeout,
                ) as response:
                    status = response.status
                    body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(url, e) from e

        if not _is_success(status):
            logger.error(
                f"Failed to fetch token. Status: {status}, Body: {body_excerpt(_as_text(body))}"
            )
            raise AuthenticationFailed(url, status, _as_text(body))

        payload = self._decode(url, body)
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise MalformedResponse("token response has no access_token", url=url)

        await self._tokens.set(token)
        logger.debug("Stored new access token")
        return token

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def fetch(self, endpoint: str) -> Any:
        """GET an API endpoint and return the decoded JSON body.

        A 401 response triggers exactly one re-authentication and one retry.
        Whatever the retry returns is final.

        Args:
            endpoint: Path relative to ``/api``, e.g. ``/nodes``.

        Raises:
            RequestFailed: On a non-success status (after any retry).
            TransportError: On network failures or timeout.
            MalformedResponse: If the body is not valid UTF-8 JSON.
        """
        url = f"{self._base_url}/api{endpoint}"
        token = await self.ensure_token()

        status, body = await self._get(url, token)

        if status == 401:
            logger.warning(
                f"Received 401 Unauthorized from {url}. "
                "Refreshing token and retrying once."
            )
            token = await self.authenticate()
            status, body = await self._get(url, token)

        if not _is_success(status):
            logger.error(
                f"Request to {url} failed with status {status}. "
                f"Response body: {body_excerpt(_as_text(body))}"
            )
            raise RequestFailed(url, status, _as_text(body))

        return self._decode(url, body)

    async def _get(self, url: str, token: str) -> tuple[int, bytes]:
        logger.debug(f"Making GET request to {url}")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self._timeout,
                ) as response:
                    return response.status, await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(url, e) from e

    @staticmethod
    def _decode(url: str, body: bytes) -> Any:
        try:
            return json.loads(body.decode("utf-8"))
        except UnicodeDecodeError as e:
            logger.error(f"Response from {url} is not valid UTF-8: {e}")
            raise MalformedResponse(f"body is not valid UTF-8: {e}", url=url) from e
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON from {url}: {e}")
            raise MalformedResponse(str(e), url=url) from e

    async def _fetch_model(self, endpoint: str, parse: Callable[[Any], Any]) -> Any:
        data = await self.fetch(endpoint)
        try:
            return parse(data)
        except MalformedResponse as e:
            raise MalformedResponse(e.detail, url=f"{self._base_url}/api{endpoint}") from e

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    async def fetch_nodes(self) -> list[Node]:
        return await self._fetch_model(NODES_ENDPOINT, Node.list_from_payload)

    async def fetch_node_usages(self) -> list[NodeUsage]:
        return await self._fetch_model(NODES_USAGE_ENDPOINT, NodeUsage.list_from_payload)

    async def fetch_system(self) -> SystemStats:
        return await self._fetch_model(SYSTEM_ENDPOINT, SystemStats.from_dict)

    async def fetch_core(self) -> CoreStatus:
        return await self._fetch_model(CORE_ENDPOINT, CoreStatus.from_dict)

    async def fetch_users(self) -> list[User]:
        return await self._fetch_model(USERS_ENDPOINT, User.list_from_payload)

    async def fetch_snapshot(self) -> ResourceSnapshot:
        """Fetch all five resources in order.

        The first failure propagates; later resources are not requested.
        """
        nodes = await self.fetch_nodes()
        node_usages = await self.fetch_node_usages()
        system = await self.fetch_system()
        core = await self.fetch_core()
        users = await self.fetch_users()

        return ResourceSnapshot(
            nodes=nodes,
            node_usages=node_usages,
            system=system,
            core=core,
            users=users,
        )
