"""Session token storage for the Marzban admin API.

The bearer token is shared by every request the client makes. Reads are
lock-free; writes and logins are serialised so concurrent callers never
race each other into a burst of logins.

Usage:
    store = TokenStore()
    token = store.get()          # None until the first login
    await store.set("eyJhbGciOi...")
"""

from __future__ import annotations

import asyncio


class TokenStore:
    """Guarded cell holding the current access token.

    ``None`` means "not yet authenticated". The last successful write wins.
    """

    def __init__(self, token: str | None = None):
        self._token = token
        self._write_lock = asyncio.Lock()
        self._login_lock = asyncio.Lock()

    def get(self) -> str | None:
        """Return the current token, or None if no login happened yet."""
        return self._token

    @property
    def has_token(self) -> bool:
        return self._token is not None

    @property
    def login_lock(self) -> asyncio.Lock:
        """Lock held by the client for the duration of a login."""
        return self._login_lock

    async def set(self, token: str) -> None:
        """Replace the stored token."""
        async with self._write_lock:
            self._token = token

    async def clear(self) -> None:
        """Forget the stored token so the next request logs in again."""
        async with self._write_lock:
            self._token = None
