"""Twitch Helix client: the authoritative source of stream liveness.

Security contract:
- App access token obtained by client-credentials grant, never logged
- A 401 triggers exactly one token refresh and retry
- Every request is bounded by an explicit timeout
- Any transport, timeout or HTTP failure surfaces as AuthoritativeLookupError
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from chatsage.errors import AuthoritativeLookupError

logger = logging.getLogger(__name__)

HELIX_MAX_BATCH = 100


def _batches(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class HelixClient:
    """Minimal async Helix client for user and stream lookups."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        base_url: str = "https://api.twitch.tv/helix",
        token_url: str = "https://id.twitch.tv/oauth2/token",
        batch_size: int = HELIX_MAX_BATCH,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url
        self.batch_size = max(1, min(batch_size, HELIX_MAX_BATCH))
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "HelixClient":
        return cls(
            settings.twitch_client_id,
            settings.twitch_client_secret,
            base_url=settings.helix_base_url,
            token_url=settings.twitch_token_url,
            batch_size=settings.helix_batch_size,
            timeout=settings.helix_timeout_seconds,
            **kwargs,
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _fetch_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise AuthoritativeLookupError("TWITCH_CLIENT_ID / TWITCH_CLIENT_SECRET not set")
        try:
            response = await self._http().post(
                self.token_url,
                params={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
            )
            response.raise_for_status()
            token = response.json().get("access_token")
        except (httpx.HTTPError, ValueError) as e:
            raise AuthoritativeLookupError(f"Twitch token request failed: {type(e).__name__}") from e
        if not token:
            raise AuthoritativeLookupError("Twitch token response had no access_token")
        logger.debug("Obtained Twitch app access token")
        return token

    async def _get(self, path: str, params: list[tuple[str, str]]) -> list[dict]:
        """GET a Helix endpoint and return its ``data`` list."""
        if self._token is None:
            self._token = await self._fetch_token()

        for attempt in range(2):
            try:
                response = await self._http().get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers={
                        "Client-ID": self.client_id,
                        "Authorization": f"Bearer {self._token}",
                    },
                )
            except httpx.HTTPError as e:
                raise AuthoritativeLookupError(
                    f"Helix {path} request failed: {type(e).__name__}"
                ) from e

            if response.status_code == 401 and attempt == 0:
                logger.info("Helix returned 401, refreshing app access token")
                self._token = await self._fetch_token()
                continue

            if response.status_code != 200:
                raise AuthoritativeLookupError(f"Helix {path} returned HTTP {response.status_code}")
            try:
                return list(response.json().get("data") or [])
            except ValueError as e:
                raise AuthoritativeLookupError(f"Helix {path} returned invalid JSON") from e

        raise AuthoritativeLookupError(f"Helix {path} unauthorized after token refresh")

    async def get_users_by_login(self, logins: Iterable[str]) -> dict[str, str]:
        """Resolve logins to stable user IDs. Unknown logins are omitted."""
        unique = sorted({login.lower() for login in logins if login})
        resolved: dict[str, str] = {}
        for batch in _batches(unique, self.batch_size):
            data = await self._get("/users", [("login", login) for login in batch])
            for user in data:
                if user.get("login") and user.get("id"):
                    resolved[user["login"].lower()] = str(user["id"])
        return resolved

    async def get_live_streams(self, user_ids: Iterable[str]) -> list[dict]:
        """Return the Helix stream objects for those IDs that are live now."""
        unique = sorted({str(uid) for uid in user_ids if uid})
        streams: list[dict] = []
        for batch in _batches(unique, self.batch_size):
            data = await self._get("/streams", [("user_id", uid) for uid in batch])
            streams.extend(s for s in data if s.get("type", "live") == "live")
        return streams

    async def get_live_logins(self, logins: Iterable[str]) -> set[str]:
        """Authoritative answer: which of these logins are live right now.

        Raises AuthoritativeLookupError when no login at all could be resolved,
        since that is indistinguishable from a broken lookup.
        """
        wanted = sorted({login.lower() for login in logins if login})
        if not wanted:
            return set()

        ids = await self.get_users_by_login(wanted)
        if not ids:
            raise AuthoritativeLookupError(f"Helix resolved none of {len(wanted)} logins")
        missing = set(wanted) - set(ids)
        if missing:
            logger.warning("Helix could not resolve logins (treated as offline): %s", ", ".join(sorted(missing)))

        by_id = {uid: login for login, uid in ids.items()}
        live: set[str] = set()
        for stream in await self.get_live_streams(ids.values()):
            login = by_id.get(str(stream.get("user_id"))) or (stream.get("user_login") or "").lower()
            if login:
                live.add(login)
        return live
