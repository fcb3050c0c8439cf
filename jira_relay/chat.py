"""
Chat platform client: identity checks and post delivery.

Talks to a Mattermost-compatible REST API:
- user lookup by username (the bot that authors posts)
- channel membership checks for subscription management
- post creation, with retry and rate-limit handling
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx
import structlog

from .metrics import MetricsCollector

log = structlog.get_logger()

# Retry configuration
MAX_RETRIES = 3
RETRY_BASE_SECONDS = 1.0


class ChatError(Exception):
    """Chat platform request failed."""


def parse_retry_after(value: str | None, default: float) -> float:
    """
    Seconds to wait from a Retry-After header.

    Accepts delta-seconds or an HTTP date; anything unparseable yields default.
    """
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(0.0, seconds) if math.isfinite(seconds) else default
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ChatClient:
    """
    Async client for the chat platform.

    Membership and user lookups fail fast; post creation retries 5xx and
    connection errors with exponential backoff and honours 429 Retry-After.
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        verify_tls: bool = True,
        request_timeout: int = 30,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/")
        self._token = token
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._user_ids: dict[str, str] = {}

    async def open(self) -> None:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        self._client = httpx.AsyncClient(
            base_url=self._url,
            headers=headers,
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # --- Identity ---

    async def get_user_id(self, username: str) -> str:
        """Resolve a username to a user id, cached for the client's lifetime."""
        assert self._client
        if username in self._user_ids:
            return self._user_ids[username]
        try:
            resp = await self._client.get(f"/api/v4/users/username/{username}")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.error("chat.user_lookup_failed", username=username, error=str(exc))
            raise ChatError(f"unable to look up user {username!r}") from exc
        user_id = resp.json()["id"]
        self._user_ids[username] = user_id
        return user_id

    async def is_channel_member(self, channel_id: str, user_id: str) -> bool:
        assert self._client
        try:
            resp = await self._client.get(
                f"/api/v4/channels/{channel_id}/members/{user_id}"
            )
        except httpx.HTTPError as exc:
            raise ChatError("unable to check channel membership") from exc
        if resp.status_code == 200:
            return True
        if resp.status_code in (403, 404):
            return False
        raise ChatError(f"membership check returned {resp.status_code}")

    # --- Delivery ---

    async def create_post(self, channel_id: str, user_id: str, message: str) -> None:
        """Post a message to a channel with retries."""
        assert self._client
        body = {"channel_id": channel_id, "user_id": user_id, "message": message}

        last_exc: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = await self._client.post("/api/v4/posts", json=body)

                if resp.status_code == 429:
                    retry_after = parse_retry_after(
                        resp.headers.get("Retry-After"), RETRY_BASE_SECONDS * (attempt + 1)
                    )
                    log.warning("chat.rate_limited", retry_after=retry_after)
                    await asyncio.sleep(retry_after)
                    continue

                resp.raise_for_status()
                if self._metrics:
                    self._metrics.inc("posts_total", outcome="sent")
                return

            except httpx.HTTPStatusError as exc:
                if 400 <= exc.response.status_code < 500:
                    log.error(
                        "chat.post_client_error",
                        status=exc.response.status_code,
                        channel_id=channel_id,
                    )
                    if self._metrics:
                        self._metrics.inc("posts_total", outcome="rejected")
                    raise ChatError(f"post rejected with {exc.response.status_code}") from exc
                last_exc = exc
            except httpx.TransportError as exc:
                last_exc = exc

            backoff = RETRY_BASE_SECONDS * (2 ** attempt)
            log.warning(
                "chat.post_retry",
                attempt=attempt + 1,
                backoff=backoff,
                error=repr(last_exc),
            )
            await asyncio.sleep(backoff)

        if self._metrics:
            self._metrics.inc("posts_total", outcome="failed")
        raise ChatError(f"unable to post to channel {channel_id}") from last_exc

    # --- Health ---

    async def check_health(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get("/api/v4/system/ping")
            return resp.status_code == 200
        except Exception:
            return False
