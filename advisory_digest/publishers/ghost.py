from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Sequence

import httpx
import jwt

from ..config import GhostConfig, Settings


ADMIN_AUDIENCE = "/admin/"
TOKEN_LIFETIME = timedelta(minutes=5)

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    success: bool
    post_id: str | None = None
    post_url: str | None = None
    error: str | None = None


def admin_token(admin_key: str, now: datetime | None = None) -> str:
    """Sign a short-lived Ghost Admin API token from an ``<id>:<hex secret>`` key."""
    key_id, sep, secret = admin_key.partition(":")
    if not sep or not key_id or not secret:
        raise ValueError("Ghost admin key must look like '<id>:<secret>'")
    issued = now or datetime.now(timezone.utc)
    payload = {
        "iat": int(issued.timestamp()),
        "exp": int((issued + TOKEN_LIFETIME).timestamp()),
        "aud": ADMIN_AUDIENCE,
    }
    return jwt.encode(payload, bytes.fromhex(secret), algorithm="HS256", headers={"kid": key_id})


async def publish_draft(
    target: GhostConfig,
    title: str,
    html: str,
    tags: Sequence[dict[str, str]],
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> PublishResult:
    try:
        token = admin_token(target.admin_key)
    except ValueError as exc:
        return PublishResult(success=False, error=f"Invalid Ghost admin key: {exc}")

    settings = settings or Settings()
    endpoint = target.url.rstrip("/") + "/ghost/api/admin/posts/"
    headers = {
        "Authorization": f"Ghost {token}",
        "User-Agent": settings.user_agent,
        "Accept-Version": "v5.0",
    }
    body = {"posts": [{"title": title, "html": html, "status": "draft", "tags": list(tags)}]}

    try:
        if client is not None:
            response = await _post(client, endpoint, body, headers)
        else:
            async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as owned:
                response = await _post(owned, endpoint, body, headers)
    except httpx.HTTPError as exc:
        return PublishResult(success=False, error=str(exc) or type(exc).__name__)

    if not 200 <= response.status_code < 300:
        return PublishResult(success=False, error=_error_message(response))

    try:
        post = response.json()["posts"][0]
    except (ValueError, KeyError, IndexError, TypeError):
        return PublishResult(success=False, error="Ghost returned an unexpected response body")
    post_id = post.get("id")
    post_url = post.get("url") or (f"{target.url.rstrip('/')}/p/{post.get('uuid')}/" if post.get("uuid") else None)
    logger.info("Created Ghost draft %s", post_id)
    return PublishResult(success=True, post_id=post_id, post_url=post_url)


async def _post(
    client: httpx.AsyncClient,
    endpoint: str,
    body: dict[str, Any],
    headers: dict[str, str],
) -> httpx.Response:
    return await client.post(endpoint, params={"source": "html"}, json=body, headers=headers)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = {}
    errors = (data.get("errors") if isinstance(data, dict) else None) or []
    if errors and isinstance(errors[0], dict) and errors[0].get("message"):
        return f"HTTP {response.status_code}: {errors[0]['message']}"
    return f"HTTP {response.status_code}: {response.reason_phrase}"
