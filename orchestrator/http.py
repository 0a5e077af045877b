"""Shared async HTTP helpers for provider calls."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .config import settings
from .errors import ProviderAPIError

logger = logging.getLogger(__name__)

_client: httpx.AsyncClient | None = None


def get_client() -> httpx.AsyncClient:
    """Return the process-wide client, creating it on first use."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds))
    return _client


def set_client(client: httpx.AsyncClient | None) -> None:
    """Replace the shared client (tests install a MockTransport-backed one)."""
    global _client
    _client = client


async def aclose() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text[:500]
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, dict) and isinstance(detail.get("message"), str):
            return detail["message"]
        for key in ("message", "error", "detail"):
            if isinstance(payload.get(key), str):
                return payload[key]
        if isinstance(payload.get("errors"), list) and payload["errors"]:
            return str(payload["errors"][0])
    return resp.text[:500]


async def request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json_body: Any | None = None,
    raise_for_status: bool = True,
) -> httpx.Response:
    """Issue one request; transport and status failures become ProviderAPIError."""
    client = get_client()
    try:
        resp = await client.request(method, url, headers=headers, params=params, json=json_body)
    except httpx.RequestError as e:
        raise ProviderAPIError(f"Request failed ({method} {url}): {e}") from e

    if raise_for_status and not resp.is_success:
        detail = _error_detail(resp)
        logger.warning("%s %s -> %s", method, url, resp.status_code)
        raise ProviderAPIError(
            f"API error {resp.status_code} ({method} {url}): {detail}",
            status_code=resp.status_code,
            body=resp.text,
        )
    return resp


async def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json_body: Any | None = None,
) -> Any:
    """Like :func:`request` but returns the decoded JSON body (None when empty)."""
    resp = await request(method, url, headers=headers, params=params, json_body=json_body)
    if not resp.content:
        return None
    try:
        return resp.json()
    except json.JSONDecodeError as exc:
        raise ProviderAPIError(
            f"Invalid JSON response ({method} {url}): {resp.text[:200]}",
            status_code=resp.status_code,
            body=resp.text,
        ) from exc
