"""Async client for the dealer CRM collaborator API.

Covers leads, lead activities, tasks, opportunities, and the team-member
directory.  The API owns persistence and activity logging: every successful
status or assignment PATCH appends the matching activity server-side.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=10)
_DIRECTORY_CACHE_TTL_SECONDS = 300  # 5 minutes


class CrmClientError(RuntimeError):
    """Raised for CRM request/config errors with structured metadata."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.details = details or {}


class _TTLCache:
    """Simple in-memory cache with per-entry TTL."""

    def __init__(self, ttl: int = _DIRECTORY_CACHE_TTL_SECONDS) -> None:
        self._store: dict[str, tuple[float, Any]] = {}
        self._ttl = ttl

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        ts, value = entry
        if time.monotonic() - ts > self._ttl:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._store[key] = (time.monotonic(), value)

    def clear(self) -> None:
        self._store.clear()


SHARED_DIRECTORY_CACHE = _TTLCache()


def _list_field(payload: Any, key: str) -> list[dict[str, Any]]:
    items = payload.get(key) if isinstance(payload, dict) else None
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _object_field(payload: Any, key: str) -> dict[str, Any]:
    item = payload.get(key) if isinstance(payload, dict) else None
    if not isinstance(item, dict):
        raise CrmClientError(
            f"CRM response is missing '{key}'.",
            code="MALFORMED_RESPONSE",
            details={"response": payload},
        )
    return item


class CrmClient:
    """Async client for the dealer CRM endpoints used by the lead pipeline."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        *,
        cache: _TTLCache | None = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.api_token = api_token.strip()
        self.session: aiohttp.ClientSession | None = None
        self._cache = cache or _TTLCache()

    async def open(self) -> None:
        if not self.base_url:
            raise CrmClientError(
                "LEAD_PIPELINE_API_URL is not configured.",
                code="MISSING_API_URL",
            )
        if self.session is not None:
            return
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        self.session = aiohttp.ClientSession(headers=headers)

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> CrmClient:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        if not self.session:
            raise RuntimeError("Client not opened; use 'async with' or await open()")

        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(
                method,
                url,
                params=params,
                json=body,
                timeout=_REQUEST_TIMEOUT,
            ) as resp:
                try:
                    raw_text = await resp.text()
                except UnicodeDecodeError as exc:
                    raise CrmClientError(
                        f"CRM returned an undecodable response (HTTP {resp.status}).",
                        code="MALFORMED_RESPONSE",
                        status=resp.status,
                        details={"method": method, "path": path},
                    ) from exc
                payload: Any = {}
                if raw_text:
                    try:
                        payload = json.loads(raw_text)
                    except json.JSONDecodeError:
                        payload = {"raw": raw_text}

                if resp.status >= 400:
                    message = f"CRM request failed with HTTP {resp.status}."
                    if isinstance(payload, dict):
                        message = str(
                            payload.get("error")
                            or payload.get("message")
                            or message
                        )
                    raise CrmClientError(
                        message,
                        code="CRM_HTTP_ERROR",
                        status=resp.status,
                        details=payload if isinstance(payload, dict) else {"response": payload},
                    )
                return payload
        except CrmClientError:
            raise
        except TimeoutError as exc:
            raise CrmClientError(
                "CRM request timed out.",
                code="TIMEOUT",
                details={"method": method, "path": path},
            ) from exc
        except aiohttp.ClientError as exc:
            logger.error("CRM client error (%s %s): %s", method, path, exc)
            raise CrmClientError(
                "CRM request failed due to a network/client error.",
                code="NETWORK_ERROR",
                details={"method": method, "path": path, "error": str(exc)},
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request; GETs get one retry on 5xx and transport failures."""
        if method != "GET":
            return await self._send(method, path, params=params, body=body)

        for attempt in range(2):  # 1 retry
            try:
                return await self._send(method, path, params=params)
            except CrmClientError as exc:
                retryable = exc.code in {"TIMEOUT", "NETWORK_ERROR"} or (
                    exc.status is not None and exc.status >= 500
                )
                if attempt == 0 and retryable:
                    logger.debug("Retrying GET %s after %s", path, exc.code)
                    continue
                raise
        raise AssertionError("unreachable")  # pragma: no cover

    # ── Leads ───────────────────────────────────────────────────────

    async def list_leads(self, *, assigned_to: str = "all", search: str = "") -> list[dict[str, Any]]:
        """List leads scoped by assignee filter and free-text search."""
        params: dict[str, str] = {}
        if assigned_to and assigned_to != "all":
            params["assignedTo"] = assigned_to
        if search.strip():
            params["search"] = search.strip()
        payload = await self._request("GET", "/leads", params=params or None)
        return _list_field(payload, "leads")

    async def get_lead(self, lead_id: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/leads/{lead_id}")
        return _object_field(payload, "lead")

    async def update_lead(self, lead_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """PATCH any of status/assignedToId/notes/estimatedValue; returns the lead."""
        payload = await self._request("PATCH", f"/leads/{lead_id}", body=fields)
        return _object_field(payload, "lead")

    # ── Activities ──────────────────────────────────────────────────

    async def list_activities(self, lead_id: str) -> list[dict[str, Any]]:
        payload = await self._request("GET", f"/leads/{lead_id}/activities")
        return _list_field(payload, "activities")

    async def create_activity(self, lead_id: str, activity_type: str, content: str) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            f"/leads/{lead_id}/activities",
            body={"type": activity_type, "content": content},
        )
        return _object_field(payload, "activity")

    # ── Tasks ───────────────────────────────────────────────────────

    async def list_tasks(self, lead_id: str) -> list[dict[str, Any]]:
        payload = await self._request("GET", f"/leads/{lead_id}/tasks")
        return _list_field(payload, "tasks")

    async def create_task(self, lead_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request("POST", f"/leads/{lead_id}/tasks", body=fields)
        return _object_field(payload, "task")

    async def update_task(self, lead_id: str, task_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "PATCH", f"/leads/{lead_id}/tasks/{task_id}", body=fields
        )
        return _object_field(payload, "task")

    async def delete_task(self, lead_id: str, task_id: str) -> None:
        await self._request("DELETE", f"/leads/{lead_id}/tasks/{task_id}")

    # ── Opportunities ───────────────────────────────────────────────

    async def list_opportunities(self, lead_id: str) -> list[dict[str, Any]]:
        payload = await self._request("GET", f"/leads/{lead_id}/opportunities")
        return _list_field(payload, "opportunities")

    async def create_opportunity(self, lead_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "POST", f"/leads/{lead_id}/opportunities", body=fields
        )
        return _object_field(payload, "opportunity")

    async def update_opportunity(
        self, lead_id: str, opportunity_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        payload = await self._request(
            "PATCH", f"/leads/{lead_id}/opportunities/{opportunity_id}", body=fields
        )
        return _object_field(payload, "opportunity")

    async def delete_opportunity(self, lead_id: str, opportunity_id: str) -> None:
        await self._request("DELETE", f"/leads/{lead_id}/opportunities/{opportunity_id}")

    async def list_dealer_opportunities(self, *, status: str = "all") -> list[dict[str, Any]]:
        """Every opportunity across the dealer's leads, newest first.

        Each item embeds its lead as ``{"id", "name"}``.
        """
        params = {"status": status} if status and status != "all" else None
        payload = await self._request("GET", "/opportunities", params=params)
        return _list_field(payload, "opportunities")

    # ── Team directory ──────────────────────────────────────────────

    async def list_team_members(self) -> list[dict[str, Any]]:
        """Return the dealer's team directory (cached; read-only here)."""
        cache_key = f"{self.base_url}|team-members"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        payload = await self._request("GET", "/team-members")
        members = _list_field(payload, "members")
        self._cache.set(cache_key, members)
        return members
