"""
User Profiles API — async HTTP client

A small façade over the REST API for scripts and other services.  Calls
never raise on HTTP or network failures; they return an ``ApiResult`` whose
``success`` flag and ``message`` describe what happened.

    async with UserProfileClient("http://localhost:8000/api") as client:
        result = await client.create_user({"fullName": "Ada", "email": "ada@example.com"})
        if result.success:
            print(result.data["id"])
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger("profiles.client")

DEFAULT_TIMEOUT = 30.0


@dataclass
class ApiResult:
    success: bool
    data: Any = None
    message: str = ""
    status_code: Optional[int] = None
    pagination: Optional[dict[str, Any]] = None
    errors: list[dict[str, str]] = field(default_factory=list)


class UserProfileClient:
    """Thin async wrapper around the ``/users`` endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "UserProfileClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    async def _request(self, method: str, url: str, **kwargs) -> ApiResult:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("client_request_failed", method=method, url=url, error=str(exc))
            return ApiResult(success=False, message=str(exc) or "Network error occurred")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error:
            return ApiResult(
                success=False,
                message=body.get("message") or f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
                errors=body.get("errors") or [],
            )

        return ApiResult(
            success=True,
            data=body.get("data"),
            message=body.get("message") or "Operation completed successfully",
            status_code=response.status_code,
            pagination=body.get("pagination"),
        )

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #

    async def get_users(
        self,
        *,
        page: int | None = None,
        limit: int | None = None,
        search: str | None = None,
        location: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> ApiResult:
        params = {
            "page": page,
            "limit": limit,
            "search": search,
            "location": location,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        return await self._request(
            "GET",
            "/users",
            params={k: v for k, v in params.items() if v is not None},
        )

    async def search_users(self, text: str) -> ApiResult:
        return await self.get_users(search=text.strip())

    async def get_user(self, user_id: str) -> ApiResult:
        return await self._request("GET", f"/users/{user_id}")

    async def user_exists(self, user_id: str) -> bool:
        result = await self.get_user(user_id)
        return result.success and result.data is not None

    async def create_user(self, data: dict[str, Any]) -> ApiResult:
        return await self._request("POST", "/users", json=data)

    async def update_user(self, user_id: str, data: dict[str, Any]) -> ApiResult:
        return await self._request("PUT", f"/users/{user_id}", json=data)

    async def delete_user(self, user_id: str) -> ApiResult:
        result = await self._request("DELETE", f"/users/{user_id}")
        result.data = result.success
        return result

    async def create_many(self, users: list[dict[str, Any]]) -> ApiResult:
        """Create users concurrently; ``data`` holds the ones that succeeded."""
        results = await asyncio.gather(*(self.create_user(u) for u in users))
        created = [r.data for r in results if r.success]
        logger.info("client_create_many", requested=len(users), created=len(created))
        return ApiResult(
            success=bool(created),
            data=created,
            message=f"Created {len(created)}/{len(users)} users",
        )
