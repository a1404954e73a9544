"""Google Tasks API client.

Calls Google Tasks API v1 via httpx with a Bearer token obtained from the
credential provider. Every call first waits on the client's own rate limiter,
keyed per user.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import httpx

from tracker.core import google_auth_helper
from tracker.core.config import get_settings
from tracker.core.rate_limiter import RateLimiter
from tracker.core.schemas_schedule import GoogleTask

logger = logging.getLogger(__name__)

TASKS_API_URL = "https://tasks.googleapis.com/tasks/v1"

TokenProvider = Callable[[UUID, str], Awaitable[str]]


def _to_google_task(data: dict[str, Any]) -> GoogleTask:
    return GoogleTask(
        id=data["id"],
        title=data.get("title") or "",
        notes=data.get("notes"),
        due=data.get("due"),
        status="completed" if data.get("status") == "completed" else "needsAction",
        position=data.get("position") or "0",
    )


class GoogleTasksClient:
    """Thin async client for the Google Tasks endpoints the scheduler uses."""

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        token_provider: Optional[TokenProvider] = None,
        timeout: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            rate_limiter: Limiter owned by this client (built from settings if omitted)
            token_provider: ``(user_id, provider) -> access token``
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        settings = get_settings()
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_minute=settings.GOOGLE_TASKS_REQUESTS_PER_MINUTE,
            burst_size=settings.GOOGLE_TASKS_BURST_SIZE,
        )
        self._token_provider = token_provider
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        user_id: UUID,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        provider = self._token_provider or google_auth_helper.get_valid_access_token
        access_token = await provider(user_id, "google")

        await self.rate_limiter.acquire(f"google_tasks:{user_id}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.request(
                method,
                f"{TASKS_API_URL}{path}",
                headers={"Authorization": f"Bearer {access_token}"},
                json=json,
            )
            response.raise_for_status()
            return response

    async def create_task(
        self,
        user_id: UUID,
        list_id: str,
        title: str,
        notes: Optional[str] = None,
        due: Optional[datetime] = None,
    ) -> GoogleTask:
        """
        Create a task in a list.

        Raises:
            httpx.HTTPError: If the API call fails
        """
        body: dict[str, Any] = {"title": title}
        if notes is not None:
            body["notes"] = notes
        if due is not None:
            body["due"] = due.isoformat()

        response = await self._request(user_id, "POST", f"/lists/{list_id}/tasks", json=body)
        task = _to_google_task(response.json())
        logger.info(f"Google task created: user={user_id}, list={list_id}, task={task.id}")
        return task

    async def update_task(
        self,
        user_id: UUID,
        list_id: str,
        task_id: str,
        due: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> GoogleTask:
        """Patch the due date and/or notes of a task."""
        body: dict[str, Any] = {"id": task_id}
        if due is not None:
            body["due"] = due.isoformat()
        if notes is not None:
            body["notes"] = notes

        response = await self._request(
            user_id, "PATCH", f"/lists/{list_id}/tasks/{task_id}", json=body
        )
        return _to_google_task(response.json())

    async def delete_task(self, user_id: UUID, list_id: str, task_id: str) -> None:
        """Delete a task."""
        await self._request(user_id, "DELETE", f"/lists/{list_id}/tasks/{task_id}")
        logger.info(f"Google task deleted: user={user_id}, list={list_id}, task={task_id}")
