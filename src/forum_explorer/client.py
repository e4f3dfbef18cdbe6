"""
Async HTTP client for the forum backend.

Wraps the query/command surface the explorer consumes. Every non-2xx
response and every transport failure is raised as ForumRequestError; no
request is retried here. Recovery is left to the next scheduled poll, the
next push-triggered refresh, or an explicit refresh.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from forum_explorer.models import (
    DebugSnapshot,
    RunSnapshot,
    Scope,
    Thread,
    ThreadDetail,
    parse_threads,
)
from forum_explorer.normalize import normalize_runs

logger = logging.getLogger(__name__)

RUNS_PATH = "/api/v1/runs"
SEARCH_PATH = "/api/v1/forum/search"
QUEUES_PATH = "/api/v1/forum/queues"
THREADS_PATH = "/api/v1/forum/threads"
DEBUG_PATH = "/api/v1/forum/debug"
STREAM_PATH = "/api/v1/forum/stream"

DEFAULT_LIMIT = 300
DEFAULT_DEBUG_LIMIT = 40


class ForumRequestError(Exception):
    """A backend request failed at the transport or HTTP level."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_detail(response: httpx.Response) -> str:
    """Extract the message from a ``{"error": {"code", "message"}}`` envelope."""
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message")
        if isinstance(message, str):
            return message.strip()
    return ""


def check_response(response: httpx.Response, operation: str) -> None:
    """
    Raise ForumRequestError unless the response is a 2xx.

    Args:
        response: HTTP response to check
        operation: Short label used in the error message (e.g. "forum search")
    """
    if response.is_success:
        return

    message = f"{operation} request failed ({response.status_code})"
    detail = _error_detail(response)
    if detail:
        message = f"{message}: {detail}"
    raise ForumRequestError(message, status_code=response.status_code)


def thread_path(thread_id: str, action: str = "") -> str:
    path = f"{THREADS_PATH}/{quote(thread_id, safe='')}"
    return f"{path}/{action}" if action else path


class ForumClient:
    """
    Asynchronous client for the forum query/command endpoints.

    Usage:
        async with ForumClient("http://127.0.0.1:3001") as client:
            threads = await client.search_threads(Scope(ticket="T-1"))
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        limit: int = DEFAULT_LIMIT,
        debug_limit: int = DEFAULT_DEBUG_LIMIT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Backend origin, e.g. http://127.0.0.1:3001
            timeout: Request timeout in seconds
            limit: Row cap sent with search and queue queries
            debug_limit: Row cap sent with the debug snapshot query
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.limit = limit
        self.debug_limit = debug_limit
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ForumClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self.client.request(method, path, params=params, json=body)
        except httpx.RequestError as e:
            raise ForumRequestError(f"{operation} request failed: {e}") from e

        check_response(response, operation)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ForumRequestError(
                f"{operation} response was not valid JSON",
                status_code=response.status_code,
            ) from e

    def stream_url(self, scope: Scope) -> str:
        """Return the websocket URL for the push stream of ``scope``."""
        url = httpx.URL(self.base_url + STREAM_PATH)
        params = scope.params()
        if params:
            url = url.copy_merge_params(params)
        scheme = "wss" if url.scheme == "https" else "ws"
        return str(url.copy_with(scheme=scheme))

    async def list_runs(self) -> list[RunSnapshot]:
        payload = await self._request("runs", "GET", RUNS_PATH)
        return normalize_runs(payload.get("runs") if isinstance(payload, dict) else None)

    async def search_threads(
        self,
        scope: Scope,
        state: str = "",
        query: str = "",
        priority: str = "",
        viewer_type: str = "",
        viewer_id: str = "",
    ) -> list[Thread]:
        """Search threads. Without ``state`` both open and closed threads are returned."""
        params = scope.params()
        if state:
            params["state"] = state
        if query.strip():
            params["query"] = query.strip()
        if priority:
            params["priority"] = priority
        if viewer_type:
            params["viewer_type"] = viewer_type
        if viewer_id:
            params["viewer_id"] = viewer_id
        params["limit"] = str(self.limit)

        payload = await self._request("forum search", "GET", SEARCH_PATH, params=params)
        return parse_threads(payload.get("threads") if isinstance(payload, dict) else None)

    async def queue_threads(
        self,
        scope: Scope,
        queue_type: str,
        priority: str = "",
        viewer_type: str = "",
        viewer_id: str = "",
    ) -> list[Thread]:
        """Fetch a backend-computed per-viewer queue (``unseen`` or ``unanswered``)."""
        if queue_type not in ("unseen", "unanswered"):
            raise ValueError(f"Unknown queue type: {queue_type}")

        params = scope.params()
        params["type"] = queue_type
        if priority:
            params["priority"] = priority
        if viewer_type:
            params["viewer_type"] = viewer_type
        if viewer_id:
            params["viewer_id"] = viewer_id
        params["limit"] = str(self.limit)

        payload = await self._request("forum queue", "GET", QUEUES_PATH, params=params)
        return parse_threads(payload.get("threads") if isinstance(payload, dict) else None)

    async def thread_detail(self, thread_id: str) -> ThreadDetail:
        payload = await self._request("thread detail", "GET", thread_path(thread_id))
        detail = ThreadDetail.from_dict(payload)
        if detail is None:
            raise ForumRequestError("thread detail response did not include a thread")
        return detail

    async def create_thread(
        self,
        ticket: str,
        run_id: str,
        title: str,
        body: str,
        priority: str,
        actor_type: str,
        actor_name: str,
    ) -> Optional[Thread]:
        payload = await self._request(
            "question",
            "POST",
            THREADS_PATH,
            body={
                "ticket": ticket,
                "run_id": run_id,
                "title": title,
                "body": body,
                "priority": priority,
                "actor_type": actor_type,
                "actor_name": actor_name,
            },
        )
        return Thread.from_dict(payload.get("thread") if isinstance(payload, dict) else None)

    async def post_reply(self, thread_id: str, body: str, actor_type: str, actor_name: str) -> Any:
        return await self._request(
            "reply",
            "POST",
            thread_path(thread_id, "posts"),
            body={"body": body, "actor_type": actor_type, "actor_name": actor_name},
        )

    async def mark_seen(
        self,
        thread_id: str,
        viewer_type: str,
        viewer_id: str,
        last_seen_event_sequence: int,
    ) -> Any:
        return await self._request(
            "mark seen",
            "POST",
            thread_path(thread_id, "seen"),
            body={
                "viewer_type": viewer_type,
                "viewer_id": viewer_id,
                "last_seen_event_sequence": last_seen_event_sequence,
            },
        )

    async def debug_snapshot(self, scope: Scope) -> Optional[DebugSnapshot]:
        params = scope.params()
        params["limit"] = str(self.debug_limit)
        payload = await self._request("debug", "GET", DEBUG_PATH, params=params)
        return DebugSnapshot.from_dict(payload.get("debug") if isinstance(payload, dict) else None)
