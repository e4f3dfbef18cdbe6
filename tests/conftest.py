"""Shared fixtures: an in-memory forum backend served through httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from forum_explorer.auto_refresh import RefreshCoordinator
from forum_explorer.client import ForumClient
from forum_explorer.config import ExplorerConfig
from forum_explorer.engine import ForumExplorer


def make_thread(thread_id: str, state: str = "new", **overrides: Any) -> Dict[str, Any]:
    thread = {
        "thread_id": thread_id,
        "ticket": "T-1",
        "run_id": "run-1",
        "title": f"Thread {thread_id}",
        "state": state,
        "priority": "normal",
        "assignee_name": "",
        "posts_count": 1,
        "updated_at": "2026-01-05T10:00:00Z",
        "opened_at": "2026-01-05T09:00:00Z",
    }
    thread.update(overrides)
    return thread


class FakeForumBackend:
    """Minimal stand-in for the forum HTTP API.

    Threads live in ``self.threads``; search honours the ``state`` filter,
    queues return ``self.unseen`` / ``self.unanswered``. Paths listed in
    ``self.failures`` answer with the given status code.
    """

    def __init__(self) -> None:
        self.threads: List[Dict[str, Any]] = []
        self.unseen: List[Dict[str, Any]] = []
        self.unanswered: List[Dict[str, Any]] = []
        self.runs: List[Dict[str, Any]] = [
            {"run_id": "run-1", "status": "running", "tickets": ["T-1"], "pending_guidance": []}
        ]
        self.details: Dict[str, Dict[str, Any]] = {}
        self.debug: Optional[Dict[str, Any]] = None
        self.failures: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []
        self.created_counter = 0

    def requests_to(self, path: str, method: str = "GET") -> List[httpx.Request]:
        return [req for req in self.requests if req.url.path == path and req.method == method]

    def _json(self, payload: Any, status: int = 200) -> httpx.Response:
        return httpx.Response(status, json=payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if path in self.failures:
            status = self.failures[path]
            return self._json({"error": {"code": "boom", "message": "backend exploded"}}, status)

        if path == "/api/v1/runs" and method == "GET":
            return self._json({"runs": self.runs})
        if path == "/api/v1/forum/search" and method == "GET":
            state = request.url.params.get("state")
            rows = [t for t in self.threads if not state or t["state"] == state]
            return self._json({"threads": rows})
        if path == "/api/v1/forum/queues" and method == "GET":
            queue = request.url.params.get("type")
            return self._json({"threads": self.unseen if queue == "unseen" else self.unanswered})
        if path == "/api/v1/forum/debug" and method == "GET":
            return self._json({"debug": self.debug})
        if path == "/api/v1/forum/threads" and method == "POST":
            body = json.loads(request.content)
            self.created_counter += 1
            thread = make_thread(
                f"fthr-new-{self.created_counter}",
                ticket=body["ticket"],
                run_id=body.get("run_id", ""),
                title=body["title"],
                priority=body["priority"],
            )
            self.threads.append(thread)
            return self._json({"thread": thread})
        if path.startswith("/api/v1/forum/threads/"):
            rest = path[len("/api/v1/forum/threads/"):]
            if rest.endswith("/seen") and method == "POST":
                return self._json({"seen": json.loads(request.content)})
            if rest.endswith("/posts") and method == "POST":
                return self._json({"post": json.loads(request.content)})
            if method == "GET":
                thread_id = rest
                if thread_id in self.details:
                    return self._json(self.details[thread_id])
                for thread in self.threads:
                    if thread["thread_id"] == thread_id:
                        return self._json({"thread": thread, "posts": [], "events": []})
                return self._json({"error": {"code": "not_found", "message": "thread not found"}}, 404)

        return self._json({"error": {"code": "not_found", "message": path}}, 404)


@pytest.fixture
def backend() -> FakeForumBackend:
    return FakeForumBackend()


@pytest.fixture
def client(backend: FakeForumBackend) -> ForumClient:
    return ForumClient("http://forum.test", transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def config() -> ExplorerConfig:
    return ExplorerConfig(
        base_url="http://forum.test",
        stream_enabled=False,
        debug_interval=3600,
    )


@pytest.fixture
def explorer(client: ForumClient, config: ExplorerConfig) -> ForumExplorer:
    return ForumExplorer(client, config=config, coordinator=RefreshCoordinator())
