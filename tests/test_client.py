"""Tests for the forum backend client."""

import httpx
import pytest

from forum_explorer.client import ForumClient, ForumRequestError
from forum_explorer.models import Scope

from conftest import make_thread


@pytest.mark.asyncio
async def test_search_sends_only_present_parameters(backend, client):
    backend.threads = [make_thread("a", "new"), make_thread("b", "closed")]

    rows = await client.search_threads(
        Scope(ticket="T-1"), query="  deploy ", priority="", viewer_type="human", viewer_id="human:operator"
    )

    assert [row.thread_id for row in rows] == ["a", "b"]
    params = dict(backend.requests_to("/api/v1/forum/search")[0].url.params)
    assert params == {
        "ticket": "T-1",
        "query": "deploy",
        "viewer_type": "human",
        "viewer_id": "human:operator",
        "limit": "300",
    }
    await client.close()


@pytest.mark.asyncio
async def test_queue_request_carries_type_and_limit(backend, client):
    backend.unseen = [make_thread("u1"), {"title": "no id"}]

    rows = await client.queue_threads(Scope(run_id="run-1"), "unseen", priority="urgent")

    assert [row.thread_id for row in rows] == ["u1"]
    params = dict(backend.requests_to("/api/v1/forum/queues")[0].url.params)
    assert params == {"run_id": "run-1", "type": "unseen", "priority": "urgent", "limit": "300"}
    await client.close()


@pytest.mark.asyncio
async def test_non_2xx_raises_with_backend_message(backend, client):
    backend.failures["/api/v1/forum/search"] = 500

    with pytest.raises(ForumRequestError) as excinfo:
        await client.search_threads(Scope())

    assert excinfo.value.status_code == 500
    assert str(excinfo.value) == "forum search request failed (500): backend exploded"
    await client.close()


@pytest.mark.asyncio
async def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = ForumClient("http://forum.test", transport=httpx.MockTransport(handler))
    with pytest.raises(ForumRequestError, match="runs request failed"):
        await client.list_runs()
    await client.close()


@pytest.mark.asyncio
async def test_thread_paths_are_encoded(backend, client):
    await client.mark_seen("thread/with space", "human", "human:operator", 4)

    request = backend.requests[0]
    assert request.method == "POST"
    assert request.url.raw_path.decode().startswith("/api/v1/forum/threads/thread%2Fwith%20space/seen")
    await client.close()


@pytest.mark.asyncio
async def test_create_thread_returns_created_thread(backend, client):
    created = await client.create_thread(
        ticket="T-1",
        run_id="",
        title="x",
        body="y",
        priority="normal",
        actor_type="human",
        actor_name="human:operator",
    )

    assert created is not None
    assert created.thread_id == "fthr-new-1"
    assert created.state == "new"
    await client.close()


@pytest.mark.asyncio
async def test_debug_snapshot_may_be_null(backend, client):
    assert await client.debug_snapshot(Scope(ticket="T-1")) is None

    backend.debug = {"bus": {"healthy": True}, "outbox": {"pending_count": 3}}
    snapshot = await client.debug_snapshot(Scope(ticket="T-1"))
    assert snapshot.outbox.pending_count == 3
    assert dict(backend.requests_to("/api/v1/forum/debug")[-1].url.params) == {"ticket": "T-1", "limit": "40"}
    await client.close()


def test_stream_url_switches_scheme_and_encodes_scope():
    assert ForumClient("http://forum.test:3001/").stream_url(Scope(ticket="T-1", run_id="run-1")) == (
        "ws://forum.test:3001/api/v1/forum/stream?ticket=T-1&run_id=run-1"
    )
    assert ForumClient("https://forum.test").stream_url(Scope()) == "wss://forum.test/api/v1/forum/stream"
