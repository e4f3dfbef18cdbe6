"""Local web API exposing the forum explorer engine."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional, Set
from urllib.parse import urlparse

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from forum_explorer.auto_refresh import RefreshCoordinator
from forum_explorer.client import ForumClient
from forum_explorer.config import ExplorerConfig, load_config
from forum_explorer.engine import ForumExplorer

logger = logging.getLogger(__name__)

app = FastAPI(title="Forum Explorer (Local)")

_coordinator: RefreshCoordinator = RefreshCoordinator.get_instance()
_engine: Optional[ForumExplorer] = None

CSRF_HEADER = "X-Forum-Explorer-CSRF"
CSRF_TOKEN = secrets.token_urlsafe(32)
ALLOWED_HOSTS = {"127.0.0.1:8080", "localhost:8080", "testserver"}

# Health: a poller is stale after this many missed intervals, failing after this many errors in a row.
STALE_FETCH_FACTOR = 3
ERROR_THRESHOLD = 3


def _build_engine(config: ExplorerConfig) -> ForumExplorer:
    client = ForumClient(
        config.base_url,
        timeout=config.request_timeout,
        limit=config.result_limit,
        debug_limit=config.debug_limit,
    )
    return ForumExplorer(client, config=config, coordinator=_coordinator)


def _require_engine() -> ForumExplorer:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Explorer is not running")
    return _engine


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{key} must be a string")
    return value


def _origin_from_url(value: str | None) -> str | None:
    if not value:
        return None
    try:
        parsed = urlparse(value)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def _expected_origins(request: Request) -> Set[str]:
    allowed_hosts = set(ALLOWED_HOSTS)
    host = request.headers.get("host")
    if host:
        allowed_hosts.add(host)
    if _engine is not None:
        allowed_hosts.add(f"{_engine.config.host}:{_engine.config.port}")
        allowed_hosts.add(f"localhost:{_engine.config.port}")
    return {f"{scheme}://{entry}" for entry in allowed_hosts for scheme in ("http", "https")}


def _require_authorized_post(request: Request) -> None:
    """Reject cross-site POSTs and POSTs without the session CSRF token."""
    allowed_origins = _expected_origins(request)

    origin = _origin_from_url(request.headers.get("origin"))
    if origin and origin not in allowed_origins:
        raise HTTPException(status_code=403, detail="Cross-origin POST blocked")

    referer = _origin_from_url(request.headers.get("referer"))
    if referer and referer not in allowed_origins:
        raise HTTPException(status_code=403, detail="Cross-site POST blocked")

    if request.headers.get(CSRF_HEADER) != CSRF_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid or missing CSRF token")


# Local request keys (camelCase) -> engine filter names.
FILTER_KEYS = {
    "ticket": "ticket",
    "runId": "run_id",
    "topicMode": "topic_mode",
    "agentName": "agent_name",
    "queryText": "query_text",
    "priority": "priority",
    "viewerType": "viewer_type",
    "viewerId": "viewer_id",
}


def _thread_payload(engine: ForumExplorer) -> Dict[str, Any]:
    detail = engine.selected_detail
    return {
        "selectedThreadId": engine.selected_thread_id,
        "thread": detail.thread.to_dict() if detail else None,
        "timeline": [row.to_dict() for row in engine.timeline],
        "error": engine.error,
    }


@app.get("/api/board")
async def get_board() -> JSONResponse:
    """Return the current board, filters and notices."""

    return JSONResponse(_require_engine().snapshot())


@app.post("/api/filters")
async def update_filters(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Change filters and run a reconciliation pass."""

    engine = _require_engine()
    _require_authorized_post(request)
    unknown = set(payload) - set(FILTER_KEYS) - {"activeBoard"}
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown filter(s): {', '.join(sorted(unknown))}")

    changes = {FILTER_KEYS[key]: _require_str(payload, key) for key in payload if key in FILTER_KEYS}
    try:
        if "activeBoard" in payload:
            engine.set_active_board(_require_str(payload, "activeBoard"))
        await engine.update_filters(**changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(engine.snapshot())


@app.post("/api/refresh")
async def refresh(request: Request) -> JSONResponse:
    """Manual refresh of the board, diagnostics and open thread."""

    engine = _require_engine()
    _require_authorized_post(request)
    await engine.refresh_all()
    return JSONResponse(engine.snapshot())


@app.post("/api/runs/refresh")
async def refresh_runs(request: Request) -> JSONResponse:
    engine = _require_engine()
    _require_authorized_post(request)
    await engine.refresh_runs()
    return JSONResponse({
        "runs": [run.to_dict() for run in engine.runs],
        "knownTickets": engine.known_tickets,
        "error": engine.error,
    })


@app.post("/api/select")
async def select_thread(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Open a thread (or clear the selection with an empty id)."""

    engine = _require_engine()
    _require_authorized_post(request)
    await engine.select_thread(_require_str(payload, "threadId"))
    return JSONResponse(_thread_payload(engine))


@app.get("/api/thread")
async def get_thread() -> JSONResponse:
    """Return the selected thread and its merged timeline."""

    return JSONResponse(_thread_payload(_require_engine()))


@app.post("/api/reply")
async def submit_reply(payload: Dict[str, Any], request: Request) -> JSONResponse:
    engine = _require_engine()
    _require_authorized_post(request)
    if "body" in payload:
        engine.set_reply_draft(_require_str(payload, "body"))
    if not engine.can_submit_reply:
        raise HTTPException(status_code=400, detail="A selected thread and a reply body are required")

    ok = await engine.submit_reply()
    status = "ok" if ok else "error"
    return JSONResponse({"status": status, **_thread_payload(engine), "replyDraft": engine.reply_draft})


@app.post("/api/question")
async def submit_question(payload: Dict[str, Any], request: Request) -> JSONResponse:
    engine = _require_engine()
    _require_authorized_post(request)
    changes = {key: _require_str(payload, key) for key in ("ticket", "title", "body", "priority") if key in payload}
    try:
        engine.update_question(**changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not engine.can_submit_question:
        raise HTTPException(
            status_code=400,
            detail="Questions need a human viewer, a ticket, a title and a body",
        )

    created = await engine.submit_question()
    return JSONResponse({
        "status": "ok" if created is not None else "error",
        "thread": created.to_dict() if created else None,
        "board": engine.snapshot(),
    })


@app.get("/api/diagnostics")
async def diagnostics() -> JSONResponse:
    """Latest debug snapshot and its derived warning."""

    engine = _require_engine()
    snapshot = engine.debug_snapshot
    return JSONResponse({
        "warning": engine.diagnostics_warning,
        "debug": snapshot.to_dict() if snapshot else None,
    })


@app.get("/api/events")
async def events_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of engine updates."""

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE-formatted events."""
        try:
            async for event in _coordinator.subscribe():
                if await request.is_disconnected():
                    break

                yield f"data: {json.dumps(event)}\n\n"

        except asyncio.CancelledError:
            logger.info("SSE client disconnected")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.get("/api/session")
async def session() -> JSONResponse:
    """CSRF token clients must echo in the X-Forum-Explorer-CSRF header on POSTs."""

    return JSONResponse({"csrfHeader": CSRF_HEADER, "csrfToken": CSRF_TOKEN})


def _poller_health(stats: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    issues: list[str] = []
    status = "OK"

    if not stats.get("running"):
        issues.append("Poller not running")
        status = "ERROR"

    error_count = stats.get("error_count") or 0
    if error_count >= ERROR_THRESHOLD:
        issues.append(f"Repeated errors ({error_count}): {stats.get('last_error')}")
        status = "ERROR"

    last_fetch = stats.get("last_fetch")
    interval = stats.get("interval") or 0
    if last_fetch and interval:
        age = (now - datetime.fromisoformat(last_fetch)).total_seconds()
        if age > interval * STALE_FETCH_FACTOR:
            issues.append(f"Last fetch becoming stale ({int(age)}s ago)")
            if status == "OK":
                status = "DEGRADED"

    return {**stats, "status": status, "issues": issues}


def _build_health_response(
    poller_stats: Optional[Dict[str, Any]],
    stream_notice: str,
    coordinator_stats: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Summarize poller and push stream state as OK, DEGRADED or ERROR."""

    now = now or datetime.now()
    reasons: list[str] = []
    status = "OK"

    poller = _poller_health(poller_stats, now) if poller_stats is not None else None
    if poller is None:
        reasons.append("No active scope")
        status = "ERROR"
    elif poller["status"] != "OK":
        scope = ", ".join(f"{key}={value}" for key, value in (poller.get("scope") or {}).items()) or "global"
        reasons.append(f"Debug poller for {scope}: {'; '.join(poller['issues'])}")
        status = poller["status"]

    if stream_notice:
        reasons.append(stream_notice)
        if status == "OK":
            status = "DEGRADED"

    return {
        "status": status,
        "reasons": reasons,
        "timestamp": now.isoformat(),
        "poller": poller,
        "coordinator": coordinator_stats,
    }


@app.get("/api/health")
async def health_check() -> JSONResponse:
    """Health check endpoint with poller, push stream and engine status."""

    engine = _require_engine()
    stats = engine.get_stats()
    payload = _build_health_response(stats["debug_poller"], engine.stream_notice, _coordinator.get_stats())
    payload["engine"] = stats
    return JSONResponse(payload)


@app.on_event("startup")
async def startup_event():
    """Build the engine from config and start its scope resources."""
    global _engine

    config = load_config()
    _engine = _build_engine(config)
    await _engine.start()
    logger.info(f"Forum explorer started against {config.base_url}")


@app.on_event("shutdown")
async def shutdown_event():
    """Release scope resources and the HTTP client."""
    global _engine

    if _engine is None:
        return

    logger.info("Stopping forum explorer...")
    await _engine.close()
    await _engine.client.close()
    _engine = None
    logger.info("Forum explorer shutdown complete")


def run() -> None:
    """Convenience entry point for running with `python -m`."""

    import uvicorn

    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config()
    uvicorn.run(
        "forum_explorer.local_app:app",
        host=config.host,
        port=config.port,
    )


if __name__ == "__main__":
    run()
