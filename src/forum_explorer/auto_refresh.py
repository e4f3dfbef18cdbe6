"""Background refresh services for the forum explorer.

RefreshCoordinator fans engine state changes out to Server-Sent-Events
subscribers. DebugPoller keeps the health snapshot fresh on its own fixed
interval, independent of board reconciliation and push activity.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

from forum_explorer.models import DebugSnapshot, Scope

logger = logging.getLogger(__name__)

OUTBOX_BACKLOG_THRESHOLD = 50


def diagnostics_warning(snapshot: Optional[DebugSnapshot]) -> str:
    """Single-line warning for the latest snapshot, most severe condition first."""

    if snapshot is None:
        return ""
    if not snapshot.bus.healthy:
        return "Forum bus is unhealthy; queue/search freshness may lag."
    if snapshot.outbox.failed_count > 0:
        return f"Forum outbox has {snapshot.outbox.failed_count} failed message(s)."
    if snapshot.outbox.pending_count > OUTBOX_BACKLOG_THRESHOLD:
        return f"Forum outbox backlog is elevated ({snapshot.outbox.pending_count} pending)."
    return ""


class RefreshCoordinator:
    """Coordinates refresh events between the engine and subscribers.

    Singleton pattern - use get_instance() to access the shared instance.
    """

    _instance: Optional[RefreshCoordinator] = None

    def __init__(self):
        self._subscribers: list[asyncio.Queue] = []
        self._last_event: Optional[datetime] = None
        self._event_count = 0

    @classmethod
    def get_instance(cls) -> RefreshCoordinator:
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def subscribe(self) -> AsyncGenerator[dict, None]:
        """Subscribe to engine events.

        Yields:
            Event dictionaries with type, timestamp, and optional data.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.append(queue)

        try:
            yield {
                "type": "heartbeat",
                "timestamp": datetime.now().isoformat(),
            }

            while True:
                event = await queue.get()
                yield event

        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def publish(self, event_type: str, **data: Any) -> None:
        """Send an event to all subscribers.

        Args:
            event_type: e.g. "board:updated", "selection:changed", "stream:error"
            data: Extra JSON-serializable fields for the event
        """
        self._last_event = datetime.now()
        self._event_count += 1

        event = {
            "type": event_type,
            "timestamp": self._last_event.isoformat(),
            "count": self._event_count,
            **data,
        }

        logger.debug(f"Publishing {event_type} (#{self._event_count})")

        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full, dropping subscriber")
                dead_queues.append(queue)

        for queue in dead_queues:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def get_stats(self) -> dict:
        """Get coordinator statistics."""
        return {
            "subscribers": len(self._subscribers),
            "last_event": self._last_event.isoformat() if self._last_event else None,
            "event_count": self._event_count,
        }


class DebugPoller:
    """Background service that refreshes the debug snapshot for one scope."""

    def __init__(
        self,
        scope: Scope,
        fetch: Callable[[Scope], Awaitable[Any]],
        interval: float = 15.0,
    ):
        """Initialize the poller.

        Args:
            scope: Ticket/run scope the snapshot is requested for
            fetch: Coroutine function performing one snapshot refresh
            interval: Polling interval in seconds (default: 15)
        """
        self.scope = scope
        self.interval = interval
        self._fetch = fetch

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._last_fetch: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._error_count = 0
        self._fetch_count = 0

    async def start(self):
        """Start the polling loop; the first fetch happens immediately."""
        if self._running:
            logger.warning(f"Debug poller already running for {self.scope}")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Started debug polling for {self.scope} every {self.interval}s")

    async def stop(self):
        """Stop the polling loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"Stopped debug polling for {self.scope}")

    async def _poll_loop(self):
        """Main polling loop: fetch, then sleep a fixed interval."""
        while self._running:
            await self._poll_once()
            await asyncio.sleep(self.interval)

    async def _poll_once(self):
        try:
            await self._fetch(self.scope)
            self._last_fetch = datetime.now()
            self._fetch_count += 1
            self._error_count = 0
            self._last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in debug poll loop: {e}")
            self._last_error = str(e)
            self._error_count += 1

    def get_stats(self) -> dict:
        """Get poller statistics."""
        return {
            "scope": self.scope.params(),
            "running": self._running,
            "interval": self.interval,
            "last_fetch": self._last_fetch.isoformat() if self._last_fetch else None,
            "fetch_count": self._fetch_count,
            "error_count": self._error_count,
            "last_error": self._last_error,
        }
