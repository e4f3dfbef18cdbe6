"""Push subscription with trailing-edge debounce of refresh triggers.

One StreamCoalescer exists per scope. It owns the websocket reader task and
the pending debounce timer; stop() releases both. Bursts of valid frames
collapse into a single refresh fired one quiet period after the last frame.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

FRAME_TYPE = "forum.events"
DEFAULT_QUIET_PERIOD = 0.150
STREAM_UNAVAILABLE = "WebSocket stream unavailable; using pull refresh only."

RefreshCallback = Callable[[], Awaitable[Any]]
ErrorCallback = Callable[[str], Any]


def parse_stream_frame(raw: Any) -> Optional[dict]:
    """Return the frame if it is a non-empty ``forum.events`` batch, else None."""

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, dict) or frame.get("type") != FRAME_TYPE:
        return None
    events = frame.get("events")
    if not isinstance(events, list) or not events:
        return None
    return frame


class StreamCoalescer:
    """Owns the push subscription and debounce timer for one scope."""

    def __init__(
        self,
        url: str,
        on_refresh: RefreshCallback,
        on_error: ErrorCallback,
        quiet_period: float = DEFAULT_QUIET_PERIOD,
        connect: Callable[[str], Any] = websockets.connect,
    ):
        """Initialize the coalescer.

        Args:
            url: Websocket URL with the scope encoded as query parameters
            on_refresh: Coroutine function run once per quiet period
            on_error: Called with a user-facing notice when push delivery fails
            quiet_period: Debounce window in seconds
            connect: Websocket connect factory (tests inject a fake)
        """
        self.url = url
        self.quiet_period = quiet_period
        self._on_refresh = on_refresh
        self._on_error = on_error
        self._connect = connect

        self._task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._refreshes: set[asyncio.Task] = set()
        self._running = False
        self._frames_received = 0
        self._frames_ignored = 0
        self._refresh_count = 0
        self._last_error: Optional[str] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    async def start(self) -> None:
        """Open the subscription in a background task."""
        if self._running:
            logger.warning(f"Stream already running for {self.url}")
            return

        self._running = True
        self._task = asyncio.create_task(self._read_loop())
        logger.info(f"Subscribed to forum stream {self.url}")

    async def stop(self) -> None:
        """Close the socket, cancel the pending timer and any in-flight refresh."""
        self._running = False
        self._cancel_pending()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        current = asyncio.current_task()
        refreshes = [task for task in self._refreshes if task is not current]
        for task in refreshes:
            task.cancel()
        if refreshes:
            await asyncio.gather(*refreshes, return_exceptions=True)
        self._refreshes.clear()

        logger.info(f"Unsubscribed from forum stream {self.url}")

    async def _read_loop(self) -> None:
        try:
            async with self._connect(self.url) as socket:
                async for message in socket:
                    self.handle_frame(message)
        except asyncio.CancelledError:
            raise
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._fail(f"{type(e).__name__}: {e}")
            return

        if self._running:
            self._fail("stream closed by server")

    def _fail(self, reason: str) -> None:
        self._last_error = reason
        logger.warning(f"Forum stream unavailable ({reason}); falling back to polling")
        self._on_error(STREAM_UNAVAILABLE)

    def handle_frame(self, raw: Any) -> bool:
        """Process one inbound frame. Returns True if it armed the debounce timer."""
        self._frames_received += 1
        if parse_stream_frame(raw) is None:
            self._frames_ignored += 1
            logger.debug("Ignoring non-event stream frame")
            return False

        self._arm()
        return True

    def _arm(self) -> None:
        self._cancel_pending()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.quiet_period, self._fire)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _fire(self) -> None:
        self._pending = None
        self._refresh_count += 1
        task = asyncio.create_task(self._on_refresh())
        self._refreshes.add(task)
        task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Task) -> None:
        self._refreshes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Stream-triggered refresh failed: {error}")

    def get_stats(self) -> dict:
        """Get subscription statistics."""
        return {
            "url": self.url,
            "running": self._running,
            "quiet_period": self.quiet_period,
            "frames_received": self._frames_received,
            "frames_ignored": self._frames_ignored,
            "refresh_count": self._refresh_count,
            "pending": self.has_pending,
            "last_error": self._last_error,
        }
