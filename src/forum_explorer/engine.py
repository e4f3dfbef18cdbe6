"""Client-side synchronization and reconciliation engine.

ForumExplorer holds the operator's view of the forum: the current filters,
the board buckets of the last applied pass, the selected thread and its
timeline, compose drafts, the debug snapshot and the user-visible notices.

Scope-bound resources (push subscription, debounce timer, debug poller) are
created on entering a scope and released before the next scope's resources
exist. Reconciliation passes may overlap; each carries an increasing pass
id and a completion older than the last applied pass is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Optional

from forum_explorer.aggregator import BoardQuery, fetch_board_rows
from forum_explorer.auto_refresh import DebugPoller, RefreshCoordinator, diagnostics_warning
from forum_explorer.board import BOARD_KEYS, EMPTY_BUCKETS, BoardBuckets, classify_board
from forum_explorer.client import ForumClient, ForumRequestError
from forum_explorer.config import ExplorerConfig
from forum_explorer.models import PRIORITIES, DebugSnapshot, RunSnapshot, Scope, Thread, ThreadDetail
from forum_explorer.normalize import known_tickets
from forum_explorer.scope import resolve_scope, scope_label
from forum_explorer.selection import guard_selection
from forum_explorer.stream import StreamCoalescer
from forum_explorer.timeline import TimelineRow, build_timeline

logger = logging.getLogger(__name__)

TOPIC_MODES = ("ticket", "run", "agent")
HUMAN_ACTOR = "human"
DEFAULT_QUESTION_PRIORITY = "normal"

StreamFactory = Callable[..., StreamCoalescer]


@dataclass(frozen=True)
class FilterState:
    ticket: str = ""
    run_id: str = ""
    topic_mode: str = "ticket"
    agent_name: str = ""
    query_text: str = ""
    priority: str = ""
    viewer_type: str = "human"
    viewer_id: str = "human:operator"

    def scope(self) -> Scope:
        return resolve_scope(self.ticket, self.run_id)

    def board_query(self) -> BoardQuery:
        return BoardQuery(
            scope=self.scope(),
            query_text=self.query_text,
            priority=self.priority,
            viewer_type=self.viewer_type,
            viewer_id=self.viewer_id,
            topic_mode=self.topic_mode,
            agent_name=self.agent_name,
        )

    def validate(self) -> None:
        if self.topic_mode not in TOPIC_MODES:
            raise ValueError(f"topic_mode must be one of {', '.join(TOPIC_MODES)}")
        if self.priority and self.priority not in PRIORITIES:
            raise ValueError(f"priority must be empty or one of {', '.join(PRIORITIES)}")


@dataclass
class QuestionDraft:
    ticket: str = ""
    title: str = ""
    body: str = ""
    priority: str = DEFAULT_QUESTION_PRIORITY


def _field_names(cls: type) -> set[str]:
    return {item.name for item in fields(cls)}


class ForumExplorer:
    """Operator view over the forum backend for one process."""

    def __init__(
        self,
        client: ForumClient,
        config: Optional[ExplorerConfig] = None,
        coordinator: Optional[RefreshCoordinator] = None,
        stream_factory: Optional[StreamFactory] = None,
    ):
        self.client = client
        self.config = config or ExplorerConfig()
        self.coordinator = coordinator or RefreshCoordinator.get_instance()
        self._stream_factory = stream_factory or StreamCoalescer

        self.filters = FilterState(
            ticket=self.config.ticket.strip(),
            run_id=self.config.run_id.strip(),
            viewer_type=self.config.viewer_type,
            viewer_id=self.config.viewer_id,
        )
        self.runs: list[RunSnapshot] = []
        self.buckets: BoardBuckets = EMPTY_BUCKETS
        self.selected_thread_id = ""
        self.selected_detail: Optional[ThreadDetail] = None
        self.reply_draft = ""
        self.question = QuestionDraft(ticket=self.filters.ticket)
        self.active_board = "in_progress"
        self.debug_snapshot: Optional[DebugSnapshot] = None
        self.error = ""
        self.stream_notice = ""
        self.saving_reply = False
        self.saving_question = False

        self._active_scope: Optional[Scope] = None
        self._stream: Optional[StreamCoalescer] = None
        self._poller: Optional[DebugPoller] = None
        self._scope_lock = asyncio.Lock()
        self._pass_seq = 0
        self._applied_pass = 0
        self._stale_passes = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load runs, acquire the initial scope's resources and run a first pass."""

        await self.refresh_runs()
        async with self._scope_lock:
            await self._enter_scope(self.filters.scope())
        await self.refresh_forum_data()

    async def close(self) -> None:
        async with self._scope_lock:
            await self._leave_scope()

    @property
    def active_scope(self) -> Optional[Scope]:
        return self._active_scope

    async def _switch_scope(self) -> None:
        async with self._scope_lock:
            scope = self.filters.scope()
            if scope == self._active_scope:
                return
            await self._leave_scope()
            await self._enter_scope(scope)

    async def _enter_scope(self, scope: Scope) -> None:
        logger.info(f"Entering scope {scope.params() or 'global'}")
        self._active_scope = scope
        self.stream_notice = ""

        if self.config.stream_enabled:
            self._stream = self._stream_factory(
                self.client.stream_url(scope),
                on_refresh=self._on_stream_refresh,
                on_error=self._on_stream_error,
                quiet_period=self.config.stream_quiet_period,
            )
            await self._stream.start()

        self._poller = DebugPoller(scope, self._poll_debug, interval=self.config.debug_interval)
        await self._poller.start()

    async def _leave_scope(self) -> None:
        if self._stream is not None:
            await self._stream.stop()
            self._stream = None
        if self._poller is not None:
            await self._poller.stop()
            self._poller = None
        self._active_scope = None

    async def _on_stream_refresh(self) -> None:
        await self.refresh_forum_data()
        if self.selected_thread_id:
            await self.refresh_thread_detail(self.selected_thread_id)

    def _on_stream_error(self, notice: str) -> None:
        self.stream_notice = notice
        self.coordinator.publish("stream:error", message=notice)

    def _set_error(self, error: Exception) -> None:
        self.error = str(error)
        self.coordinator.publish("error", message=self.error)

    # ------------------------------------------------------------------
    # Filters and drafts
    # ------------------------------------------------------------------

    async def update_filters(self, **changes: Any) -> bool:
        """Apply filter changes and reconcile. Returns False if nothing changed."""

        unknown = set(changes) - _field_names(FilterState)
        if unknown:
            raise ValueError(f"Unknown filter(s): {', '.join(sorted(unknown))}")

        previous = self.filters
        updated = replace(previous, **{key: str(value or "") for key, value in changes.items()})
        updated.validate()
        if updated == previous:
            return False

        self.filters = updated
        if not self.question.ticket.strip() and updated.ticket.strip():
            self.question.ticket = updated.ticket.strip()
        self.coordinator.publish("filters:changed", scope=scope_label(
            updated.ticket, updated.run_id, updated.topic_mode, updated.agent_name
        ))

        if updated.scope() != previous.scope() and self._active_scope is not None:
            await self._switch_scope()

        viewer_changed = (updated.viewer_type, updated.viewer_id) != (previous.viewer_type, previous.viewer_id)
        if viewer_changed and self.selected_thread_id:
            await self.refresh_thread_detail(self.selected_thread_id)
            await self.mark_thread_seen(self.selected_thread_id)

        await self.refresh_forum_data()
        return True

    def update_question(self, **changes: Any) -> None:
        unknown = set(changes) - _field_names(QuestionDraft)
        if unknown:
            raise ValueError(f"Unknown question field(s): {', '.join(sorted(unknown))}")
        priority = changes.get("priority")
        if priority is not None and priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
        for key, value in changes.items():
            setattr(self.question, key, str(value or ""))

    def set_reply_draft(self, body: str) -> None:
        self.reply_draft = body or ""

    def set_active_board(self, board: str) -> None:
        if board not in BOARD_KEYS:
            raise ValueError(f"board must be one of {', '.join(BOARD_KEYS)}")
        self.active_board = board

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def refresh_runs(self) -> bool:
        try:
            self.error = ""
            self.runs = await self.client.list_runs()
        except ForumRequestError as e:
            self._set_error(e)
            return False
        self.coordinator.publish("runs:updated", runs=len(self.runs))
        return True

    async def refresh_forum_data(self) -> bool:
        """Run one reconciliation pass. Returns True if its result was applied."""

        self._pass_seq += 1
        pass_id = self._pass_seq
        filters = self.filters

        self.error = ""
        try:
            rows = await fetch_board_rows(self.client, filters.board_query())
        except ForumRequestError as e:
            if self._discard_stale(pass_id):
                return False
            logger.warning(f"Reconciliation pass #{pass_id} failed: {e}")
            self._set_error(e)
            return False

        if self._discard_stale(pass_id):
            return False

        self._applied_pass = pass_id
        self.buckets = classify_board(rows, filters.viewer_id)
        counts = self.buckets.counts()
        logger.info(
            f"Applied pass #{pass_id}: in_progress={counts.in_progress} "
            f"needs_me={counts.needs_me} recently_completed={counts.recently_completed}"
        )
        self.coordinator.publish(
            "board:updated",
            pass_id=pass_id,
            in_progress=counts.in_progress,
            needs_me=counts.needs_me,
            recently_completed=counts.recently_completed,
        )

        kept = guard_selection(self.selected_thread_id, self.buckets)
        if kept != self.selected_thread_id:
            logger.info(f"Selected thread {self.selected_thread_id} no longer visible; clearing selection")
            self._set_selection("")

        if self._agent_no_longer_available():
            self.filters = replace(self.filters, agent_name="")
            self.coordinator.publish("filters:changed", scope=self.scope_label)
            await self.refresh_forum_data()
        return True

    def _discard_stale(self, pass_id: int) -> bool:
        if pass_id >= self._applied_pass:
            return False
        self._stale_passes += 1
        logger.info(f"Discarding stale pass #{pass_id} (last applied #{self._applied_pass})")
        return True

    def _agent_no_longer_available(self) -> bool:
        if self.filters.topic_mode != "agent" or not self.filters.agent_name:
            return False
        selected = self.filters.agent_name.strip().lower()
        return selected not in {agent.lower() for agent in self.buckets.available_agents()}

    async def refresh_debug(self, scope: Optional[Scope] = None) -> bool:
        try:
            return await self._fetch_debug(scope or self.filters.scope())
        except ForumRequestError as e:
            self._set_error(e)
            return False

    async def _poll_debug(self, scope: Scope) -> bool:
        """Poller callback: sets the banner and re-raises so the poller counts the failure."""
        try:
            return await self._fetch_debug(scope)
        except ForumRequestError as e:
            self._set_error(e)
            raise

    async def _fetch_debug(self, scope: Scope) -> bool:
        snapshot = await self.client.debug_snapshot(scope)
        if scope != self.filters.scope():
            logger.debug(f"Discarding debug snapshot for previous scope {scope}")
            return False

        self.debug_snapshot = snapshot
        self.coordinator.publish("debug:updated", warning=self.diagnostics_warning)
        return True

    async def refresh_thread_detail(self, thread_id: str) -> bool:
        try:
            detail = await self.client.thread_detail(thread_id)
        except ForumRequestError as e:
            self._set_error(e)
            return False

        if thread_id != self.selected_thread_id:
            return False
        self.selected_detail = detail
        self.coordinator.publish("thread:updated", thread_id=thread_id)
        return True

    async def refresh_all(self) -> None:
        """Manual refresh: board, debug snapshot and the open thread."""

        tasks = [self.refresh_forum_data(), self.refresh_debug()]
        if self.selected_thread_id:
            tasks.append(self.refresh_thread_detail(self.selected_thread_id))
        await asyncio.gather(*tasks)

    # ------------------------------------------------------------------
    # Selection and commands
    # ------------------------------------------------------------------

    def _set_selection(self, thread_id: str) -> None:
        if thread_id != self.selected_thread_id:
            self.selected_detail = None
        self.selected_thread_id = thread_id
        self.coordinator.publish("selection:changed", thread_id=thread_id)

    async def select_thread(self, thread_id: str) -> None:
        """Open a thread: load its detail and mark it seen. Empty id clears."""

        thread_id = (thread_id or "").strip()
        self._set_selection(thread_id)
        if not thread_id:
            return
        await self.refresh_thread_detail(thread_id)
        await self.mark_thread_seen(thread_id)

    async def mark_thread_seen(self, thread_id: str) -> bool:
        """Best-effort seen marker; failures are logged and otherwise ignored."""

        viewer_type = self.filters.viewer_type
        viewer_id = self.filters.viewer_id
        if not viewer_type or not viewer_id:
            return False

        sequence = 0
        detail = self.selected_detail
        if detail is not None and detail.thread.thread_id == thread_id:
            sequence = detail.thread.last_event_sequence or 0

        try:
            await self.client.mark_seen(thread_id, viewer_type, viewer_id, sequence)
        except ForumRequestError as e:
            logger.debug(f"Ignoring mark-seen failure for {thread_id}: {e}")
            return False

        await self.refresh_forum_data()
        return True

    @property
    def can_submit_reply(self) -> bool:
        return bool(self.selected_thread_id and self.reply_draft.strip() and not self.saving_reply)

    @property
    def can_submit_question(self) -> bool:
        return (
            self.filters.viewer_type == HUMAN_ACTOR
            and bool(self.question.ticket.strip())
            and bool(self.filters.viewer_id.strip())
            and bool(self.question.title.strip())
            and bool(self.question.body.strip())
            and not self.saving_question
        )

    async def submit_reply(self) -> bool:
        """Post the reply draft to the selected thread.

        On failure the banner is set and the draft is kept.
        """
        if not self.can_submit_reply:
            return False

        thread_id = self.selected_thread_id
        self.saving_reply = True
        try:
            self.error = ""
            await self.client.post_reply(
                thread_id,
                self.reply_draft.strip(),
                actor_type=HUMAN_ACTOR,
                actor_name=self.filters.viewer_id,
            )
            self.reply_draft = ""
            await asyncio.gather(self.refresh_forum_data(), self.refresh_thread_detail(thread_id))
            await self.mark_thread_seen(thread_id)
            return True
        except ForumRequestError as e:
            self._set_error(e)
            return False
        finally:
            self.saving_reply = False

    async def submit_question(self) -> Optional[Thread]:
        """Open a new thread from the question draft and select it.

        On failure the banner is set and the draft is kept.
        """
        if not self.can_submit_question:
            return None

        draft = self.question
        ticket = draft.ticket.strip()
        self.saving_question = True
        try:
            self.error = ""
            created = await self.client.create_thread(
                ticket=ticket,
                run_id=self.filters.run_id.strip(),
                title=draft.title.strip(),
                body=draft.body.strip(),
                priority=draft.priority,
                actor_type=HUMAN_ACTOR,
                actor_name=self.filters.viewer_id.strip(),
            )

            self.question = QuestionDraft(ticket=ticket)
            self.active_board = "in_progress"
            if ticket != self.filters.ticket.strip():
                self.filters = replace(self.filters, ticket=ticket)
                if self._active_scope is not None:
                    await self._switch_scope()

            await self.refresh_forum_data()
            if created is not None:
                await self.select_thread(created.thread_id)
            await self.refresh_debug()
            return created
        except ForumRequestError as e:
            self._set_error(e)
            return None
        finally:
            self.saving_question = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def timeline(self) -> list[TimelineRow]:
        return build_timeline(self.selected_detail)

    @property
    def diagnostics_warning(self) -> str:
        return diagnostics_warning(self.debug_snapshot)

    @property
    def scope_label(self) -> str:
        f = self.filters
        return scope_label(f.ticket, f.run_id, f.topic_mode, f.agent_name)

    @property
    def known_tickets(self) -> list[str]:
        return known_tickets(self.runs)

    def snapshot(self) -> dict:
        """JSON-serializable view state for the local app."""

        counts = self.buckets.counts()
        return {
            "filters": {item.name: getattr(self.filters, item.name) for item in fields(FilterState)},
            "scope": self.scope_label,
            "activeBoard": self.active_board,
            "counts": {
                "inProgress": counts.in_progress,
                "needsMe": counts.needs_me,
                "recentlyCompleted": counts.recently_completed,
            },
            "buckets": self.buckets.to_dict(),
            "availableAgents": self.buckets.available_agents(),
            "knownTickets": self.known_tickets,
            "runs": [run.to_dict() for run in self.runs],
            "selectedThreadId": self.selected_thread_id,
            "error": self.error,
            "streamNotice": self.stream_notice,
            "diagnosticsWarning": self.diagnostics_warning,
            "replyDraft": self.reply_draft,
            "question": {item.name: getattr(self.question, item.name) for item in fields(QuestionDraft)},
            "canSubmitReply": self.can_submit_reply,
            "canSubmitQuestion": self.can_submit_question,
        }

    def get_stats(self) -> dict:
        return {
            "passes_started": self._pass_seq,
            "last_applied_pass": self._applied_pass,
            "stale_passes": self._stale_passes,
            "scope": self._active_scope.params() if self._active_scope else None,
            "stream": self._stream.get_stats() if self._stream else None,
            "debug_poller": self._poller.get_stats() if self._poller else None,
        }
