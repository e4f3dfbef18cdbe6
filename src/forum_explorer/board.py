"""Partition reconciled rows into the board buckets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from forum_explorer.aggregator import BoardRows
from forum_explorer.identity import derive_tokens, matches
from forum_explorer.models import Thread

ACTIVE_STATES = ("triaged", "waiting_operator", "waiting_human")
BOARD_KEYS = ("in_progress", "needs_me", "recently_completed")

BUCKET_NAMES = (
    "in_progress_new",
    "in_progress_active",
    "in_progress_awaiting_close",
    "needs_me_unseen",
    "needs_me_unanswered",
    "needs_me_assigned",
    "recently_closed",
)


def _state(thread: Thread) -> str:
    return thread.state.strip().lower()


@dataclass(frozen=True)
class BoardCounts:
    in_progress: int = 0
    needs_me: int = 0
    recently_completed: int = 0


@dataclass(frozen=True)
class BoardBuckets:
    """Seven named thread sequences. Replaced wholesale on every pass."""

    in_progress_new: tuple[Thread, ...] = field(default_factory=tuple)
    in_progress_active: tuple[Thread, ...] = field(default_factory=tuple)
    in_progress_awaiting_close: tuple[Thread, ...] = field(default_factory=tuple)
    needs_me_unseen: tuple[Thread, ...] = field(default_factory=tuple)
    needs_me_unanswered: tuple[Thread, ...] = field(default_factory=tuple)
    needs_me_assigned: tuple[Thread, ...] = field(default_factory=tuple)
    recently_closed: tuple[Thread, ...] = field(default_factory=tuple)

    def threads(self) -> Iterator[Thread]:
        """Yield every thread across all buckets, in bucket order."""
        for name in BUCKET_NAMES:
            yield from getattr(self, name)

    def thread_ids(self) -> set[str]:
        return {thread.thread_id for thread in self.threads()}

    def counts(self) -> BoardCounts:
        # The in-progress buckets are disjoint by construction; needs-me may overlap.
        in_progress = (
            len(self.in_progress_new)
            + len(self.in_progress_active)
            + len(self.in_progress_awaiting_close)
        )
        needs_me = {
            thread.thread_id
            for thread in (*self.needs_me_unseen, *self.needs_me_unanswered, *self.needs_me_assigned)
        }
        return BoardCounts(
            in_progress=in_progress,
            needs_me=len(needs_me),
            recently_completed=len(self.recently_closed),
        )

    def available_agents(self) -> list[str]:
        """Sorted distinct agent names of all visible threads."""
        return sorted({thread.agent_name.strip() for thread in self.threads() if thread.agent_name.strip()})

    def to_dict(self) -> dict:
        return {name: [thread.to_dict() for thread in getattr(self, name)] for name in BUCKET_NAMES}


EMPTY_BUCKETS = BoardBuckets()


def classify_board(rows: BoardRows, viewer_id: str) -> BoardBuckets:
    """Build the board buckets for one pass.

    The in-progress buckets are a disjoint partition of the open rows by
    state; closed threads only ever appear in ``recently_closed``, which is
    sourced from the dedicated closed-state search. The needs-me buckets are
    derived independently and may share threads.
    """

    open_rows = [thread for thread in rows.all_rows if _state(thread) != "closed"]
    tokens = derive_tokens(viewer_id)

    return BoardBuckets(
        in_progress_new=tuple(thread for thread in open_rows if _state(thread) == "new"),
        in_progress_active=tuple(thread for thread in open_rows if _state(thread) in ACTIVE_STATES),
        in_progress_awaiting_close=tuple(thread for thread in open_rows if _state(thread) == "answered"),
        needs_me_unseen=tuple(rows.unseen_rows),
        needs_me_unanswered=tuple(rows.unanswered_rows),
        needs_me_assigned=tuple(thread for thread in rows.all_rows if matches(thread.assignee_name, tokens)),
        recently_closed=tuple(rows.closed_rows),
    )
