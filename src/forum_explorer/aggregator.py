"""Fan-out of the four board queries for one reconciliation pass."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable

from forum_explorer.client import ForumClient
from forum_explorer.models import Scope, Thread


@dataclass(frozen=True)
class BoardQuery:
    """Everything a pass needs to know about the current filters."""

    scope: Scope
    query_text: str = ""
    priority: str = ""
    viewer_type: str = ""
    viewer_id: str = ""
    topic_mode: str = "ticket"
    agent_name: str = ""


@dataclass
class BoardRows:
    """Post-filtered row sets from the four queries of one pass."""

    all_rows: list[Thread]
    closed_rows: list[Thread]
    unseen_rows: list[Thread]
    unanswered_rows: list[Thread]


def apply_query_filter(rows: Iterable[Thread], query_text: str) -> list[Thread]:
    """Keep rows whose title, id, assignee or agent contains the query (case-insensitive)."""

    query = query_text.strip().lower()
    if not query:
        return list(rows)
    return [
        thread
        for thread in rows
        if query in thread.title.lower()
        or query in thread.thread_id.lower()
        or query in (thread.assignee_name or "").lower()
        or query in (thread.agent_name or "").lower()
    ]


def apply_agent_filter(rows: Iterable[Thread], topic_mode: str, agent_name: str) -> list[Thread]:
    """In agent topic mode, keep only rows owned by the selected agent."""

    if topic_mode != "agent":
        return list(rows)
    agent = agent_name.strip().lower()
    if not agent:
        return list(rows)
    return [thread for thread in rows if (thread.agent_name or "").strip().lower() == agent]


async def fetch_board_rows(client: ForumClient, query: BoardQuery) -> BoardRows:
    """Issue the four board queries concurrently and post-filter the results.

    The general searches are text-filtered by the backend; the queue endpoints
    are not, so the text filter is applied to them here. If any query fails
    the ForumRequestError propagates and no rows are returned.
    """

    viewer = {"viewer_type": query.viewer_type, "viewer_id": query.viewer_id}
    all_rows, closed_rows, unseen_rows, unanswered_rows = await asyncio.gather(
        client.search_threads(query.scope, query=query.query_text, priority=query.priority, **viewer),
        client.search_threads(
            query.scope, state="closed", query=query.query_text, priority=query.priority, **viewer
        ),
        client.queue_threads(query.scope, "unseen", priority=query.priority, **viewer),
        client.queue_threads(query.scope, "unanswered", priority=query.priority, **viewer),
    )

    def scoped(rows: list[Thread]) -> list[Thread]:
        return apply_agent_filter(rows, query.topic_mode, query.agent_name)

    return BoardRows(
        all_rows=scoped(all_rows),
        closed_rows=scoped(closed_rows),
        unseen_rows=scoped(apply_query_filter(unseen_rows, query.query_text)),
        unanswered_rows=scoped(apply_query_filter(unanswered_rows, query.query_text)),
    )
