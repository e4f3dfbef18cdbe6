"""Merge a thread's events and posts into one ordered display sequence."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from typing import Optional

from forum_explorer.models import ThreadDetail

PLACEHOLDER = "-"


@dataclass(frozen=True)
class TimelineRow:
    id: str
    sequence: int
    event_type: str
    actor_type: str
    actor_name: str
    occurred_at: str
    body: str

    def to_dict(self) -> dict:
        return asdict(self)


def summarize_payload(raw: Optional[str]) -> str:
    """Best-effort text for an event that has no correlated post.

    JSON objects and arrays are re-serialized compactly, other JSON values are
    rendered as text, and anything unparseable is shown verbatim.
    """
    if not raw:
        return ""
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(parsed, (dict, list)):
        return json.dumps(parsed, separators=(",", ":"), ensure_ascii=False)
    if parsed is None:
        return "null"
    if isinstance(parsed, bool):
        return "true" if parsed else "false"
    return str(parsed)


def build_timeline(detail: Optional[ThreadDetail]) -> list[TimelineRow]:
    if detail is None:
        return []

    posts_by_event = {post.event_id: post for post in detail.posts if post.event_id}
    rows: list[TimelineRow] = []
    for event in sorted(detail.events, key=lambda item: item.sequence):
        envelope = event.envelope
        post = posts_by_event.get(envelope.event_id)
        rows.append(
            TimelineRow(
                id=f"{event.sequence}-{envelope.event_id}",
                sequence=event.sequence,
                event_type=envelope.event_type,
                actor_type=envelope.actor_type or (post.author_type if post else "") or PLACEHOLDER,
                actor_name=envelope.actor_name or (post.author_name if post else "") or PLACEHOLDER,
                occurred_at=envelope.occurred_at,
                body=(post.body if post else "") or summarize_payload(event.payload_json),
            )
        )
    return rows
