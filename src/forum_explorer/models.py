"""Value objects for forum threads, timelines and diagnostics.

All records are parsed from backend JSON with tolerant defaults: a missing
optional field becomes an empty value rather than an error. Only records
that lack their identity (``thread_id``) are rejected, by returning None
from ``from_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Optional

THREAD_STATES = ("new", "triaged", "waiting_operator", "waiting_human", "answered", "closed")
PRIORITIES = ("urgent", "high", "normal", "low")


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    return _int(value)


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class Scope:
    """Optional ticket/run narrowing; None means "all"."""

    ticket: Optional[str] = None
    run_id: Optional[str] = None

    def params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.ticket:
            params["ticket"] = self.ticket
        if self.run_id:
            params["run_id"] = self.run_id
        return params


@dataclass
class Thread:
    thread_id: str
    ticket: str = ""
    run_id: str = ""
    title: str = ""
    state: str = ""
    priority: str = ""
    assignee_name: str = ""
    posts_count: int = 0
    opened_at: str = ""
    updated_at: str = ""
    agent_name: str = ""
    last_event_sequence: Optional[int] = None
    last_actor_type: str = ""
    is_unseen: bool = False
    is_unanswered: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["Thread"]:
        data = _dict(raw)
        thread_id = _text(data.get("thread_id")).strip()
        if not thread_id:
            return None
        return cls(
            thread_id=thread_id,
            ticket=_text(data.get("ticket")),
            run_id=_text(data.get("run_id")),
            title=_text(data.get("title")),
            state=_text(data.get("state")),
            priority=_text(data.get("priority")),
            assignee_name=_text(data.get("assignee_name")),
            posts_count=_int(data.get("posts_count")),
            opened_at=_text(data.get("opened_at")),
            updated_at=_text(data.get("updated_at")),
            agent_name=_text(data.get("agent_name")),
            last_event_sequence=_optional_int(data.get("last_event_sequence")),
            last_actor_type=_text(data.get("last_actor_type")),
            is_unseen=bool(data.get("is_unseen")),
            is_unanswered=bool(data.get("is_unanswered")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def parse_threads(values: Any) -> list[Thread]:
    """Parse a thread row set, dropping rows without an identity."""

    return [thread for thread in (Thread.from_dict(value) for value in _list(values)) if thread]


@dataclass
class Post:
    post_id: str
    event_id: str = ""
    author_type: str = ""
    author_name: str = ""
    body: str = ""
    created_at: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "Post":
        data = _dict(raw)
        return cls(
            post_id=_text(data.get("post_id")),
            event_id=_text(data.get("event_id")),
            author_type=_text(data.get("author_type")),
            author_name=_text(data.get("author_name")),
            body=_text(data.get("body")),
            created_at=_text(data.get("created_at")),
        )


@dataclass
class EventEnvelope:
    event_id: str = ""
    event_type: str = ""
    thread_id: str = ""
    ticket: str = ""
    run_id: str = ""
    actor_type: str = ""
    actor_name: str = ""
    occurred_at: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "EventEnvelope":
        data = _dict(raw)
        return cls(**{name: _text(data.get(name)) for name in cls.__dataclass_fields__})


@dataclass
class Event:
    sequence: int
    envelope: EventEnvelope
    payload_json: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "Event":
        data = _dict(raw)
        payload = data.get("payload_json")
        return cls(
            sequence=_int(data.get("sequence")),
            envelope=EventEnvelope.from_dict(data.get("envelope")),
            payload_json=None if payload is None else _text(payload),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ThreadDetail:
    thread: Thread
    posts: list[Post] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["ThreadDetail"]:
        data = _dict(raw)
        thread = Thread.from_dict(data.get("thread"))
        if thread is None:
            return None
        return cls(
            thread=thread,
            posts=[Post.from_dict(item) for item in _list(data.get("posts"))],
            events=[Event.from_dict(item) for item in _list(data.get("events"))],
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class GuidanceRequest:
    thread_id: str
    agent_name: str
    workspace_name: str
    question: str


@dataclass
class RunSnapshot:
    run_id: str
    status: str = "unknown"
    tickets: list[str] = field(default_factory=list)
    pending_guidance: list[GuidanceRequest] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OutboxStats:
    pending_count: int = 0
    processing_count: int = 0
    failed_count: int = 0
    oldest_pending_age_seconds: int = 0

    @classmethod
    def from_dict(cls, raw: Any) -> "OutboxStats":
        data = _dict(raw)
        return cls(**{name: _int(data.get(name)) for name in cls.__dataclass_fields__})


@dataclass
class OutboxMessage:
    message_id: str = ""
    topic: str = ""
    status: str = ""
    attempt_count: int = 0
    last_error: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "OutboxMessage":
        data = _dict(raw)
        return cls(
            message_id=_text(data.get("message_id")),
            topic=_text(data.get("topic")),
            status=_text(data.get("status")),
            attempt_count=_int(data.get("attempt_count")),
            last_error=_text(data.get("last_error")),
            updated_at=_text(data.get("updated_at")),
        )


@dataclass
class BusTopic:
    topic: str = ""
    stream: str = ""
    handler_registered: bool = False
    subscribed: bool = False
    stream_exists: bool = False
    stream_length: int = 0
    consumer_group_present: bool = False
    consumer_group_pending: int = 0
    consumer_group_lag: int = 0
    topic_error: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "BusTopic":
        data = _dict(raw)
        return cls(
            topic=_text(data.get("topic")),
            stream=_text(data.get("stream")),
            handler_registered=bool(data.get("handler_registered")),
            subscribed=bool(data.get("subscribed")),
            stream_exists=bool(data.get("stream_exists")),
            stream_length=_int(data.get("stream_length")),
            consumer_group_present=bool(data.get("consumer_group_present")),
            consumer_group_pending=_int(data.get("consumer_group_pending")),
            consumer_group_lag=_int(data.get("consumer_group_lag")),
            topic_error=_text(data.get("topic_error")),
        )


@dataclass
class BusStatus:
    running: bool = False
    healthy: bool = False
    health_error: str = ""
    redis_url: str = ""
    stream_name: str = ""
    consumer_group: str = ""
    consumer_name: str = ""
    topics: list[BusTopic] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "BusStatus":
        data = _dict(raw)
        return cls(
            running=bool(data.get("running")),
            healthy=bool(data.get("healthy")),
            health_error=_text(data.get("health_error")),
            redis_url=_text(data.get("redis_url")),
            stream_name=_text(data.get("stream_name")),
            consumer_group=_text(data.get("consumer_group")),
            consumer_name=_text(data.get("consumer_name")),
            topics=[BusTopic.from_dict(item) for item in _list(data.get("topics"))],
        )


@dataclass
class DebugSnapshot:
    """Point-in-time health readout. Display only."""

    generated_at: str = ""
    ticket: str = ""
    run_id: str = ""
    outbox: OutboxStats = field(default_factory=OutboxStats)
    outbox_messages: list[OutboxMessage] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)
    bus: BusStatus = field(default_factory=BusStatus)

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["DebugSnapshot"]:
        if not isinstance(raw, dict):
            return None
        return cls(
            generated_at=_text(raw.get("generated_at")),
            ticket=_text(raw.get("ticket")),
            run_id=_text(raw.get("run_id")),
            outbox=OutboxStats.from_dict(raw.get("outbox")),
            outbox_messages=[OutboxMessage.from_dict(item) for item in _list(raw.get("outbox_messages"))],
            events=[Event.from_dict(item) for item in _list(raw.get("events"))],
            bus=BusStatus.from_dict(raw.get("bus")),
        )

    def to_dict(self) -> dict:
        return asdict(self)
