"""Canonical query scope derived from raw filter inputs."""

from __future__ import annotations

from forum_explorer.models import Scope


def resolve_scope(ticket: str, run_id: str) -> Scope:
    """Return a Scope carrying only the filters that are non-empty after trimming."""

    ticket = (ticket or "").strip()
    run_id = (run_id or "").strip()
    return Scope(ticket=ticket or None, run_id=run_id or None)


def scope_label(ticket: str, run_id: str, topic_mode: str, agent_name: str) -> str:
    """Human-readable description of what the board is narrowed to."""

    parts: list[str] = []
    if ticket.strip():
        parts.append(f"ticket:{ticket.strip()}")
    if run_id.strip():
        parts.append(f"run:{run_id.strip()}")
    if topic_mode == "agent":
        parts.append(f"agent:{agent_name}" if agent_name else "agent:all")
    return " · ".join(parts) if parts else "global"
