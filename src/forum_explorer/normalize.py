"""Tolerant normalization of backend records.

The backend is not consistent about field casing: run snapshots arrive with
either snake_case keys or Go-style exported names depending on the endpoint
version. Each helper here tries an ordered list of candidate keys and takes
the first usable value. A record missing a required field is dropped on its
own; the rest of the response is kept.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from forum_explorer.models import GuidanceRequest, RunSnapshot


def pick_string(*values: Any) -> Optional[str]:
    """Return the first candidate that is a non-empty string after trimming."""

    for value in values:
        if isinstance(value, str):
            trimmed = value.strip()
            if trimmed:
                return trimmed
    return None


def pick_field(raw: dict, *keys: str) -> Optional[str]:
    """Return the first non-empty string stored under one of ``keys``."""

    return pick_string(*(raw.get(key) for key in keys))


def normalize_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def normalize_guidance(value: Any) -> Optional[GuidanceRequest]:
    """Normalize one pending-guidance entry; all four fields are required."""

    if not isinstance(value, dict):
        return None

    thread_id = pick_field(value, "thread_id", "ThreadID")
    agent_name = pick_field(value, "agent_name", "AgentName")
    workspace_name = pick_field(value, "workspace_name", "WorkspaceName")
    question = pick_field(value, "question", "Question")
    if not (thread_id and agent_name and workspace_name and question):
        return None

    return GuidanceRequest(
        thread_id=thread_id,
        agent_name=agent_name,
        workspace_name=workspace_name,
        question=question,
    )


def normalize_run_snapshot(value: Any) -> Optional[RunSnapshot]:
    """Normalize a run snapshot, returning None when ``run_id`` is absent."""

    if not isinstance(value, dict):
        return None

    run_id = pick_field(value, "run_id", "RunID")
    if not run_id:
        return None

    tickets = value.get("tickets")
    if tickets is None:
        tickets = value.get("Tickets")
    guidance = value.get("pending_guidance")
    if guidance is None:
        guidance = value.get("PendingGuidance")

    pending = []
    if isinstance(guidance, list):
        pending = [item for item in (normalize_guidance(entry) for entry in guidance) if item]

    return RunSnapshot(
        run_id=run_id,
        status=pick_field(value, "status", "Status") or "unknown",
        tickets=normalize_string_list(tickets),
        pending_guidance=pending,
    )


def normalize_runs(values: Any) -> list[RunSnapshot]:
    if not isinstance(values, list):
        return []
    return [run for run in (normalize_run_snapshot(value) for value in values) if run]


def known_tickets(runs: Iterable[RunSnapshot]) -> list[str]:
    """Return the sorted set of tickets referenced by any run."""

    tickets = {ticket.strip() for run in runs for ticket in run.tickets if ticket.strip()}
    return sorted(tickets)
