"""Tests for scope resolution and run snapshot normalization."""

from forum_explorer.models import Scope
from forum_explorer.normalize import (
    known_tickets,
    normalize_run_snapshot,
    normalize_runs,
    pick_string,
)
from forum_explorer.scope import resolve_scope, scope_label


def test_resolve_scope_trims_and_drops_empty():
    assert resolve_scope("  T-1 ", "   ") == Scope(ticket="T-1", run_id=None)
    assert resolve_scope("", "") == Scope()
    assert resolve_scope("", " run-2") == Scope(run_id="run-2")


def test_scope_params_only_include_present_fields():
    assert Scope(ticket="T-1").params() == {"ticket": "T-1"}
    assert Scope().params() == {}


def test_scope_label():
    assert scope_label("", "", "ticket", "") == "global"
    assert scope_label("T-1", "run-1", "ticket", "") == "ticket:T-1 · run:run-1"
    assert scope_label("", "", "agent", "") == "agent:all"
    assert scope_label("T-1", "", "agent", "worker") == "ticket:T-1 · agent:worker"


def test_pick_string_returns_first_non_empty():
    assert pick_string(None, "  ", 3, " value ", "other") == "value"
    assert pick_string(None, "") is None


def test_normalize_run_snapshot_accepts_alternate_keys():
    run = normalize_run_snapshot({
        "RunID": "run-7",
        "Status": "running",
        "Tickets": [" T-2 ", "", 4, "T-3"],
        "PendingGuidance": [
            {"ThreadID": "fthr-1", "AgentName": "a", "WorkspaceName": "w", "Question": "q?"},
            {"thread_id": "fthr-2", "agent_name": "b", "workspace_name": "w"},
        ],
    })

    assert run is not None
    assert run.run_id == "run-7"
    assert run.status == "running"
    assert run.tickets == ["T-2", "T-3"]
    assert [g.thread_id for g in run.pending_guidance] == ["fthr-1"]


def test_runs_missing_id_are_dropped_individually():
    runs = normalize_runs([
        {"status": "running"},
        "not a record",
        {"run_id": "run-1", "tickets": ["T-1"]},
    ])
    assert [run.run_id for run in runs] == ["run-1"]
    assert runs[0].status == "unknown"


def test_known_tickets_sorted_and_distinct():
    runs = normalize_runs([
        {"run_id": "r1", "tickets": ["T-2", "T-1"]},
        {"run_id": "r2", "tickets": ["T-1", "T-3"]},
    ])
    assert known_tickets(runs) == ["T-1", "T-2", "T-3"]
