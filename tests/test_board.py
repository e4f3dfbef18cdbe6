"""Tests for board classification and row post-filters."""

from forum_explorer.aggregator import BoardRows, apply_agent_filter, apply_query_filter
from forum_explorer.board import BoardBuckets, classify_board
from forum_explorer.models import Thread, parse_threads
from forum_explorer.selection import guard_selection

from conftest import make_thread


def _threads(*records):
    return parse_threads(list(records))


def _rows(all_rows=(), closed=(), unseen=(), unanswered=()):
    return BoardRows(
        all_rows=list(all_rows),
        closed_rows=list(closed),
        unseen_rows=list(unseen),
        unanswered_rows=list(unanswered),
    )


def _ids(threads):
    return [thread.thread_id for thread in threads]


def test_in_progress_buckets_partition_open_rows():
    all_rows = _threads(
        make_thread("a", "new"),
        make_thread("b", "triaged"),
        make_thread("c", "waiting_operator"),
        make_thread("d", "waiting_human"),
        make_thread("e", "answered"),
        make_thread("f", "closed"),
        make_thread("g", " NEW "),
    )
    closed = _threads(make_thread("f", "closed"))

    buckets = classify_board(_rows(all_rows, closed), viewer_id="")

    new = set(_ids(buckets.in_progress_new))
    active = set(_ids(buckets.in_progress_active))
    awaiting = set(_ids(buckets.in_progress_awaiting_close))
    assert new == {"a", "g"}
    assert active == {"b", "c", "d"}
    assert awaiting == {"e"}
    assert not (new & active or new & awaiting or active & awaiting)
    assert new | active | awaiting == {t.thread_id for t in all_rows if t.state.strip().lower() != "closed"}
    assert _ids(buckets.recently_closed) == ["f"]


def test_needs_me_buckets_and_counts():
    all_rows = _threads(
        make_thread("a", "new", assignee_name="worker-7"),
        make_thread("b", "triaged", assignee_name="team-a"),
        make_thread("c", "answered", assignee_name="worker-9"),
    )
    unseen = _threads(make_thread("a", "new"), make_thread("x", "new"))
    unanswered = _threads(make_thread("x", "new"), make_thread("y", "triaged"))

    buckets = classify_board(
        _rows(all_rows, (), unseen, unanswered), viewer_id="agent:team-a:worker-7"
    )

    assert _ids(buckets.needs_me_assigned) == ["a", "b"]
    assert _ids(buckets.needs_me_unseen) == ["a", "x"]
    assert _ids(buckets.needs_me_unanswered) == ["x", "y"]

    counts = buckets.counts()
    assert counts.in_progress == 3
    assert counts.needs_me == 4  # a, b, x, y
    assert counts.recently_completed == 0


def test_classification_is_idempotent():
    rows = _rows(
        _threads(make_thread("a", "new"), make_thread("b", "answered")),
        _threads(make_thread("c", "closed")),
        _threads(make_thread("a", "new")),
    )
    first = classify_board(rows, "human:operator")
    second = classify_board(rows, "human:operator")
    assert first == second


def test_query_filter_matches_title_id_assignee_and_agent():
    rows = _threads(
        make_thread("fthr-1", title="Deploy blocked"),
        make_thread("fthr-2", title="other", assignee_name="Alice"),
        make_thread("fthr-3", title="other", agent_name="Builder"),
        make_thread("fthr-4", title="unrelated"),
    )
    assert _ids(apply_query_filter(rows, "BLOCKED")) == ["fthr-1"]
    assert _ids(apply_query_filter(rows, "alice")) == ["fthr-2"]
    assert _ids(apply_query_filter(rows, "builder")) == ["fthr-3"]
    assert _ids(apply_query_filter(rows, "fthr-4")) == ["fthr-4"]
    assert len(apply_query_filter(rows, "  ")) == 4


def test_agent_filter_only_in_agent_mode():
    rows = _threads(
        make_thread("a", agent_name=" Worker-1 "),
        make_thread("b", agent_name="worker-2"),
        make_thread("c"),
    )
    assert len(apply_agent_filter(rows, "ticket", "worker-1")) == 3
    assert len(apply_agent_filter(rows, "agent", "")) == 3
    assert _ids(apply_agent_filter(rows, "agent", "worker-1")) == ["a"]


def test_available_agents():
    buckets = BoardBuckets(
        in_progress_new=tuple(_threads(make_thread("a", agent_name="zed"), make_thread("b"))),
        recently_closed=tuple(_threads(make_thread("c", agent_name="amy"), make_thread("d", agent_name="zed"))),
    )
    assert buckets.available_agents() == ["amy", "zed"]


def test_selection_guard():
    buckets = BoardBuckets(
        needs_me_unanswered=(Thread(thread_id="kept"),),
        recently_closed=(Thread(thread_id="closed-1"),),
    )
    assert guard_selection("kept", buckets) == "kept"
    assert guard_selection("closed-1", buckets) == "closed-1"
    assert guard_selection("gone", buckets) == ""
    assert guard_selection("", buckets) == ""
