"""Keep the selected thread consistent with the latest visible set."""

from __future__ import annotations

from forum_explorer.board import BoardBuckets


def guard_selection(selected_thread_id: str, buckets: BoardBuckets) -> str:
    """Return the selection to keep after a pass: unchanged if visible, else empty."""

    if not selected_thread_id:
        return ""
    if selected_thread_id in buckets.thread_ids():
        return selected_thread_id
    return ""
