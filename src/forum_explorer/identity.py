"""Match a free-text viewer identity against thread assignees.

Viewer identities look like ``type:namespace:id`` (for example
``agent:team-a:worker-7``) while assignees are recorded at whatever
granularity the assigning party chose: the full string, just the namespace,
or just the leaf id. Matching is a many-to-one heuristic over lowercase
tokens, not an identity check.
"""

from __future__ import annotations

from typing import Iterable


def _split(normalized: str) -> list[str]:
    return [part.strip() for part in normalized.split(":") if part.strip()]


def derive_tokens(viewer_id: str) -> frozenset[str]:
    """Return the candidate tokens an assignee may be recorded as."""

    normalized = (viewer_id or "").strip().lower()
    if not normalized:
        return frozenset()

    tokens = {normalized}
    parts = _split(normalized)
    if len(parts) >= 2:
        tokens.add(parts[1])
    if len(parts) >= 3:
        tokens.add(parts[-1])
    return frozenset(tokens)


def matches(assignee: str, tokens: Iterable[str]) -> bool:
    """Return True when ``assignee`` refers to the viewer owning ``tokens``."""

    token_set = tokens if isinstance(tokens, (set, frozenset)) else set(tokens)
    normalized = (assignee or "").strip().lower()
    if not normalized or not token_set:
        return False
    if normalized in token_set:
        return True

    parts = _split(normalized)
    if len(parts) >= 2 and parts[1] in token_set:
        return True
    if len(parts) >= 3 and parts[-1] in token_set:
        return True
    return False
