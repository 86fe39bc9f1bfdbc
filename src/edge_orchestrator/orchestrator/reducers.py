"""
edge_orchestrator.orchestrator.reducers

Reducers define how LangGraph merges partial state updates returned by phase nodes.

Why reducers:
- Each phase node returns only what it produced (its output, its errors).
- Reducers make the merge deterministic (append for errors, per-phase dict-merge for outputs).
"""

from __future__ import annotations

from typing import Any


def append_errors(
    left: list[dict[str, Any]] | None, right: list[dict[str, Any]] | None
) -> list[dict[str, Any]]:
    """
    Append-only reducer for error/warning entries.
    """

    if not left:
        return list(right or [])
    if not right:
        return list(left)
    return [*left, *right]


def merge_outputs(
    left: dict[str, dict[str, Any]] | None, right: dict[str, dict[str, Any]] | None
) -> dict[str, dict[str, Any]]:
    """
    Per-phase merge (right wins on phase collision). A phase's output is replaced
    whole, never merged key-by-key with an older version.
    """

    if not left:
        return dict(right or {})
    if not right:
        return dict(left)
    return {**left, **right}
