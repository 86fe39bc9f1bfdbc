from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from edge_orchestrator.orchestrator.phases import LIFECYCLE, Phase
from edge_orchestrator.orchestrator.state import SessionGraphState

ROLLBACK = "rollback"
FINISH = "finish"

NodeFn = Callable[[SessionGraphState], Awaitable[dict[str, Any]]]


class LifecycleDriver(Protocol):
    """What the graph needs from whoever persists and executes phases (the session runner)."""

    async def run_phase(self, phase: Phase, state: SessionGraphState) -> dict[str, Any]: ...

    async def rollback(self, state: SessionGraphState) -> dict[str, Any]: ...

    async def finish(self, state: SessionGraphState) -> dict[str, Any]: ...


def build_graph(*, driver: LifecycleDriver):
    """
    Returns a compiled LangGraph runnable.

    assess -> identify -> ... -> validate -> finish, with every phase able to branch to
    rollback. The entry point is chosen from `resume_from`, so a resumed session starts
    at its first incomplete phase (or directly at rollback/finish).
    """

    try:
        from langgraph.graph import END, START, StateGraph  # type: ignore[import-not-found]
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "LangGraph is not available. Install dependencies (see pyproject.toml)."
        ) from e

    graph = StateGraph(SessionGraphState)

    for phase in LIFECYCLE:
        graph.add_node(phase.value, _bind_phase(driver, phase))
    graph.add_node(ROLLBACK, driver.rollback)
    graph.add_node(FINISH, driver.finish)

    targets = [p.value for p in LIFECYCLE] + [ROLLBACK, FINISH]
    graph.add_conditional_edges(START, route_entry, {t: t for t in targets})

    for phase in LIFECYCLE:
        nxt = phase.next.value if phase.next is not None else FINISH
        graph.add_conditional_edges(
            phase.value,
            _route_after(phase),
            {ROLLBACK: ROLLBACK, nxt: nxt},
        )

    graph.add_edge(ROLLBACK, END)
    graph.add_edge(FINISH, END)

    return graph.compile()


def route_entry(state: SessionGraphState) -> str:
    target = state.get("resume_from") or LIFECYCLE[0].value
    if target in (ROLLBACK, FINISH):
        return target
    return Phase(target).value


def _route_after(phase: Phase) -> Callable[[SessionGraphState], str]:
    nxt = phase.next.value if phase.next is not None else FINISH

    def _route(state: SessionGraphState) -> str:
        if state.get("failed_phase"):
            return ROLLBACK
        return nxt

    return _route


def _bind_phase(driver: LifecycleDriver, phase: Phase) -> NodeFn:
    async def _wrapped(state: SessionGraphState) -> dict[str, Any]:
        return await driver.run_phase(phase, state)

    return _wrapped
