"""
edge_orchestrator.orchestrator

Orchestration package (LangGraph phase state machine).

Responsibilities:
- Phase lifecycle, typed state schema, phase logic, retry policy and graph compilation.
- Verification / validation engine for post-deployment checks.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Public surface area should remain small and stable; call sites should use the service layer.
