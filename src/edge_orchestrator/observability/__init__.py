"""
edge_orchestrator.observability

Observability package.

Responsibilities:
- Structured logging configuration and request-scoped log context.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Audit entries are the compliance record; logs here are operational only.
