"""
edge_orchestrator.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and repositories for sessions,
  phase records, Data Bridge outputs, rollback actions, audit entries and locks.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Everything is keyed by session id; no table needs cross-session locking.
