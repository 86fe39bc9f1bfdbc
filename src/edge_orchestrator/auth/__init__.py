"""
edge_orchestrator.auth

Authentication/authorization package.

Responsibilities:
- JWT helpers and validation.
- FastAPI auth dependencies (Principal + RBAC roles: deployer, auditor, internal_system).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The same JWT helpers sign tool calls to provisioning collaborators.
