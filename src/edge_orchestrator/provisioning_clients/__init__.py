"""
edge_orchestrator.provisioning_clients

Provisioning collaborator package.

Responsibilities:
- Define the collaborator contracts (database, secrets, worker deployment).
- Provide HTTP clients that call a provisioning API.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The orchestrator depends on the protocols in `base`, never on HTTP details.
