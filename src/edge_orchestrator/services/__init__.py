"""
edge_orchestrator.services

Service-layer package.

Responsibilities:
- Own transaction boundaries and persistence decisions.
- Drive per-domain sessions through the lifecycle graph.
"""

# Package marker.
