"""
edge_orchestrator.api

HTTP surface of the orchestrator (FastAPI).
"""
