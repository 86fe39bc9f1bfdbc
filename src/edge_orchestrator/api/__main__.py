"""
edge_orchestrator.api.__main__

Entrypoint for running the FastAPI application via `python -m edge_orchestrator.api`.
"""

from __future__ import annotations

import uvicorn

from edge_orchestrator.api.app import create_app
from edge_orchestrator.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings=settings),
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog owns log formatting
    )


if __name__ == "__main__":
    main()
