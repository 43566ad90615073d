from typing import Optional

from fastapi import FastAPI

from responder.app.api.status import router as status_router
from responder.app.core.config import settings
from responder.app.server import Server
from responder.app.version import VERSION


def create_app(server: Server, status_token: Optional[str] = None) -> FastAPI:
    """Create the status API for a responder.

    The API only observes the server; starting and stopping it stays with
    the caller.

    Args:
        server: Server to report on
        status_token: Bearer token for protected endpoints (defaults to
            ``settings.status_token``; empty disables the check)

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="NTP Responder Status",
        description="Metrics and request events of an NTP responder",
        version=VERSION,
    )
    app.state.server = server
    app.state.status_token = settings.status_token if status_token is None else status_token

    app.include_router(status_router)
    return app
