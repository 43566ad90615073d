"""Status and monitoring endpoints for the responder.

The endpoints read from the ``Server`` stored on ``app.state.server``.
"""

import hmac
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from responder.app.core.config import settings
from responder.app.server import Server
from responder.app.services.metrics import render_prometheus
from responder.app.version import VERSION

router = APIRouter()


def get_server(request: Request) -> Server:
    return request.app.state.server


def get_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_status_token(request: Request) -> None:
    """Check the bearer token when a status token is configured.

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    expected = request.app.state.status_token
    if not expected:
        return
    token = get_bearer_token(request) or ""
    if not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing status token")


@router.get("/health")
async def health(server: Server = Depends(get_server)) -> dict[str, Any]:
    """Liveness of the UDP listener."""
    running = server.running
    return {
        "status": "ok" if running else "stopped",
        "running": running,
        "address": server.addr,
        "version": VERSION,
    }


@router.get("/stats", dependencies=[Depends(require_status_token)])
async def stats(server: Server = Depends(get_server)) -> dict[str, Any]:
    """Metrics snapshot as JSON."""
    data = server.metrics().to_dict()
    data["subscribers"] = server.events.subscriber_count()
    data["rate_limited_clients"] = server.limiter.bucket_count()
    return data


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    dependencies=[Depends(require_status_token)],
)
async def prometheus_metrics(server: Server = Depends(get_server)) -> PlainTextResponse:
    """Prometheus-compatible metrics."""
    return PlainTextResponse(
        content=render_prometheus(server.metrics()),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


@router.get("/events", dependencies=[Depends(require_status_token)])
async def events(
    server: Server = Depends(get_server),
    limit: int = Query(default=settings.history_size, ge=1),
) -> list[dict[str, Any]]:
    """Most recent request events, oldest first."""
    return [event.to_dict() for event in server.history()[-limit:]]
