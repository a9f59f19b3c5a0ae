"""Health check endpoint.

Learn: Goes through the same ConnectionManager as every other route, so
a cold instance establishes its connection here if it hasn't already.
An unreachable database surfaces as 503, never as a crash.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from trivedia import __version__
from trivedia.config import settings
from trivedia.db.engine import ConnectionManager, get_connections
from trivedia.errors import envelope

router = APIRouter()


@router.get("/health")
async def health_check(connections: ConnectionManager = Depends(get_connections)):
    """Check server health and database connectivity."""
    await connections.ping()
    return envelope(
        message="API and Database are healthy",
        data={
            "version": __version__,
            "environment": settings.environment,
            "database": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
