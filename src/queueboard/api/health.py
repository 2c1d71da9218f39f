"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, the
database is reachable and reports how many real-time clients are attached.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from queueboard import __version__
from queueboard.api.deps import get_hub
from queueboard.db.engine import engine
from queueboard.realtime.hub import BroadcastHub

router = APIRouter()


@router.get("/health")
async def health_check(hub: BroadcastHub = Depends(get_hub)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    checks["hub"] = "ok" if hub.running else "stopped"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, "subscribers": hub.subscriber_count, **checks}
