"""Health check endpoint.

Learn: Reports the database (required), Redis (optional — only the rate
limiter uses it) and the Room Manager's live counts. The status is
"degraded" only when a required dependency fails or the Room Manager
isn't running.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom import __version__
from taskroom.api.deps import get_rooms
from taskroom.db.engine import get_db
from taskroom.db.redis import get_redis
from taskroom.realtime.rooms import RoomManager

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    rooms: RoomManager = Depends(get_rooms),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except RuntimeError:
        checks["redis"] = "disabled"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    checks["rooms"] = {"running": rooms.running, **rooms.stats()}

    healthy = checks["database"] == "ok" and rooms.running
    return {"status": "healthy" if healthy else "degraded", **checks}
