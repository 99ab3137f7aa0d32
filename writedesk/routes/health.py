"""
writedesk Health Check Routes
"""
from fastapi import APIRouter, Depends
from datetime import datetime, timezone
from typing import Dict, Any
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..deps import get_outbox
from ..logging_config import api_logger
from ..realtime import event_manager
from ..workflow.broadcaster import EventOutbox

settings = get_settings()

router = APIRouter(prefix="/api/health", tags=["health"])

START_TIME = datetime.now(timezone.utc)


def get_uptime() -> str:
    """Get service uptime as human-readable string"""
    delta = datetime.now(timezone.utc) - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity"""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        api_logger.error("Database health check failed", error=e)
        return {"status": "unhealthy", "error": str(e)}


@router.get("")
def health_check(db: Session = Depends(get_db), outbox: EventOutbox = Depends(get_outbox)):
    """Health check endpoint for load balancers and monitoring."""
    database = check_database(db)
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "environment": settings.environment,
        "version": "1.0.0",
        "uptime": get_uptime(),
        "database": database,
        "realtime": {
            "connections": event_manager.connection_count,
            "queued_events": outbox.queue.qsize(),
            "dispatcher_running": outbox.running,
        },
    }
