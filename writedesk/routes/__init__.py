from .content import router as content_router
from .reviews import router as reviews_router
from .magazines import router as magazines_router
from .notifications import router as notifications_router
from .events import router as events_router
from .health import router as health_router

__all__ = [
    "content_router",
    "reviews_router",
    "magazines_router",
    "notifications_router",
    "events_router",
    "health_router",
]
