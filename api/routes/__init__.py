"""
Activity Monitor API Routes Package.

Example:
    from api.routes import activity_router, snapshots_router

    app.include_router(activity_router)
    app.include_router(snapshots_router)
"""

from api.routes.activity import router as activity_router
from api.routes.snapshots import router as snapshots_router


__all__ = [
    "activity_router",
    "snapshots_router",
]
