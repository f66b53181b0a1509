"""
Snapshot API endpoints.

Serves the precomputed views exactly as the last regeneration rendered
them. Requests never trigger computation; a key that has not been generated
yet answers 404.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

from api.services.activity_jobs import start_snapshot_job
from api.services.resilience import SyncAlreadyRunningError, user_friendly_error
from api.services.snapshot_cache import catalog, get_snapshot_cache, parse_window, snapshot_key
from config.activity_config import SnapshotConfig

router = APIRouter(prefix="/api/snapshots", tags=["snapshots"])
logger = logging.getLogger(__name__)


class SnapshotInfo(BaseModel):
    key: str
    view: str
    window_days: int
    available: bool
    size_bytes: Optional[int] = None
    generated_at: Optional[str] = None


class SnapshotCatalogResponse(BaseModel):
    snapshots: list[SnapshotInfo]
    regenerating: bool
    last_regenerated: Optional[str] = None


class RegenerateResponse(BaseModel):
    status: str
    message: str


@router.get("", response_model=SnapshotCatalogResponse)
async def list_snapshots() -> SnapshotCatalogResponse:
    """Every catalog key and whether it has been generated."""
    cache = get_snapshot_cache()
    entries = {entry.key: entry for entry in cache.entries()}

    snapshots = []
    for view, window in catalog():
        key = snapshot_key(view, window)
        entry = entries.get(key)
        if entry:
            snapshots.append(SnapshotInfo(available=True, **entry.describe()))
        else:
            snapshots.append(SnapshotInfo(key=key, view=view, window_days=window, available=False))

    return SnapshotCatalogResponse(
        snapshots=snapshots,
        regenerating=cache.is_running,
        last_regenerated=cache.last_regenerated.isoformat() if cache.last_regenerated else None,
    )


@router.get("/{view}/{window}")
async def get_snapshot(view: str, window: str) -> Response:
    """Rendered bytes of one view, e.g. ``/api/snapshots/trend/7d``."""
    if view not in SnapshotConfig.views():
        raise HTTPException(status_code=404, detail=f"Unknown view '{view}'")
    try:
        days = parse_window(window)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    cache = get_snapshot_cache()
    blob = cache.get(view, days)
    if blob is None:
        raise HTTPException(
            status_code=404,
            detail=f"Snapshot '{snapshot_key(view, days)}' has not been generated yet",
        )
    return Response(content=blob, media_type=cache.media_type)


@router.post("/regenerate", response_model=RegenerateResponse)
async def regenerate_snapshots() -> RegenerateResponse:
    """
    Start a regeneration in the background.

    Returns 409 if one is already running.
    """
    try:
        start_snapshot_job(trigger="manual")
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=user_friendly_error(e))
    return RegenerateResponse(status="started", message="Snapshot regeneration started in background")
