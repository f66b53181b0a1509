"""
Activity API endpoints.

Provides:
- Entity counts by lifecycle status
- Entity listing and detail with rolling sums
- Real-time check of a handle against GitHub (nothing persisted)
- Manual sync trigger, cancellation and run history
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.services.activity_jobs import SYNC_SOURCE, cancel_sync, start_sync_job
from api.services.activity_store import TrackedEntity, get_activity_store
from api.services.classifier import EntityStatus, last_active_day, window_start, window_sum
from api.services.github_activity import get_activity_source
from api.services.resilience import SyncAlreadyRunningError, TransientFetchFailure, user_friendly_error
from api.services.sync_engine import get_sync_engine
from api.services.sync_health import get_recent_runs, get_sync_health
from api.utils.datetime_utils import start_of_day, utc_today
from config.activity_config import REPORT_WINDOWS

router = APIRouter(prefix="/api/activity", tags=["activity"])
logger = logging.getLogger(__name__)


class EntityResponse(BaseModel):
    """A tracked entity."""
    id: str
    handle: str
    external_id: str
    email: str
    status: str
    last_active: Optional[str] = None
    created_at: str
    updated_at: str


class EntityListResponse(BaseModel):
    entities: list[EntityResponse]
    count: int


class EntityDetailResponse(EntityResponse):
    """Entity with contribution sums per report window, keyed like ``30d``."""
    sums: dict[str, int]


class StatusResponse(BaseModel):
    total_entities: int
    counts: dict[str, int]
    sync_running: bool
    last_sync: Optional[dict] = None


class CheckResponse(BaseModel):
    """Live view of a handle, fetched from GitHub and not stored."""
    handle: str
    tracked: bool
    total_count: int
    sums: dict[str, int]
    last_active: Optional[str] = None


class SyncTriggerResponse(BaseModel):
    status: str
    message: str


class SyncHistoryResponse(BaseModel):
    runs: list[dict]
    health: dict


def _entity_response(entity: TrackedEntity) -> EntityResponse:
    return EntityResponse(**entity.to_dict())


def _last_active_sort_key(entity: TrackedEntity):
    # Never-active entities first, then oldest activity first
    never = datetime.min.replace(tzinfo=timezone.utc)
    return (entity.last_active is not None, entity.last_active or never, entity.handle)


@router.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    """Entity counts per lifecycle status and the state of the last sync."""
    store = get_activity_store()
    with store.read_snapshot() as reader:
        counts = reader.status_counts()

    last = get_recent_runs(SYNC_SOURCE, limit=1)
    return StatusResponse(
        total_entities=sum(counts.values()),
        counts={status.value: count for status, count in counts.items()},
        sync_running=get_sync_engine().is_running,
        last_sync=last[0].to_dict() if last else None,
    )


@router.get("/entities", response_model=EntityListResponse)
async def list_entities(
    status: Optional[EntityStatus] = Query(default=None, description="Filter by lifecycle status"),
) -> EntityListResponse:
    """List entities, least recently active first."""
    entities = get_activity_store().list_entities(status)
    entities.sort(key=_last_active_sort_key)
    return EntityListResponse(
        entities=[_entity_response(e) for e in entities],
        count=len(entities),
    )


@router.get("/entities/{handle}", response_model=EntityDetailResponse)
async def get_entity(handle: str) -> EntityDetailResponse:
    """One entity with its contribution sums from the ledger."""
    today = utc_today()
    store = get_activity_store()
    with store.read_snapshot() as reader:
        entity = reader.get_entity_by_handle(handle)
        if not entity:
            raise HTTPException(status_code=404, detail=f"Entity '{handle}' not found")
        sums = {
            f"{days}d": reader.sum_counts(entity.id, window_start(today, days), today)
            for days in REPORT_WINDOWS
        }
    return EntityDetailResponse(**entity.to_dict(), sums=sums)


@router.get("/check/{handle}", response_model=CheckResponse)
def check_handle(handle: str) -> CheckResponse:
    """
    Fetch a handle's calendar from GitHub right now.

    Works for handles that are not tracked. Nothing is written to the store.
    """
    try:
        calendar = get_activity_source().fetch(handle)
    except TransientFetchFailure as e:
        logger.warning(f"Real-time check failed for {handle}: {e}")
        status_code = 404 if e.not_found else 502
        raise HTTPException(status_code=status_code, detail=user_friendly_error(e))

    today = utc_today()
    days = calendar.pairs()
    latest = last_active_day(days)
    return CheckResponse(
        handle=handle,
        tracked=get_activity_store().get_entity_by_handle(handle) is not None,
        total_count=calendar.total_count,
        sums={
            f"{n}d": window_sum(days, window_start(today, n), today)
            for n in REPORT_WINDOWS
        },
        last_active=start_of_day(latest).isoformat() if latest else None,
    )


@router.post("/sync", response_model=SyncTriggerResponse)
async def trigger_sync() -> SyncTriggerResponse:
    """
    Start a full sync in the background.

    Returns 409 if a sync (manual or scheduled) is already running.
    """
    try:
        start_sync_job(trigger="manual")
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=user_friendly_error(e))
    return SyncTriggerResponse(status="started", message="Activity sync started in background")


@router.post("/sync/cancel", response_model=SyncTriggerResponse)
async def cancel_running_sync() -> SyncTriggerResponse:
    """Ask the running sync to stop after its current entity."""
    if cancel_sync():
        return SyncTriggerResponse(status="cancelling", message="Cancellation requested")
    return SyncTriggerResponse(status="idle", message="No sync is running")


@router.get("/sync/history", response_model=SyncHistoryResponse)
async def sync_history(
    limit: int = Query(default=20, ge=1, le=200, description="Number of runs to return"),
) -> SyncHistoryResponse:
    """Recent sync runs, newest first, plus the staleness check."""
    runs = get_recent_runs(SYNC_SOURCE, limit=limit)
    return SyncHistoryResponse(
        runs=[run.to_dict() for run in runs],
        health=get_sync_health(SYNC_SOURCE).to_dict(),
    )
