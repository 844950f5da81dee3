"""Sync routes for pushing, deleting and importing calendar events."""
from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from app.calendar.sync import CalendarSync
from app.core.dependencies import get_calendar_sync, get_current_user_id

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/events/{event_id}")
async def push_event(
    event_id: UUID,
    user_id: str = Depends(get_current_user_id),
    sync: CalendarSync = Depends(get_calendar_sync),
):
    """
    Push one agenda event to the caller's Outlook calendar.

    Creates the Outlook event on first push and updates it afterwards.
    """
    result = await sync.sync_event_to_remote(user_id, event_id)
    return {
        "outcome": result.outcome.value,
        "local_event_id": str(result.local_event_id),
        "remote_event_id": result.remote_event_id,
    }


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: UUID,
    user_id: str = Depends(get_current_user_id),
    sync: CalendarSync = Depends(get_calendar_sync),
):
    """
    Remove the Outlook copy of an agenda event.

    Succeeds without contacting Outlook when the event was never pushed.
    """
    outcome = await sync.delete_event_from_remote(user_id, event_id)
    return {"outcome": outcome.value}


@router.post("/import")
async def import_events(
    start: datetime | None = None,
    end: datetime | None = None,
    user_id: str = Depends(get_current_user_id),
    sync: CalendarSync = Depends(get_calendar_sync),
):
    """
    Import Outlook events of a time window into the agenda.

    Defaults to the next 90 days. Events imported before are skipped.
    """
    start = start or datetime.now(UTC)
    end = end or start + timedelta(days=90)
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")

    result = await sync.import_events(user_id, start, end)
    return {
        "imported": result.imported,
        "skipped": result.skipped,
        "failed": result.failed,
        "errors": result.errors,
    }


@router.post("/full")
async def full_sync(
    user_id: str = Depends(get_current_user_id),
    sync: CalendarSync = Depends(get_calendar_sync),
):
    """Push future agenda events, then import new Outlook events."""
    report = await sync.full_sync(user_id)
    return report.as_dict()
