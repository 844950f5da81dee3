"""Translate between agenda events and Microsoft Graph event resources."""
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.models import Event

GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalise aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _zone(name: str | None) -> ZoneInfo:
    if not name or name.upper() == "UTC":
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        # Graph may report Windows zone names; times are requested in UTC anyway
        return ZoneInfo("UTC")


def format_graph_datetime(value: datetime, timezone: str) -> dict:
    """Render *value* as a Graph ``dateTimeTimeZone`` in the given zone."""
    local = as_utc(value).astimezone(_zone(timezone))
    return {"dateTime": local.strftime(GRAPH_DATETIME_FORMAT), "timeZone": timezone}


def parse_graph_datetime(value: dict) -> datetime:
    """Parse a Graph ``dateTimeTimeZone`` into an aware UTC datetime.

    Graph sends up to seven fractional digits and no offset, e.g.
    ``2026-03-01T09:00:00.0000000`` with ``timeZone: "UTC"``.
    """
    raw = value["dateTime"].replace("Z", "")
    if "." in raw:
        whole, fraction = raw.split(".", 1)
        raw = f"{whole}.{fraction[:6]}"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(value.get("timeZone")))
    return parsed.astimezone(UTC)


def format_graph_date(value: datetime, timezone: str) -> dict:
    """Render the calendar date of *value* in *timezone* as local midnight.

    Graph only accepts all-day events whose start and end are at midnight.
    """
    local_date = as_utc(value).astimezone(_zone(timezone)).date()
    return {"dateTime": f"{local_date.isoformat()}T00:00:00", "timeZone": timezone}


def parse_graph_date(value: dict, timezone: str) -> datetime:
    """Midnight of the date in a Graph all-day bound, in *timezone*, as UTC."""
    day = date.fromisoformat(value["dateTime"][:10])
    return datetime.combine(day, time(), tzinfo=_zone(timezone)).astimezone(UTC)


def to_remote_event(event: Event, timezone: str) -> dict:
    """Build the Graph request body for a local event."""
    render = format_graph_date if event.all_day else format_graph_datetime
    body = {
        "subject": event.title,
        "body": {"contentType": "Text", "content": event.description or ""},
        "start": render(event.start_time, timezone),
        "end": render(event.end_time, timezone),
        "isAllDay": event.all_day,
    }
    if event.location:
        body["location"] = {"displayName": event.location}
    return body


def from_remote_event(remote: dict, owner_user_id: str, timezone: str = "UTC") -> dict:
    """Field values for a local Event imported from a Graph event.

    All-day events keep their dates: they start at midnight in *timezone*.
    """
    all_day = bool(remote.get("isAllDay", False))
    if all_day:
        start, end = parse_graph_date(remote["start"], timezone), parse_graph_date(remote["end"], timezone)
    else:
        start, end = parse_graph_datetime(remote["start"]), parse_graph_datetime(remote["end"])
    location = (remote.get("location") or {}).get("displayName") or None
    content = (remote.get("body") or {}).get("content") or None
    return {
        "title": remote.get("subject") or "Untitled",
        "description": content,
        "start_time": start,
        "end_time": end,
        "location": location,
        "all_day": all_day,
        "owner_user_id": owner_user_id,
    }
