"""Bidirectional synchronization between the agenda and Outlook calendars.

Four operations, each a sequence of Graph calls and mapping-store writes:

- ``push_one``: create or update the Outlook copy of one local event.
- ``delete_one``: remove the Outlook copy of a local event being deleted.
- ``pull_range``: import Outlook events of a time window that have no
  local counterpart yet.
- ``full_sync``: push every future local event, then pull.

The EventMapping table decides "already synchronized". A mapping is written
only after the remote side confirmed the change, so a failed call never
leaves a half-updated pair behind. Events that are already mapped are owned
by the local side: pushes overwrite the Outlook copy and pulls never touch
them.

No database transaction stays open while Graph is awaited: what a call
needs is read up front, the transaction is released, and rows are re-read
when the answer arrives.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.calendar.client import GraphClient, retry_idempotent
from app.calendar.errors import (
    AuthError,
    LocalEventNotFound,
    MappingConflict,
    RemoteApiError,
    SyncError,
    TenantConfigInvalid,
)
from app.calendar.translate import from_remote_event, to_remote_event
from app.core.config import Settings
from app.core.database import release_snapshot
from app.stores.events import LocalEventStore
from app.stores.mappings import EventMappingStore

logger = logging.getLogger(__name__)

CREATE_EVENT_PATH = "/me/calendar/events"
CALENDAR_VIEW_PATH = "/me/calendarView"


def event_path(remote_event_id: str) -> str:
    return f"/me/events/{remote_event_id}"


def _graph_range_bound(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class PushOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class DeleteOutcome(str, Enum):
    NOT_SYNCED = "not_synced"  # never pushed, nothing to delete remotely
    DELETED = "deleted"
    ALREADY_GONE = "already_gone"  # Outlook answered 404


@dataclass
class PushResult:
    outcome: PushOutcome
    local_event_id: UUID
    remote_event_id: str


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SyncReport:
    created: int = 0
    updated: int = 0
    push_failed: int = 0
    errors: list[str] = field(default_factory=list)
    pulled: ImportResult = field(default_factory=ImportResult)

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "push_failed": self.push_failed,
            "imported": self.pulled.imported,
            "import_skipped": self.pulled.skipped,
            "import_failed": self.pulled.failed,
            "errors": self.errors + self.pulled.errors,
        }


class CalendarSync:
    def __init__(
        self,
        session: Session,
        graph: GraphClient,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session = session
        self.graph = graph
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(UTC))
        self.events = LocalEventStore(session)
        self.mappings = EventMappingStore(session)

    async def _idempotent(self, user_id: str, method: str, path: str, body: dict | None = None):
        return await retry_idempotent(
            lambda: self.graph.call(user_id, method, path, body=body),
            attempts=self.settings.retry_attempts,
            initial_delay=self.settings.retry_initial_delay,
        )

    async def push_one(self, user_id: str, local_event_id: UUID) -> PushResult:
        """Create or update the Outlook copy of a local event."""
        event = self.events.get(local_event_id)
        if event is None or event.owner_user_id != user_id:
            raise LocalEventNotFound(local_event_id)

        event_id, title = event.id, event.title
        payload = to_remote_event(event, self.settings.default_timezone)
        mapping = self.mappings.find_by_local(event_id)
        mapped_remote_id = mapping.remote_event_id if mapping else None
        release_snapshot(self.session)
        stale_remote_id = None

        if mapped_remote_id is not None:
            try:
                await self._idempotent(user_id, "PATCH", event_path(mapped_remote_id), payload)
            except RemoteApiError as e:
                if not e.is_not_found:
                    raise
                # Deleted in Outlook; replace the copy below
                logger.warning(f"Outlook event {mapped_remote_id} of '{title}' no longer exists, re-creating it")
                stale_remote_id = mapped_remote_id
            else:
                self.mappings.upsert(event_id, mapped_remote_id, user_id, self.clock())
                self.session.commit()
                logger.info(f"Updated Outlook event for '{title}'")
                return PushResult(PushOutcome.UPDATED, event_id, mapped_remote_id)

        # Creating is not idempotent: a retried POST could leave two copies
        created = await self.graph.call(user_id, "POST", CREATE_EVENT_PATH, body=payload)
        remote_id = created["id"]
        try:
            with self.session.begin_nested():
                if stale_remote_id is not None:
                    self.mappings.delete_by_local(event_id)
                self.mappings.upsert(event_id, remote_id, user_id, self.clock())
            self.session.commit()
        except MappingConflict:
            logger.error(f"Created Outlook event {remote_id} for '{title}' but could not record its mapping")
            raise

        logger.info(f"Created Outlook event {remote_id} for '{title}'")
        return PushResult(PushOutcome.CREATED, event_id, remote_id)

    async def delete_one(self, user_id: str, local_event_id: UUID) -> DeleteOutcome:
        """Delete the Outlook copy of a local event, if it was ever pushed."""
        mapping = self.mappings.find_by_local(local_event_id)
        if mapping is None:
            return DeleteOutcome.NOT_SYNCED
        if mapping.user_id != user_id:
            raise LocalEventNotFound(local_event_id)

        remote_id = mapping.remote_event_id
        release_snapshot(self.session)
        try:
            await self._idempotent(user_id, "DELETE", event_path(remote_id))
            outcome = DeleteOutcome.DELETED
        except RemoteApiError as e:
            if not e.is_not_found:
                raise
            outcome = DeleteOutcome.ALREADY_GONE

        self.mappings.delete_by_local(local_event_id)
        self.session.commit()
        logger.info(f"Removed Outlook event {remote_id} ({outcome.value})")
        return outcome

    async def pull_range(self, user_id: str, start: datetime, end: datetime) -> ImportResult:
        """Import Outlook events in [start, end) that have no local counterpart."""
        params = {
            "startDateTime": _graph_range_bound(start),
            "endDateTime": _graph_range_bound(end),
            "$top": self.settings.page_size,
            "$orderby": "start/dateTime",
        }
        release_snapshot(self.session)
        remote_events = await self.graph.paginate(user_id, CALENDAR_VIEW_PATH, params)
        logger.info(f"Found {len(remote_events)} Outlook events for user {user_id}")

        result = ImportResult()
        for remote in remote_events:
            remote_id = remote.get("id")
            if not remote_id or remote.get("isCancelled"):
                result.skipped += 1
                continue
            if self.mappings.find_by_remote(remote_id) is not None:
                result.skipped += 1
                continue

            try:
                fields = from_remote_event(remote, user_id, self.settings.default_timezone)
                with self.session.begin_nested():
                    event = self.events.create(**fields)
                    self.mappings.upsert(event.id, remote_id, user_id, self.clock())
                self.session.commit()
            except MappingConflict:
                # A concurrent import linked it first; our copy was rolled back
                logger.info(f"Outlook event {remote_id} was imported concurrently, skipping")
                result.skipped += 1
            except (KeyError, TypeError, ValueError, SQLAlchemyError) as e:
                self.session.rollback()
                logger.error(f"Failed to import Outlook event {remote_id}: {e}")
                result.failed += 1
                result.errors.append(f"{remote_id}: {e}")
            else:
                result.imported += 1
                logger.info(f"Imported Outlook event '{fields['title']}'")

        logger.info(
            f"Import for user {user_id}: {result.imported} imported, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def full_sync(self, user_id: str) -> SyncReport:
        """Push every future local event, then import new Outlook events.

        The phases run one after the other so events created by the push
        already have their mapping when the pull looks at them.
        """
        now = self.clock()
        report = SyncReport()

        event_ids = [event.id for event in self.events.list_by_owner_and_range(user_id, now)]
        for event_id in event_ids:
            try:
                pushed = await self.push_one(user_id, event_id)
            except (AuthError, TenantConfigInvalid):
                raise
            except SyncError as e:
                self.session.rollback()
                logger.error(f"Failed to push event {event_id}: {e}")
                report.push_failed += 1
                report.errors.append(f"{event_id}: {e}")
                continue
            if pushed.outcome is PushOutcome.CREATED:
                report.created += 1
            else:
                report.updated += 1

        horizon = now + timedelta(days=self.settings.pull_horizon_days)
        report.pulled = await self.pull_range(user_id, now, horizon)
        logger.info(f"Full sync for user {user_id}: {report.as_dict()}")
        return report

    # Names used by the agenda screens
    sync_event_to_remote = push_one
    delete_event_from_remote = delete_one
    import_events = pull_range
