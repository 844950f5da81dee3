"""Event Mapping Store: the duplicate-prevention table of the sync engine.

Every write goes through :meth:`EventMappingStore.upsert`, which performs the
check and the write inside one SAVEPOINT and relies on the UNIQUE
constraints of ``event_mapping`` to catch a concurrent writer. Callers never
read-then-insert on their own.
"""
import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.calendar.errors import MappingConflict
from app.models import EventMapping

logger = logging.getLogger(__name__)


class EventMappingStore:
    def __init__(self, session: Session):
        self.session = session

    def find_by_local(self, local_event_id: UUID) -> EventMapping | None:
        statement = select(EventMapping).where(EventMapping.local_event_id == local_event_id)
        return self.session.exec(statement).first()

    def find_by_remote(self, remote_event_id: str) -> EventMapping | None:
        statement = select(EventMapping).where(EventMapping.remote_event_id == remote_event_id)
        return self.session.exec(statement).first()

    def list_for_user(self, user_id: str) -> list[EventMapping]:
        statement = select(EventMapping).where(EventMapping.user_id == user_id)
        return list(self.session.exec(statement).all())

    def upsert(
        self,
        local_event_id: UUID,
        remote_event_id: str,
        user_id: str,
        synced_at: datetime | None = None,
    ) -> EventMapping:
        """Record that the two events are the same, refreshing ``last_synced_at``.

        Raises MappingConflict if either id is already linked to a different
        partner. The write is flushed, not committed.
        """
        synced_at = synced_at or datetime.now(UTC)
        try:
            with self.session.begin_nested():
                return self._check_and_write(local_event_id, remote_event_id, user_id, synced_at)
        except IntegrityError:
            # Another writer inserted one side between our read and our write
            logger.warning(
                f"Concurrent mapping write for local {local_event_id} / remote {remote_event_id}, re-checking"
            )
        try:
            with self.session.begin_nested():
                return self._check_and_write(local_event_id, remote_event_id, user_id, synced_at)
        except IntegrityError as exc:
            raise MappingConflict(
                local_event_id,
                remote_event_id,
                f"Mapping for local {local_event_id} / remote {remote_event_id} violates uniqueness",
            ) from exc

    def _check_and_write(
        self,
        local_event_id: UUID,
        remote_event_id: str,
        user_id: str,
        synced_at: datetime,
    ) -> EventMapping:
        by_local = self.find_by_local(local_event_id)
        if by_local is not None and by_local.remote_event_id != remote_event_id:
            raise MappingConflict(
                local_event_id,
                remote_event_id,
                f"Local event {local_event_id} is already linked to remote {by_local.remote_event_id}",
            )
        by_remote = self.find_by_remote(remote_event_id)
        if by_remote is not None and by_remote.local_event_id != local_event_id:
            raise MappingConflict(
                local_event_id,
                remote_event_id,
                f"Remote event {remote_event_id} is already linked to local {by_remote.local_event_id}",
            )

        mapping = by_local or EventMapping(
            local_event_id=local_event_id,
            remote_event_id=remote_event_id,
            user_id=user_id,
        )
        mapping.last_synced_at = synced_at
        self.session.add(mapping)
        self.session.flush()
        return mapping

    def delete_by_local(self, local_event_id: UUID) -> bool:
        """Remove the mapping of a local event. Returns True if one existed."""
        mapping = self.find_by_local(local_event_id)
        if mapping is None:
            return False
        self.session.delete(mapping)
        self.session.flush()
        return True
