"""Local agenda events as seen by the sync engine."""
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from app.models import Event


class LocalEventStore:
    """Read access plus create-on-import for the agenda's events.

    ``create`` only flushes; the caller decides when the unit of work is
    committed so an import and its mapping land together.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, event_id: UUID) -> Event | None:
        return self.session.get(Event, event_id)

    def create(self, **fields) -> Event:
        event = Event(**fields)
        self.session.add(event)
        self.session.flush()
        return event

    def list_by_owner_and_range(
        self, owner_user_id: str, start: datetime, end: datetime | None = None
    ) -> list[Event]:
        """Events of the owner starting at or after *start* (and before *end*)."""
        statement = (
            select(Event)
            .where(Event.owner_user_id == owner_user_id)
            .where(Event.start_time >= start)
        )
        if end is not None:
            statement = statement.where(Event.start_time < end)
        return list(self.session.exec(statement.order_by(Event.start_time)).all())
