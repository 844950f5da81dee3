"""Event model for the back office agenda.

This module defines the Event model which represents an appointment in a
user's agenda. Events are created by the agenda screens or imported from
the user's Outlook calendar; the link to the Outlook copy lives in
EventMapping, never on the event itself.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class Event(SQLModel, table=True):
    """An agenda event owned by one user.

    Attributes:
        id: Unique identifier (UUID).
        title: Short title, becomes the Outlook subject.
        description: Free text, becomes the Outlook body.
        start_time: When the event starts (UTC).
        end_time: When the event ends (UTC).
        location: Optional place, becomes the Outlook location.
        all_day: Whether the event spans whole days.
        owner_user_id: User whose agenda holds the event.
        created_at: When the row was created.
        updated_at: Last local modification.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str
    description: str | None = None
    start_time: datetime = Field(index=True)
    end_time: datetime
    location: str | None = None
    all_day: bool = Field(default=False)
    owner_user_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
