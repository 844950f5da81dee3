"""Correspondence between local events and Outlook events.

One EventMapping row exists per synchronized event. Both identifiers are
UNIQUE, so neither side of a pair can ever be linked twice; this is what
keeps pushes and imports from producing duplicates.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class EventMapping(SQLModel, table=True):
    """Link between a local Event and its Outlook counterpart.

    Attributes:
        id: Unique identifier (UUID).
        local_event_id: Id of the local Event (unique).
        remote_event_id: Outlook event id (unique).
        user_id: User whose calendar holds the remote event.
        last_synced_at: Last successful push or import of the pair.
    """
    __tablename__ = "event_mapping"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    local_event_id: UUID = Field(index=True, unique=True)
    remote_event_id: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)
    last_synced_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
