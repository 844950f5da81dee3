"""Pending interactive authorization state.

A row is written when a user starts connecting their Microsoft 365 account
and consumed by the callback. It carries the PKCE code verifier so the code
exchange can prove it was started by this server.
"""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class OAuthState(SQLModel, table=True):
    """One-time state for an authorization round trip.

    Attributes:
        state: Random opaque value echoed back by the provider.
        user_id: User who started the flow.
        code_verifier: PKCE verifier matching the challenge sent.
        created_at: When the flow started; stale rows are rejected.
    """
    __tablename__ = "oauth_state"

    state: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    code_verifier: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
