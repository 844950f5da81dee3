"""Credential model for delegated Microsoft 365 access.

This module defines the Credential model which stores the encrypted OAuth2
token pair a user granted through the interactive authorization flow. The
row is the single source of truth for that user's access: it is rewritten
on every refresh and deleted on disconnect or when the provider rejects a
refresh.
"""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Credential(SQLModel, table=True):
    """Encrypted access/refresh token pair for one user.

    ``user_id`` is the primary key, so a user can never hold more than one
    live credential. Both tokens are stored encrypted; a row whose tokens
    can no longer be decrypted is purged on first use.

    Attributes:
        user_id: Owner of the credential.
        access_token_encrypted: Encrypted short-lived bearer token.
        refresh_token_encrypted: Encrypted long-lived refresh token.
        expires_at: Absolute UTC time the access token stops working.
        scopes: Space-separated scopes granted by the provider.
        updated_at: Last time the row was written.
    """
    user_id: str = Field(primary_key=True)
    access_token_encrypted: str
    refresh_token_encrypted: str
    expires_at: datetime
    scopes: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
