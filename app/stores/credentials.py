"""Durable per-user storage of encrypted Microsoft 365 credentials."""
import logging
from datetime import UTC, datetime

from sqlmodel import Session, select

from app.models import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """Row-keyed access to the ``credential`` table.

    No caching: every read goes to the database, so a purge performed by one
    request is seen by the next read anywhere else. Writes are committed
    immediately because they must survive whatever the caller does next.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Credential | None:
        return self.session.get(Credential, user_id, populate_existing=True)

    def put(self, credential: Credential) -> Credential:
        """Insert or overwrite the single credential of ``credential.user_id``."""
        existing = self.session.get(Credential, credential.user_id)
        if existing is None:
            existing = credential
        else:
            existing.access_token_encrypted = credential.access_token_encrypted
            existing.refresh_token_encrypted = credential.refresh_token_encrypted
            existing.expires_at = credential.expires_at
            existing.scopes = credential.scopes
        existing.updated_at = datetime.now(UTC)
        self.session.add(existing)
        self.session.commit()
        self.session.refresh(existing)
        return existing

    def purge(self, user_id: str) -> bool:
        """Delete the user's credential. Returns True if one existed."""
        credential = self.session.get(Credential, user_id)
        if credential is None:
            return False
        self.session.delete(credential)
        self.session.commit()
        logger.info(f"Purged Microsoft 365 credential for user {user_id}")
        return True

    def list_user_ids(self) -> list[str]:
        return list(self.session.exec(select(Credential.user_id)).all())
