"""Studio app registrations and user membership."""
from sqlmodel import Session

from app.core.security import Encryptor
from app.models import StudioUser, TenantAppConfig


class TenantConfigStore:
    """Read access used by the sync engine, plus the writes used at setup time."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, studio_id: str) -> TenantAppConfig | None:
        return self.session.get(TenantAppConfig, studio_id)

    def studio_for_user(self, user_id: str) -> str | None:
        membership = self.session.get(StudioUser, user_id)
        return membership.studio_id if membership else None

    def get_for_user(self, user_id: str) -> TenantAppConfig | None:
        """App registration of the studio the user belongs to."""
        studio_id = self.studio_for_user(user_id)
        if studio_id is None:
            return None
        return self.get(studio_id)

    def save(
        self,
        encryptor: Encryptor,
        studio_id: str,
        client_id: str,
        client_secret: str | None = None,
        tenant_id: str = "common",
        enabled: bool = True,
    ) -> TenantAppConfig:
        """Create or update a studio's registration; the secret is stored encrypted.

        Passing no secret keeps the stored one.
        """
        config = self.get(studio_id)
        if config is None:
            if not client_secret:
                raise ValueError("A client secret is required for a new registration")
            config = TenantAppConfig(studio_id=studio_id, client_id=client_id, client_secret_encrypted="")
        config.client_id = client_id
        config.tenant_id = tenant_id or "common"
        config.enabled = enabled
        if client_secret:
            config.client_secret_encrypted = encryptor.encrypt(client_secret)
        self.session.add(config)
        self.session.commit()
        self.session.refresh(config)
        return config

    def add_member(self, user_id: str, studio_id: str, email: str | None = None) -> StudioUser:
        membership = self.session.get(StudioUser, user_id) or StudioUser(user_id=user_id, studio_id=studio_id)
        membership.studio_id = studio_id
        membership.email = email or membership.email
        self.session.add(membership)
        self.session.commit()
        self.session.refresh(membership)
        return membership
