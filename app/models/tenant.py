"""Studio-level Microsoft 365 app registration.

Each studio (tenant of the back office) registers one application in its
Entra ID directory. Every user of the studio authorizes against that
registration, and token refreshes are client-credentialed with its secret.
"""

from sqlmodel import Field, SQLModel


class TenantAppConfig(SQLModel, table=True):
    """App registration used for a studio's delegated OAuth flows.

    Attributes:
        studio_id: The studio owning the registration.
        client_id: Application (client) id.
        client_secret_encrypted: Encrypted client secret.
        tenant_id: Directory id, or "common" for multi-tenant apps.
        enabled: Administrative switch; a disabled config blocks connects
            and refreshes.
    """
    __tablename__ = "tenant_app_config"

    studio_id: str = Field(primary_key=True)
    client_id: str
    client_secret_encrypted: str
    tenant_id: str = Field(default="common")
    enabled: bool = Field(default=True)

    @property
    def directory(self) -> str:
        return self.tenant_id.strip() or "common"


class StudioUser(SQLModel, table=True):
    """Membership of a user in a studio.

    Only the columns needed to resolve a user's app registration are kept
    here; the user registry itself is managed elsewhere.
    """
    __tablename__ = "studio_user"

    user_id: str = Field(primary_key=True)
    studio_id: str = Field(index=True)
    email: str | None = None
