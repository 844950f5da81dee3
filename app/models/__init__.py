from app.models.credential import Credential
from app.models.event import Event
from app.models.mapping import EventMapping
from app.models.oauth import OAuthState
from app.models.tenant import StudioUser, TenantAppConfig

__all__ = [
    "Credential",
    "Event",
    "EventMapping",
    "OAuthState",
    "StudioUser",
    "TenantAppConfig",
]
