"""FastAPI dependencies wiring the sync engine together.

Long-lived objects (the shared HTTP client and the per-user refresh locks)
live on ``app.state`` and are created in the application lifespan; stores,
the token manager and the sync service are built per request around the
request's database session.
"""
import httpx
from fastapi import Depends, Header, HTTPException, Request
from sqlmodel import Session

from app.calendar.client import GraphClient
from app.calendar.sync import CalendarSync
from app.calendar.tokens import RefreshLockRegistry, TokenManager
from app.core.config import Settings, settings
from app.core.database import get_session
from app.core.security import Encryptor, get_encryptor
from app.stores.credentials import CredentialStore
from app.stores.tenants import TenantConfigStore


def build_token_manager(
    session: Session,
    http_client: httpx.AsyncClient,
    locks: RefreshLockRegistry,
    config: Settings = settings,
    encryptor: Encryptor | None = None,
) -> TokenManager:
    return TokenManager(
        credentials=CredentialStore(session),
        tenants=TenantConfigStore(session),
        encryptor=encryptor or get_encryptor(),
        http_client=http_client,
        settings=config,
        locks=locks,
    )


def build_calendar_sync(
    session: Session,
    http_client: httpx.AsyncClient,
    locks: RefreshLockRegistry,
    config: Settings = settings,
) -> CalendarSync:
    tokens = build_token_manager(session, http_client, locks, config)
    return CalendarSync(session, GraphClient(tokens, http_client, config), config)


def get_settings() -> Settings:
    return settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_refresh_locks(request: Request) -> RefreshLockRegistry:
    return request.app.state.refresh_locks


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the caller, set by the back office's session layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_token_manager(
    session: Session = Depends(get_session),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    locks: RefreshLockRegistry = Depends(get_refresh_locks),
    config: Settings = Depends(get_settings),
    encryptor: Encryptor = Depends(get_encryptor),
) -> TokenManager:
    return build_token_manager(session, http_client, locks, config, encryptor)


def get_calendar_sync(
    session: Session = Depends(get_session),
    tokens: TokenManager = Depends(get_token_manager),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    config: Settings = Depends(get_settings),
) -> CalendarSync:
    return CalendarSync(session, GraphClient(tokens, http_client, config), config)
