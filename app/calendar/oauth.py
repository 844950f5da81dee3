"""Interactive connection of a user's Microsoft 365 account.

The flow is the authorization-code grant with PKCE:

1. ``create_authorization_url`` stores a one-time state plus code verifier
   and returns the authorize URL of the studio's app registration.
2. The provider redirects back to ``/microsoft365/callback``;
   ``complete_authorization`` consumes the state and redeems the code through
   the token manager, which stores the encrypted credential.

``disconnect`` simply purges the credential; mappings are kept so a later
reconnect to the same mailbox does not duplicate already-synced events.
"""
import base64
import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

from sqlmodel import Session, select

from app.calendar.errors import InvalidOAuthState, TenantConfigInvalid
from app.calendar.tokens import TokenManager
from app.calendar.translate import as_utc
from app.core.config import Settings
from app.models import OAuthState
from app.stores.credentials import CredentialStore
from app.stores.tenants import TenantConfigStore

logger = logging.getLogger(__name__)


def _base64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def pkce_pair() -> tuple[str, str]:
    """Return a (verifier, S256 challenge) pair."""
    verifier = _base64url(secrets.token_bytes(32))
    challenge = _base64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


def create_authorization_url(session: Session, settings: Settings, user_id: str) -> str:
    """Start the connect flow for *user_id* and return the URL to redirect to."""
    config = TenantConfigStore(session).get_for_user(user_id)
    if config is None:
        raise TenantConfigInvalid("Microsoft 365 is not configured for this studio")
    if not config.enabled:
        raise TenantConfigInvalid("Microsoft 365 is disabled for this studio")

    verifier, challenge = pkce_pair()
    state = _base64url(secrets.token_bytes(24))
    session.add(OAuthState(state=state, user_id=user_id, code_verifier=verifier))
    session.commit()

    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": settings.redirect_uri,
        "response_mode": "query",
        "scope": settings.oauth_scopes,
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }
    logger.info(f"Starting Microsoft 365 authorization for user {user_id}")
    return f"{settings.authority_url.rstrip('/')}/{config.directory}/oauth2/v2.0/authorize?{urlencode(params)}"


def _consume_state(session: Session, settings: Settings, state: str) -> tuple[str, str]:
    """Delete the pending state and return its (user_id, code_verifier)."""
    pending = session.get(OAuthState, state)
    if pending is None:
        raise InvalidOAuthState("Unknown or already used OAuth state")
    user_id, verifier, created_at = pending.user_id, pending.code_verifier, pending.created_at
    session.delete(pending)
    session.commit()

    ttl = timedelta(minutes=settings.oauth_state_ttl_minutes)
    if datetime.now(UTC) - as_utc(created_at) > ttl:
        raise InvalidOAuthState("OAuth state expired")
    return user_id, verifier


async def complete_authorization(
    session: Session,
    tokens: TokenManager,
    settings: Settings,
    state: str,
    code: str,
) -> str:
    """Redeem the callback's code. Returns the connected user's id."""
    user_id, verifier = _consume_state(session, settings, state)
    await tokens.exchange_code(user_id, code, verifier, settings.redirect_uri)
    return user_id


def disconnect(session: Session, user_id: str) -> bool:
    """Forget the user's credential. Returns True if one existed."""
    for pending in session.exec(select(OAuthState).where(OAuthState.user_id == user_id)).all():
        session.delete(pending)
    session.commit()
    return CredentialStore(session).purge(user_id)


def connection_status(tokens: TokenManager, user_id: str) -> dict:
    credential = tokens.credentials.get(user_id)
    return {
        "connected": credential is not None,
        "state": tokens.describe_state(user_id).value,
        "expires_at": as_utc(credential.expires_at).isoformat() if credential else None,
    }
