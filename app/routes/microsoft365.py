"""Microsoft 365 connection routes."""
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlmodel import Session

from app.calendar.errors import AuthError, TenantConfigInvalid
from app.calendar.oauth import (
    complete_authorization,
    connection_status,
    create_authorization_url,
    disconnect,
)
from app.calendar.tokens import TokenManager
from app.core.config import Settings
from app.core.database import get_session
from app.core.dependencies import get_current_user_id, get_settings, get_token_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/microsoft365", tags=["microsoft365"])

SETTINGS_PAGE = "/microsoft365"


@router.post("/connect")
async def connect(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    config: Settings = Depends(get_settings),
):
    """
    Start connecting the caller's Microsoft 365 account.

    Returns the authorize URL of the studio's app registration; the browser
    is sent there and comes back through /microsoft365/callback.
    """
    return {"url": create_authorization_url(session, config, user_id)}


@router.get("/callback")
async def callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    session: Session = Depends(get_session),
    tokens: TokenManager = Depends(get_token_manager),
    config: Settings = Depends(get_settings),
):
    """
    Finish the authorization round trip started by /connect.

    Always redirects back to the settings page, with either
    ``m365=connected`` or an error message in the query string.
    """
    if error:
        return _redirect_error(error_description or error)
    if not code or not state:
        return _redirect_error("Missing OAuth parameters")

    try:
        user_id = await complete_authorization(session, tokens, config, state, code)
    except (AuthError, TenantConfigInvalid) as e:
        logger.warning(f"Microsoft 365 callback failed: {e}")
        return _redirect_error(str(e))

    logger.info(f"Microsoft 365 connected for user {user_id}")
    return RedirectResponse(f"{SETTINGS_PAGE}?m365=connected", status_code=303)


def _redirect_error(message: str) -> RedirectResponse:
    return RedirectResponse(f"{SETTINGS_PAGE}?error=true&message={quote(message)}", status_code=303)


@router.get("/status")
async def status(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
):
    """Whether the caller has a stored credential and how close it is to expiry."""
    return connection_status(tokens, user_id)


@router.post("/disconnect")
async def disconnect_account(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Forget the caller's Microsoft 365 credential."""
    removed = disconnect(session, user_id)
    return {"success": True, "removed": removed}
