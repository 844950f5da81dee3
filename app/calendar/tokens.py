"""Validation and refresh of delegated Microsoft 365 access tokens.

``TokenManager.get_valid_access_token`` is the only way the rest of the
application obtains a bearer token. A stored credential moves through::

    Unconnected -> Valid -> NearExpiry -> Refreshing -> Valid
                                                     -> Purged

Anything we cannot trust (undecryptable ciphertext, a token that is not a
three-part JWT, a refresh grant the provider rejects) is purged on the spot
and reported as an AuthError; the user has to reconnect. A token endpoint
that cannot be reached raises a transient RemoteApiError and keeps the
credential. Nothing here retries.

Refreshes for the same user are serialized through ``RefreshLockRegistry``:
the second caller waits for the first, re-reads the credential and reuses
the freshly stored token instead of rotating the refresh token again.
"""
import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum

import httpx

from app.calendar.errors import (
    AuthorizationFailed,
    CredentialMissing,
    RefreshFailed,
    RemoteApiError,
    TenantConfigInvalid,
)
from app.calendar.translate import as_utc
from app.core.config import Settings
from app.core.database import release_snapshot
from app.core.security import EncryptionError, Encryptor
from app.models import Credential, TenantAppConfig
from app.stores.credentials import CredentialStore
from app.stores.tenants import TenantConfigStore

logger = logging.getLogger(__name__)


class CredentialState(str, Enum):
    UNCONNECTED = "unconnected"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"


class RefreshLockRegistry:
    """One asyncio.Lock per user id, shared by every TokenManager of the app."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock


def is_well_formed_token(token: str | None) -> bool:
    """True for a JWT-shaped token: three non-empty dot-separated segments."""
    if not token:
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


def token_endpoint(settings: Settings, config: TenantAppConfig) -> str:
    return f"{settings.authority_url.rstrip('/')}/{config.directory}/oauth2/v2.0/token"


class TokenManager:
    def __init__(
        self,
        credentials: CredentialStore,
        tenants: TenantConfigStore,
        encryptor: Encryptor,
        http_client: httpx.AsyncClient,
        settings: Settings,
        locks: RefreshLockRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.credentials = credentials
        self.tenants = tenants
        self.encryptor = encryptor
        self.http_client = http_client
        self.settings = settings
        self.locks = locks or RefreshLockRegistry()
        self.clock = clock or (lambda: datetime.now(UTC))

    @property
    def margin(self) -> timedelta:
        return timedelta(seconds=self.settings.token_refresh_margin_seconds)

    def describe_state(self, user_id: str) -> CredentialState:
        """Classify the stored credential without decrypting or refreshing it."""
        credential = self.credentials.get(user_id)
        if credential is None:
            return CredentialState.UNCONNECTED
        if as_utc(credential.expires_at) - self.clock() > self.margin:
            return CredentialState.VALID
        return CredentialState.NEAR_EXPIRY

    async def get_valid_access_token(self, user_id: str) -> str:
        """Return a bearer token for *user_id*, refreshing it when near expiry.

        The session's read transaction is closed before returning and before
        any await, so callers can write after their own network calls.

        Raises:
            CredentialMissing: no credential, or it was unreadable and purged.
            RefreshFailed: the provider rejected the refresh; credential purged.
            TenantConfigInvalid: the studio's app registration cannot be used.
            RemoteApiError: the token endpoint could not be reached (status 0).
        """
        credential = self._load(user_id)
        access_token = self._decrypt_access_token(credential)
        fresh = self._is_fresh(credential)
        release_snapshot(self.credentials.session)
        if fresh:
            return access_token

        async with self.locks.for_user(user_id):
            # Another task may have refreshed while we waited for the lock
            credential = self._load(user_id)
            access_token = self._decrypt_access_token(credential)
            if self._is_fresh(credential):
                release_snapshot(self.credentials.session)
                logger.debug(f"Token for user {user_id} was refreshed concurrently")
                return access_token
            return await self._refresh(credential)

    def _load(self, user_id: str) -> Credential:
        credential = self.credentials.get(user_id)
        if credential is None:
            raise CredentialMissing(user_id)
        return credential

    def _is_fresh(self, credential: Credential) -> bool:
        return as_utc(credential.expires_at) - self.clock() > self.margin

    def _decrypt_or_purge(self, credential: Credential, ciphertext: str, label: str) -> str:
        try:
            return self.encryptor.decrypt(ciphertext)
        except EncryptionError:
            logger.warning(f"Could not decrypt {label} for user {credential.user_id}, purging credential")
            self.credentials.purge(credential.user_id)
            raise CredentialMissing(credential.user_id, f"{label} could not be decrypted")

    def _decrypt_access_token(self, credential: Credential) -> str:
        token = self._decrypt_or_purge(credential, credential.access_token_encrypted, "access token")
        if not is_well_formed_token(token):
            logger.warning(f"Malformed access token for user {credential.user_id}, purging credential")
            self.credentials.purge(credential.user_id)
            raise CredentialMissing(credential.user_id, "access token is malformed")
        return token

    def _tenant_config(self, user_id: str) -> tuple[TenantAppConfig, str]:
        config = self.tenants.get_for_user(user_id)
        if config is None:
            raise TenantConfigInvalid(f"No Microsoft 365 app registration for user {user_id}'s studio")
        if not config.enabled:
            raise TenantConfigInvalid(f"Microsoft 365 is disabled for studio {config.studio_id}")
        if not config.client_id or not config.client_secret_encrypted:
            raise TenantConfigInvalid(f"Microsoft 365 app registration of studio {config.studio_id} is incomplete")
        try:
            secret = self.encryptor.decrypt(config.client_secret_encrypted)
        except EncryptionError:
            raise TenantConfigInvalid(f"Client secret of studio {config.studio_id} cannot be decrypted")
        return config, secret

    async def _post_token(self, url: str, form: dict) -> httpx.Response:
        return await self.http_client.post(
            url,
            data=form,
            headers={"Accept": "application/json"},
        )

    async def _refresh(self, credential: Credential) -> str:
        user_id = credential.user_id
        refresh_token = self._decrypt_or_purge(credential, credential.refresh_token_encrypted, "refresh token")
        previous_refresh = credential.refresh_token_encrypted
        previous_scopes = credential.scopes
        config, client_secret = self._tenant_config(user_id)
        url = token_endpoint(self.settings, config)
        form = {
            "client_id": config.client_id,
            "client_secret": client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": self.settings.oauth_scopes,
        }
        release_snapshot(self.credentials.session)

        logger.info(f"Refreshing Microsoft 365 token for user {user_id}")
        requested_at = self.clock()
        try:
            response = await self._post_token(url, form)
        except httpx.HTTPError as e:
            # Transient: the stored credential is kept
            logger.error(f"Token refresh request failed for user {user_id}: {e}")
            raise RemoteApiError(0, str(e), "POST", url) from e

        if not response.is_success:
            logger.error(f"Token refresh rejected for user {user_id}: HTTP {response.status_code}")
            self.credentials.purge(user_id)
            raise RefreshFailed(user_id, response.status_code, response.text)

        try:
            payload = response.json()
            new_access = payload["access_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unusable token refresh response for user {user_id}: {e}")
            self.credentials.purge(user_id)
            raise RefreshFailed(user_id, response.status_code, response.text) from e

        new_refresh = payload.get("refresh_token")
        self.credentials.put(
            Credential(
                user_id=user_id,
                access_token_encrypted=self.encryptor.encrypt(new_access),
                refresh_token_encrypted=self.encryptor.encrypt(new_refresh) if new_refresh else previous_refresh,
                expires_at=requested_at + timedelta(seconds=expires_in),
                scopes=payload.get("scope") or previous_scopes,
            )
        )
        release_snapshot(self.credentials.session)

        logger.info(f"Refreshed Microsoft 365 token for user {user_id}, valid for {expires_in}s")
        return new_access

    async def exchange_code(
        self,
        user_id: str,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> Credential:
        """Redeem an authorization code and store the resulting credential."""
        config, client_secret = self._tenant_config(user_id)
        url = token_endpoint(self.settings, config)
        form = {
            "client_id": config.client_id,
            "client_secret": client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": redirect_uri,
            "scope": self.settings.oauth_scopes,
        }
        release_snapshot(self.credentials.session)

        requested_at = self.clock()
        try:
            response = await self._post_token(url, form)
        except httpx.HTTPError as e:
            raise AuthorizationFailed(user_id, 0, str(e)) from e

        if not response.is_success:
            logger.error(f"Authorization code exchange rejected for user {user_id}: HTTP {response.status_code}")
            raise AuthorizationFailed(user_id, response.status_code, response.text)

        try:
            payload = response.json()
            access_token = payload["access_token"]
            refresh_token = payload["refresh_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise AuthorizationFailed(user_id, response.status_code, response.text) from e

        credential = self.credentials.put(
            Credential(
                user_id=user_id,
                access_token_encrypted=self.encryptor.encrypt(access_token),
                refresh_token_encrypted=self.encryptor.encrypt(refresh_token),
                expires_at=requested_at + timedelta(seconds=expires_in),
                scopes=payload.get("scope", ""),
            )
        )
        logger.info(f"Connected Microsoft 365 account for user {user_id}")
        return credential
