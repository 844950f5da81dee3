"""Tests for the interactive Microsoft 365 connection flow."""

import base64
import hashlib
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlmodel import select

from app.calendar.errors import InvalidOAuthState, TenantConfigInvalid
from app.calendar.oauth import (
    complete_authorization,
    connection_status,
    create_authorization_url,
    disconnect,
    pkce_pair,
)
from app.models import OAuthState
from app.stores.tenants import TenantConfigStore
from tests.conftest import STUDIO_ID, USER_ID


def _query(url: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


class TestPkce:
    """Tests for the PKCE verifier and challenge."""

    def test_challenge_is_s256_of_verifier(self):
        verifier, challenge = pkce_pair()
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")

        assert challenge == expected
        assert 43 <= len(verifier) <= 128

    def test_pairs_are_random(self):
        assert pkce_pair()[0] != pkce_pair()[0]


class TestCreateAuthorizationUrl:
    """Tests for starting the connect flow."""

    def test_url_targets_studio_registration(self, session, studio, test_settings):
        url = create_authorization_url(session, test_settings, USER_ID)

        parsed = urlparse(url)
        params = _query(url)
        assert parsed.netloc == "login.microsoftonline.com"
        assert parsed.path == "/contoso-directory/oauth2/v2.0/authorize"
        assert params["client_id"] == "client-123"
        assert params["response_type"] == "code"
        assert params["redirect_uri"] == "http://localhost:8000/microsoft365/callback"
        assert "offline_access" in params["scope"]
        assert params["code_challenge_method"] == "S256"

        pending = session.get(OAuthState, params["state"])
        assert pending.user_id == USER_ID
        assert params["code_challenge"] == pkce_challenge(pending.code_verifier)

    def test_without_registration(self, session, test_settings):
        with pytest.raises(TenantConfigInvalid):
            create_authorization_url(session, test_settings, USER_ID)

    def test_disabled_registration(self, session, studio, encryptor, test_settings):
        TenantConfigStore(session).save(encryptor, STUDIO_ID, "client-123", enabled=False)

        with pytest.raises(TenantConfigInvalid):
            create_authorization_url(session, test_settings, USER_ID)


class TestCompleteAuthorization:
    """Tests for the callback half of the flow."""

    async def test_exchanges_code_once(self, session, studio, tokens, test_settings, fake_graph):
        """Test the state is single-use and the verifier is sent with the code."""
        state = _query(create_authorization_url(session, test_settings, USER_ID))["state"]
        verifier = session.get(OAuthState, state).code_verifier

        user_id = await complete_authorization(session, tokens, test_settings, state, "code-1")

        assert user_id == USER_ID
        assert fake_graph.token_calls[0]["code_verifier"] == verifier
        assert tokens.credentials.get(USER_ID) is not None
        with pytest.raises(InvalidOAuthState):
            await complete_authorization(session, tokens, test_settings, state, "code-1")
        assert len(fake_graph.token_calls) == 1

    async def test_unknown_state(self, session, studio, tokens, test_settings, fake_graph):
        with pytest.raises(InvalidOAuthState):
            await complete_authorization(session, tokens, test_settings, "forged", "code-1")
        assert fake_graph.requests == []

    async def test_expired_state(self, session, studio, tokens, test_settings, fake_graph):
        state = _query(create_authorization_url(session, test_settings, USER_ID))["state"]
        pending = session.get(OAuthState, state)
        pending.created_at = datetime.now(UTC) - timedelta(minutes=30)
        session.add(pending)
        session.commit()

        with pytest.raises(InvalidOAuthState):
            await complete_authorization(session, tokens, test_settings, state, "code-1")

        assert session.get(OAuthState, state) is None
        assert fake_graph.requests == []


class TestDisconnect:
    """Tests for forgetting a connection."""

    def test_removes_credential_and_pending_states(self, session, studio, tokens, test_settings, make_credential):
        make_credential()
        create_authorization_url(session, test_settings, USER_ID)

        assert disconnect(session, USER_ID) is True

        assert tokens.credentials.get(USER_ID) is None
        assert session.exec(select(OAuthState)).all() == []
        assert connection_status(tokens, USER_ID) == {
            "connected": False,
            "state": "unconnected",
            "expires_at": None,
        }

    def test_not_connected(self, session):
        assert disconnect(session, USER_ID) is False


def pkce_challenge(verifier: str) -> str:
    return base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
