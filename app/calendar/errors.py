"""Failures raised by the Microsoft 365 credential and calendar sync layer.

``AuthError`` and its subclasses mean the user has no usable delegated
access and must reconnect (or an administrator must fix the studio's app
registration). ``RemoteApiError`` carries the provider's raw response for
diagnostics. Expected outcomes such as "event was never synchronized" are
returned as values by the sync layer, not raised.
"""


class SyncError(Exception):
    """Base class for errors raised by the sync layer."""


class AuthError(SyncError):
    """No usable credential for the user."""


class CredentialMissing(AuthError):
    """The user has no credential, or it was unreadable and has been purged."""

    def __init__(self, user_id: str, reason: str = "not connected"):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"No Microsoft 365 credential for user {user_id}: {reason}")


class RefreshFailed(AuthError):
    """The provider rejected the refresh grant; the credential was purged."""

    def __init__(self, user_id: str, status: int, body: str = ""):
        self.user_id = user_id
        self.status = status
        self.body = body
        super().__init__(f"Token refresh failed for user {user_id} (HTTP {status})")


class AuthorizationFailed(AuthError):
    """The authorization code could not be exchanged for tokens."""

    def __init__(self, user_id: str, status: int, body: str = ""):
        self.user_id = user_id
        self.status = status
        self.body = body
        super().__init__(f"Authorization code exchange failed for user {user_id} (HTTP {status})")


class InvalidOAuthState(AuthError):
    """The callback carried an unknown, reused or expired state value."""


class TenantConfigInvalid(SyncError):
    """The studio's app registration is missing, disabled or incomplete."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class RemoteApiError(SyncError):
    """Non-success response (or transport failure, status 0) from Graph."""

    def __init__(
        self,
        status: int,
        body: str,
        method: str = "",
        url: str = "",
        retry_after: float | None = None,
    ):
        self.status = status
        self.body = body
        self.method = method
        self.url = url
        self.retry_after = retry_after
        super().__init__(f"Graph API error {status} on {method} {url}: {body[:200]}")

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_transient(self) -> bool:
        return self.status == 0 or self.status == 429 or self.status >= 500


class LocalEventNotFound(SyncError):
    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Local event {event_id} not found")


class MappingConflict(SyncError):
    """An event is already linked to a different partner on the other side."""

    def __init__(self, local_event_id, remote_event_id: str, detail: str):
        self.local_event_id = local_event_id
        self.remote_event_id = remote_event_id
        super().__init__(detail)
