"""Microsoft Graph API client authenticated with the user's delegated token."""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from app.calendar.errors import RemoteApiError
from app.calendar.tokens import TokenManager
from app.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GraphClient:
    """Issue Graph requests on behalf of a user.

    ``call`` never retries: it raises whatever the token manager raises
    (without touching the network) and turns every non-2xx response into a
    RemoteApiError carrying the raw body. Callers that know an operation is
    idempotent wrap it in :func:`retry_idempotent`.
    """

    def __init__(self, tokens: TokenManager, http_client: httpx.AsyncClient, settings: Settings):
        self.tokens = tokens
        self.http_client = http_client
        self.settings = settings

    def _url(self, path: str) -> str:
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self.settings.graph_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def call(
        self,
        user_id: str,
        method: str,
        path: str,
        body: dict | None = None,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (None when empty)."""
        token = await self.tokens.get_valid_access_token(user_id)
        url = self._url(path)
        request_headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }
        if headers:
            request_headers.update(headers)

        try:
            response = await self.http_client.request(
                method,
                url,
                json=body,
                params=params,
                headers=request_headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Graph request {method} {url} failed: {e}")
            raise RemoteApiError(0, str(e), method, url) from e

        if not response.is_success:
            logger.error(f"Graph API error ({method} {url}): {response.status_code} {response.text[:500]}")
            raise RemoteApiError(
                response.status_code,
                response.text,
                method,
                url,
                retry_after=_retry_after(response),
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def paginate(self, user_id: str, path: str, params: dict | None = None) -> list[dict]:
        """Collect ``value`` items across ``@odata.nextLink`` pages."""
        items: list[dict] = []
        next_path: str | None = path
        next_params = params
        while next_path:
            page = await retry_idempotent(
                lambda: self.call(user_id, "GET", next_path, params=next_params),
                attempts=self.settings.retry_attempts,
                initial_delay=self.settings.retry_initial_delay,
            )
            page = page or {}
            items.extend(page.get("value", []))
            # nextLink already carries the query string
            next_path = page.get("@odata.nextLink")
            next_params = None
        return items


async def retry_idempotent(
    func: Callable[[], Awaitable[T]],
    attempts: int = 3,
    initial_delay: float = 1.0,
) -> T:
    """Run *func*, retrying rate limits, 5xx and transport errors with backoff.

    Only for requests that are safe to repeat (GET, PATCH, DELETE).
    """
    delay = initial_delay
    for attempt in range(1, attempts):
        try:
            return await func()
        except RemoteApiError as e:
            if not e.is_transient:
                raise
            wait = e.retry_after if e.retry_after is not None else delay
            logger.warning(f"Graph returned {e.status}, retrying in {wait}s (attempt {attempt}/{attempts})")
            await asyncio.sleep(wait)
            delay *= 2
    return await func()
