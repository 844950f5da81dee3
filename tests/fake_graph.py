"""
In-memory fake of the Microsoft identity token endpoint and Graph calendar API.

Used as the handler of an ``httpx.MockTransport``, so the real GraphClient
and TokenManager run end to end without network access. Events live in a
dict keyed by their Graph id.
"""

import asyncio
import itertools
from datetime import datetime
from urllib.parse import parse_qsl

import httpx

from app.calendar.translate import parse_graph_datetime

GRAPH_PREFIX = "/v1.0"


class FakeGraph:
    def __init__(self):
        self.events: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.token_calls: list[dict] = []
        # Queued token endpoint responses; a default success is used when empty
        self.token_responses: list[httpx.Response] = []
        # (method, path fragment) -> queued error responses
        self.failures: dict[tuple[str, str], list[httpx.Response]] = {}
        self.page_size: int | None = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------ #
    # Test helpers                                                         #
    # ------------------------------------------------------------------ #

    def fail(self, method: str, fragment: str, status: int, times: int = 1, body: str = "error") -> None:
        queue = self.failures.setdefault((method, fragment), [])
        queue.extend(httpx.Response(status, text=body) for _ in range(times))

    def add_event(self, subject: str, start: datetime, end: datetime, **extra) -> str:
        """Create an event directly in the fake mailbox, as if made in Outlook."""
        event_id = f"AAMk-{next(self._ids)}"
        self.events[event_id] = {
            "id": event_id,
            "subject": subject,
            "body": {"contentType": "Text", "content": extra.pop("content", "")},
            "start": {"dateTime": start.strftime("%Y-%m-%dT%H:%M:%S.0000000"), "timeZone": "UTC"},
            "end": {"dateTime": end.strftime("%Y-%m-%dT%H:%M:%S.0000000"), "timeZone": "UTC"},
            "location": {"displayName": extra.pop("location", "")},
            "isAllDay": False,
            "isCancelled": False,
            **extra,
        }
        return event_id

    def calls(self, method: str, fragment: str = "") -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and fragment in r.url.path and "/oauth2/" not in r.url.path
        ]

    @property
    def graph_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(GRAPH_PREFIX)]

    # ------------------------------------------------------------------ #
    # Transport handler                                                    #
    # ------------------------------------------------------------------ #

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        # Yield like real I/O so concurrent tasks interleave
        await asyncio.sleep(0)

        if path.endswith("/oauth2/v2.0/token"):
            self.token_calls.append(dict(parse_qsl(request.content.decode())))
            if self.token_responses:
                return self.token_responses.pop(0)
            n = len(self.token_calls)
            return httpx.Response(
                200,
                json={"access_token": f"new.access.{n}", "refresh_token": f"refresh-{n + 1}", "expires_in": 3600},
            )

        for (method, fragment), queue in self.failures.items():
            if request.method == method and fragment in path and queue:
                return queue.pop(0)

        if not path.startswith(GRAPH_PREFIX):
            return httpx.Response(404, json={"error": {"code": "NotFound"}})
        path = path[len(GRAPH_PREFIX):]

        if path == "/me/calendar/events" and request.method == "POST":
            return self._create(request)
        if path.startswith("/me/events/"):
            event_id = path.rsplit("/", 1)[1]
            if event_id not in self.events:
                return httpx.Response(404, json={"error": {"code": "ErrorItemNotFound"}})
            if request.method == "PATCH":
                self.events[event_id].update(httpx.Response(200, content=request.content).json())
                return httpx.Response(200, json=self.events[event_id])
            if request.method == "DELETE":
                del self.events[event_id]
                return httpx.Response(204)
        if path == "/me/calendarView" and request.method == "GET":
            return self._calendar_view(request)

        return httpx.Response(400, json={"error": {"code": "BadRequest"}})

    def _create(self, request: httpx.Request) -> httpx.Response:
        event = httpx.Response(200, content=request.content).json()
        event_id = f"AAMk-{next(self._ids)}"
        event["id"] = event_id
        event.setdefault("isCancelled", False)
        self.events[event_id] = event
        return httpx.Response(201, json=event)

    def _calendar_view(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        start = datetime.fromisoformat(params["startDateTime"].replace("Z", "+00:00"))
        end = datetime.fromisoformat(params["endDateTime"].replace("Z", "+00:00"))
        matching = [
            e for e in self.events.values()
            if start <= parse_graph_datetime(e["start"]) < end
        ]
        matching.sort(key=lambda e: parse_graph_datetime(e["start"]))

        skip = int(params.get("skip", 0))
        size = self.page_size or len(matching) or 1
        page = matching[skip:skip + size]
        body = {"value": page}
        if skip + size < len(matching):
            next_params = dict(params)
            next_params["skip"] = str(skip + size)
            body["@odata.nextLink"] = str(request.url.copy_with(params=next_params))
        return httpx.Response(200, json=body)
