from __future__ import annotations
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import quote
import uuid

import httpx

from .cache import EventCache
from .calendar_cloud import DEFAULT_EVENT_DURATION, DEFAULT_WINDOW, PAGE_SIZE, CloudCalendarClient
from .credential_store import CredentialStore
from .errors import CalendarRequestError
from .models import Provider, SyncedEvent
from .oauth import OAuthSession

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
EVENT_FIELDS = "items(id,summary,location,start,end,attendees(email,self))"


def _rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_boundary(obj: Any, tz: tzinfo) -> Optional[datetime]:
    if not isinstance(obj, dict):
        return None
    try:
        # All-day events have "date" not "dateTime"
        if obj.get("dateTime"):
            parsed = datetime.fromisoformat(str(obj["dateTime"]).replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)
        if obj.get("date"):
            # Interpret as local midnight
            return datetime.fromisoformat(str(obj["date"])).replace(tzinfo=tz)
    except ValueError:
        return None
    return None


def map_google_event(item: Any, tz: tzinfo) -> Optional[SyncedEvent]:
    if not isinstance(item, dict):
        return None
    start = _parse_boundary(item.get("start"), tz)
    if start is None:
        return None
    end = _parse_boundary(item.get("end"), tz) or start + DEFAULT_EVENT_DURATION

    title = str(item.get("summary") or "").strip() or "Meeting"
    attendees = item.get("attendees") or []
    emails = [a.get("email") for a in attendees if isinstance(a, dict)]

    return SyncedEvent(
        id=str(item.get("id") or uuid.uuid4()),
        title=title,
        start=start,
        end=end,
        attendee_emails=tuple(e for e in emails if isinstance(e, str)),
        location=str(item.get("location") or ""),
        source=Provider.GOOGLE.value,
    )


class GoogleCalendarClient(CloudCalendarClient):
    provider = Provider.GOOGLE

    def __init__(
        self,
        session: OAuthSession,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        cache: EventCache,
        *,
        calendar_id: str = "primary",
        tz: tzinfo = timezone.utc,
        window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        super().__init__(session, credential_store, http_client, cache, window=window)
        self.calendar_id = calendar_id
        self.tz = tz

    def _build_request(self, start: datetime, end: datetime) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(self.calendar_id, safe='')}/events"
        params = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(PAGE_SIZE),
            "fields": EVENT_FIELDS,
        }
        return url, params, {}

    def _items(self, payload: Dict[str, Any]) -> Iterable[Any]:
        # Google omits "items" entirely when the field mask matches nothing.
        items = payload.get("items", [])
        if not isinstance(items, list):
            raise CalendarRequestError.invalid_response(self.provider)
        return items

    def _map_item(self, item: Any) -> Optional[SyncedEvent]:
        return map_google_event(item, self.tz)
