from __future__ import annotations
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import re
import uuid

import httpx

from .cache import EventCache
from .calendar_cloud import DEFAULT_EVENT_DURATION, DEFAULT_WINDOW, PAGE_SIZE, CloudCalendarClient
from .credential_store import CredentialStore
from .errors import CalendarRequestError
from .models import Provider, SyncedEvent
from .oauth import OAuthSession

GRAPH_EVENTS_URL = "https://graph.microsoft.com/v1.0/me/events"
SELECT_FIELDS = "id,subject,start,end,attendees,location,isAllDay"

# Graph emits 7 fractional digits ("2026-03-02T09:00:00.0000000").
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _graph_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def graph_filter(start: datetime, end: datetime) -> str:
    return f"start/dateTime ge '{_graph_timestamp(start)}' and start/dateTime le '{_graph_timestamp(end)}'"


def _zone(name: Any) -> tzinfo:
    if not name or not isinstance(name, str):
        return timezone.utc
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def parse_graph_datetime(obj: Any) -> Optional[datetime]:
    if not isinstance(obj, dict):
        return None
    raw = str(obj.get("dateTime") or "").strip()
    if not raw:
        return None
    raw = _FRACTION_RE.sub(r"\1", raw).replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(obj.get("timeZone")))
    return parsed


def _local_midnight(value: datetime, tz: tzinfo) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=tz)


def map_graph_event(item: Any, tz: tzinfo = timezone.utc) -> Optional[SyncedEvent]:
    if not isinstance(item, dict):
        return None
    start = parse_graph_datetime(item.get("start"))
    if start is None:
        return None
    end = parse_graph_datetime(item.get("end")) or start + DEFAULT_EVENT_DURATION
    if item.get("isAllDay") is True:
        # All-day bounds are calendar dates in the user's zone.
        start, end = _local_midnight(start, tz), _local_midnight(end, tz)

    emails = []
    for attendee in item.get("attendees") or []:
        address = (attendee.get("emailAddress") or {}).get("address") if isinstance(attendee, dict) else None
        if isinstance(address, str):
            emails.append(address)

    location = item.get("location") or {}
    return SyncedEvent(
        id=str(item.get("id") or uuid.uuid4()),
        title=str(item.get("subject") or "").strip() or "Meeting",
        start=start,
        end=end,
        attendee_emails=tuple(emails),
        location=str(location.get("displayName") or "") if isinstance(location, dict) else "",
        source=Provider.OUTLOOK.value,
    )


class OutlookCalendarClient(CloudCalendarClient):
    provider = Provider.OUTLOOK

    def __init__(
        self,
        session: OAuthSession,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        cache: EventCache,
        *,
        tz: tzinfo = timezone.utc,
        window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        super().__init__(session, credential_store, http_client, cache, window=window)
        self.tz = tz

    def _build_request(self, start: datetime, end: datetime) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        params = {
            "$select": SELECT_FIELDS,
            "$orderby": "start/dateTime",
            "$top": str(PAGE_SIZE),
            "$filter": graph_filter(start, end),
        }
        headers = {
            "Accept": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }
        return GRAPH_EVENTS_URL, params, headers

    def _items(self, payload: Dict[str, Any]) -> Iterable[Any]:
        items = payload.get("value")
        if not isinstance(items, list):
            raise CalendarRequestError.invalid_response(self.provider)
        return items

    def _map_item(self, item: Any) -> Optional[SyncedEvent]:
        return map_graph_event(item, self.tz)
