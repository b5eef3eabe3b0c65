import asyncio
import json
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from meetingsync.calendar_local import (
    LocalCalendarClient,
    Permission,
    VdirCalendarStore,
    fingerprint,
)
from meetingsync.errors import CalendarRequestError, ErrorKind
from meetingsync.models import CalendarEvent

UTC = timezone.utc
DAY = datetime(2026, 5, 4, tzinfo=UTC)

MEETING = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//test//EN
BEGIN:VEVENT
UID:meet-1
SUMMARY:Coffee with Ana
LOCATION:Cafe
DTSTART:20260504T100000Z
DTEND:20260504T103000Z
ATTENDEE;CN=Ana:mailto:Ana@Corp.com
ATTENDEE:MAILTO:me@example.com
END:VEVENT
END:VCALENDAR
"""

WEEKLY = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//test//EN
BEGIN:VEVENT
UID:weekly-1
SUMMARY:Standup
DTSTART:20260427T090000Z
DTEND:20260427T091500Z
RRULE:FREQ=DAILY;COUNT=30
END:VEVENT
BEGIN:VEVENT
UID:weekly-1
RECURRENCE-ID:20260505T090000Z
SUMMARY:Standup (moved)
DTSTART:20260505T110000Z
DTEND:20260505T111500Z
END:VEVENT
END:VCALENDAR
"""

ALL_DAY = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//test//EN
BEGIN:VEVENT
UID:holiday
SUMMARY:Holiday
DTSTART;VALUE=DATE:20260504
END:VEVENT
END:VCALENDAR
"""


def _store(tmp_path, *files, granted=True, tz=UTC):
    root = tmp_path / "calendars"
    (root / "personal").mkdir(parents=True)
    for i, text in enumerate(files):
        (root / "personal" / f"{i}.ics").write_text(text, encoding="utf-8")
    grant = tmp_path / "local_permission.json"
    if granted is not None:
        grant.write_text(json.dumps({"granted": granted}), encoding="utf-8")
    return VdirCalendarStore(root, grant, tz=tz, poll_interval=0.01)


def test_permission_states(tmp_path):
    assert _store(tmp_path, granted=None).authorization_status() is Permission.NOT_DETERMINED


def test_permission_denied_when_recorded(tmp_path):
    assert _store(tmp_path, granted=False).authorization_status() is Permission.DENIED


def test_granted_but_missing_directory_is_denied(tmp_path):
    store = VdirCalendarStore(tmp_path / "nowhere", tmp_path / "grant.json")
    (tmp_path / "grant.json").write_text('{"granted": true}', encoding="utf-8")

    assert store.authorization_status() is Permission.DENIED


async def test_request_access_records_decision(tmp_path):
    store = _store(tmp_path, granted=None)
    client = LocalCalendarClient(store)

    assert await client.request_access()
    assert client.permission is Permission.GRANTED
    assert json.loads(store.grant_path.read_text(encoding="utf-8")) == {"granted": True}

    store.revoke_access()
    assert not client.has_access


def test_reads_single_event_with_attendees(tmp_path):
    events = _store(tmp_path, MEETING).events_between(DAY, DAY + timedelta(days=1))

    assert len(events) == 1
    e = events[0]
    assert e.id == "meet-1"
    assert e.title == "Coffee with Ana"
    assert e.location == "Cafe"
    assert e.start == datetime(2026, 5, 4, 10, 0, tzinfo=UTC)
    assert e.attendee_emails == ("ana@corp.com", "me@example.com")
    assert e.source == "local"


def test_recurring_series_expands_and_skips_overridden_instance(tmp_path):
    store = _store(tmp_path, WEEKLY)

    events = store.events_between(DAY, DAY + timedelta(days=2))

    assert [(e.title, e.start.hour) for e in events] == [
        ("Standup", 9),
        ("Standup (moved)", 11),
    ]
    assert events[0].id == "weekly-1:2026-05-04T09:00:00+00:00"


def test_all_day_event_spans_local_day(tmp_path):
    tz = ZoneInfo("America/Phoenix")
    store = _store(tmp_path, ALL_DAY, tz=tz)
    start = datetime(2026, 5, 4, 8, 0, tzinfo=tz)

    events = store.events_between(start, start + timedelta(hours=24))

    assert len(events) == 1
    assert events[0].start == datetime(2026, 5, 4, tzinfo=tz)
    assert events[0].end == datetime(2026, 5, 5, tzinfo=tz)


def test_unreadable_files_are_skipped(tmp_path):
    store = _store(tmp_path, MEETING, "BEGIN:VCALENDAR\nthis is not ical")

    assert [e.id for e in store.events_between(DAY, DAY + timedelta(days=1))] == ["meet-1"]


def test_events_outside_window_are_excluded(tmp_path):
    store = _store(tmp_path, MEETING)

    assert store.events_between(DAY + timedelta(hours=11), DAY + timedelta(hours=20)) == []


async def test_client_without_access_returns_nothing(tmp_path):
    client = LocalCalendarClient(_store(tmp_path, MEETING, granted=False))

    assert await client.fetch_events_in_window(DAY) == []


async def test_client_fetches_calendar_events(tmp_path):
    client = LocalCalendarClient(_store(tmp_path, MEETING))

    events = await client.fetch_calendar_events(DAY)

    assert [e.title for e in events] == ["Coffee with Ana"]


def test_fingerprint_reflects_visible_fields():
    a = CalendarEvent(id="1", title="A", start=DAY, end=DAY + timedelta(hours=1), location="X")
    moved = CalendarEvent(id="1", title="A", start=DAY, end=DAY + timedelta(hours=1), location="Y")

    assert fingerprint([a]) == f"A|{DAY.isoformat()}|{(DAY + timedelta(hours=1)).isoformat()}|X;"
    assert fingerprint([a]) != fingerprint([moved])
    assert fingerprint([]) == ""


async def test_refresh_fingerprint_reports_change(tmp_path):
    store = _store(tmp_path, MEETING)
    client = LocalCalendarClient(store, clock=lambda: DAY)

    first = await client.refresh_fingerprint()
    again = await client.refresh_fingerprint()
    (store.root / "personal" / "1.ics").write_text(ALL_DAY, encoding="utf-8")
    changed = await client.refresh_fingerprint()

    assert first.changed
    assert not again.changed
    assert changed.changed
    assert client.last_fingerprint == changed.fingerprint


async def test_watch_coalesces_store_changes(tmp_path):
    store = _store(tmp_path, MEETING)
    client = LocalCalendarClient(store, debounce_seconds=0.05, clock=lambda: DAY)

    async def edit_later():
        await asyncio.sleep(0.2)
        (store.root / "personal" / "1.ics").write_text(ALL_DAY, encoding="utf-8")

    editor = asyncio.create_task(edit_later())
    watcher = client.watch()
    change = await asyncio.wait_for(watcher.__anext__(), timeout=2)
    await watcher.aclose()
    await editor

    assert change.changed
    assert "Holiday" in change.fingerprint


class _VanishingStore:
    """A granted store whose collection disappears while being watched."""

    def authorization_status(self):
        return Permission.GRANTED

    async def request_access(self):
        return True

    def events_between(self, start, end):
        return []

    async def changes(self):
        await asyncio.sleep(0.01)
        raise FileNotFoundError("collection removed")
        yield


async def test_watch_surfaces_store_failure():
    client = LocalCalendarClient(_VanishingStore(), debounce_seconds=0.05, clock=lambda: DAY)
    watcher = client.watch()

    with pytest.raises(FileNotFoundError, match="collection removed"):
        await asyncio.wait_for(watcher.__anext__(), timeout=1)


async def test_naive_window_is_invalid_request(tmp_path):
    client = LocalCalendarClient(_store(tmp_path, MEETING))

    with pytest.raises(CalendarRequestError) as excinfo:
        await client.fetch_events_in_window(datetime(2026, 5, 4, 9, 0))
    assert excinfo.value.kind is ErrorKind.INVALID_REQUEST
    assert excinfo.value.provider.value == "local"

    with pytest.raises(CalendarRequestError):
        await client.fetch_events_in_window(DAY + timedelta(hours=2), DAY)
