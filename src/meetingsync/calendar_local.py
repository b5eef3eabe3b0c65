from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Tuple
import asyncio
import contextlib
import json
import logging
import os
import uuid

import vobject
from vobject.base import VObjectError

from .cache import write_text_atomic
from .debounce import Debouncer
from .errors import CalendarRequestError
from .models import CalendarEvent, Provider, SyncedEvent
from .protocols import LocalCalendarStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_DEBOUNCE_SECONDS = 0.45


class Permission(str, Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    GRANTED = "granted"


@dataclass(frozen=True)
class StoreChange:
    fingerprint: str
    changed: bool


def _as_datetime(value: date, tz: tzinfo) -> datetime:
    # dtstart/dtend may be date (all-day) or datetime, naive or aware
    if isinstance(value, datetime):
        return value.astimezone(tz) if value.tzinfo else value.replace(tzinfo=tz)
    return datetime.combine(value, datetime.min.time(), tzinfo=tz)


def _mailto(value: object) -> str:
    text = str(value or "").strip()
    if text.lower().startswith("mailto:"):
        text = text[len("mailto:"):]
    return text


def _text(vevent, name: str) -> str:
    prop = getattr(vevent, name, None)
    return str(prop.value).strip() if prop is not None and prop.value is not None else ""


def _occurrences(vevent, raw_start: date, duration: timedelta, window_start: datetime,
                 window_end: datetime, tz: tzinfo) -> List[datetime]:
    if "rrule" not in vevent.contents and "rdate" not in vevent.contents:
        return [_as_datetime(raw_start, tz)]

    ruleset = vevent.getrruleset(addRDate=True)
    lo = window_start - duration
    hi = window_end
    if not isinstance(raw_start, datetime) or raw_start.tzinfo is None:
        # Floating and all-day series expand as naive local times.
        lo = lo.astimezone(tz).replace(tzinfo=None)
        hi = hi.astimezone(tz).replace(tzinfo=None)
    return [_as_datetime(o, tz) for o in ruleset.between(lo, hi, inc=True)]


def vevent_to_events(vevent, window_start: datetime, window_end: datetime, tz: tzinfo,
                     overridden: Iterable[datetime] = ()) -> List[SyncedEvent]:
    if "dtstart" not in vevent.contents:
        return []
    raw_start = vevent.dtstart.value
    start = _as_datetime(raw_start, tz)

    if "dtend" in vevent.contents:
        end = _as_datetime(vevent.dtend.value, tz)
    elif "duration" in vevent.contents:
        end = start + vevent.duration.value
    elif not isinstance(raw_start, datetime):
        end = start + timedelta(days=1)
    else:
        end = start + timedelta(hours=1)
    duration = max(end - start, timedelta(0))

    uid = _text(vevent, "uid") or str(uuid.uuid4())
    title = _text(vevent, "summary") or "Meeting"
    location = _text(vevent, "location")
    attendees = tuple(_mailto(a.value) for a in vevent.contents.get("attendee", []))
    recurring = "rrule" in vevent.contents or "rdate" in vevent.contents
    skip = set(overridden)

    events: List[SyncedEvent] = []
    for occ_start in _occurrences(vevent, raw_start, duration, window_start, window_end, tz):
        occ_end = occ_start + duration
        if occ_start >= window_end or (occ_end <= window_start and occ_start < window_start):
            continue
        if recurring and occ_start in skip:
            continue
        events.append(SyncedEvent(
            id=f"{uid}:{occ_start.isoformat()}" if recurring else uid,
            title=title,
            start=occ_start,
            end=occ_end,
            attendee_emails=attendees,
            location=location,
            source=Provider.LOCAL.value,
        ))
    return events


class VdirCalendarStore:
    """Device-resident calendars as a vdir tree of ``.ics`` files.

    This is the layout vdirsyncer and khal keep on disk. Access must be granted
    explicitly once (``request_access``); the decision is remembered in a small
    JSON document next to the rest of the app data.
    """

    def __init__(self, root: Path, grant_path: Path, tz: tzinfo = timezone.utc,
                 poll_interval: float = 2.0) -> None:
        self.root = Path(root).expanduser()
        self.grant_path = Path(grant_path)
        self.tz = tz
        self.poll_interval = poll_interval

    def authorization_status(self) -> Permission:
        decision = self._read_grant()
        if decision is None:
            return Permission.NOT_DETERMINED
        if decision and self._readable():
            return Permission.GRANTED
        return Permission.DENIED

    async def request_access(self) -> bool:
        granted = await asyncio.to_thread(self._readable)
        self._write_grant(granted)
        return granted

    def revoke_access(self) -> None:
        self._write_grant(False)

    def events_between(self, start: datetime, end: datetime) -> List[SyncedEvent]:
        events: List[SyncedEvent] = []
        for path in self._ics_files():
            events.extend(self._read_file(path, start, end))
        events.sort(key=lambda e: e.start)
        return events

    def snapshot(self) -> Tuple[Tuple[str, int, int], ...]:
        entries = []
        for path in self._ics_files():
            try:
                st = path.stat()
            except OSError:
                continue
            entries.append((str(path.relative_to(self.root)), st.st_mtime_ns, st.st_size))
        return tuple(entries)

    async def changes(self) -> AsyncIterator[None]:
        last = await asyncio.to_thread(self.snapshot)
        while True:
            await asyncio.sleep(self.poll_interval)
            current = await asyncio.to_thread(self.snapshot)
            if current != last:
                last = current
                yield None

    def _ics_files(self) -> List[Path]:
        if not self.root.is_dir():
            return []
        return sorted(self.root.rglob("*.ics"))

    def _read_file(self, path: Path, start: datetime, end: datetime) -> List[SyncedEvent]:
        try:
            text = path.read_text(encoding="utf-8")
            vevents = [v for comp in vobject.readComponents(text) for v in comp.contents.get("vevent", [])]
        except (OSError, UnicodeDecodeError, VObjectError) as e:
            logger.warning("Skipping unreadable calendar file %s: %s", path, e)
            return []

        overrides: Dict[str, Set[datetime]] = {}
        for v in vevents:
            if "recurrence-id" in v.contents:
                overrides.setdefault(_text(v, "uid"), set()).add(_as_datetime(v.recurrence_id.value, self.tz))

        events: List[SyncedEvent] = []
        for v in vevents:
            try:
                events.extend(vevent_to_events(v, start, end, self.tz, overrides.get(_text(v, "uid"), ())))
            except (AttributeError, TypeError, ValueError, VObjectError) as e:
                # Malformed events are dropped; the rest of the file still counts.
                logger.debug("Dropping malformed event in %s: %s", path, e)
        return events

    def _readable(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.R_OK | os.X_OK)

    def _read_grant(self) -> Optional[bool]:
        try:
            data = json.loads(self.grant_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable permission file %s: %s", self.grant_path, e)
            return None
        return bool(data.get("granted")) if isinstance(data, dict) else None

    def _write_grant(self, granted: bool) -> None:
        try:
            write_text_atomic(self.grant_path, json.dumps({"granted": granted}))
        except OSError as e:
            logger.warning("Could not record local calendar permission: %s", e)


def fingerprint(events: Iterable[CalendarEvent]) -> str:
    return "".join(f"{e.title}|{e.start.isoformat()}|{e.end.isoformat()}|{e.location};" for e in events)


class LocalCalendarClient:
    provider = Provider.LOCAL

    def __init__(
        self,
        store: LocalCalendarStore,
        *,
        window: timedelta = DEFAULT_WINDOW,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self.window = window
        self.debounce_seconds = debounce_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._fingerprint: Optional[str] = None

    @property
    def permission(self) -> Permission:
        return Permission(self._store.authorization_status())

    @property
    def has_access(self) -> bool:
        return self.permission is Permission.GRANTED

    @property
    def last_fingerprint(self) -> Optional[str]:
        return self._fingerprint

    async def request_access(self) -> bool:
        granted = await self._store.request_access()
        logger.info("Local calendar access %s", "granted" if granted else "denied")
        return granted

    async def fetch_events_in_window(self, start: datetime, end: Optional[datetime] = None) -> List[SyncedEvent]:
        end = end or start + self.window
        if start.tzinfo is None or end.tzinfo is None:
            raise CalendarRequestError.invalid_request(self.provider, "Window bounds must be timezone-aware.")
        if end < start:
            raise CalendarRequestError.invalid_request(self.provider, "Window end precedes its start.")
        if not self.has_access:
            return []
        return await asyncio.to_thread(self._store.events_between, start, end)

    async def fetch_calendar_events(self, start: datetime, end: Optional[datetime] = None) -> List[CalendarEvent]:
        return [e.to_calendar_event() for e in await self.fetch_events_in_window(start, end)]

    async def refresh_fingerprint(self) -> StoreChange:
        now = self._clock()
        current = fingerprint(await self.fetch_calendar_events(now, now + self.window))
        changed = current != self._fingerprint
        self._fingerprint = current
        return StoreChange(fingerprint=current, changed=changed)

    async def watch(self) -> AsyncIterator[StoreChange]:
        """Yield one StoreChange per debounced burst of store notifications."""
        if self._fingerprint is None:
            await self.refresh_fingerprint()
        debouncer = Debouncer(self.debounce_seconds)

        async def pump() -> None:
            async for _ in self._store.changes():
                debouncer.signal()

        pump_task = asyncio.create_task(pump())
        wait_task: Optional[asyncio.Task] = None
        try:
            while True:
                wait_task = asyncio.create_task(debouncer.wait())
                await asyncio.wait({wait_task, pump_task}, return_when=asyncio.FIRST_COMPLETED)
                if not wait_task.done():
                    # Store notifications stopped; re-raise whatever ended them.
                    pump_task.result()
                    return
                yield await self.refresh_fingerprint()
        finally:
            debouncer.cancel()
            if wait_task is not None:
                wait_task.cancel()
            if not pump_task.done():
                pump_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump_task
