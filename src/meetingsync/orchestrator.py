from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Mapping, Optional
import logging

from .aggregator import merge_events
from .errors import CalendarSyncError
from .models import Contact, ManualMeeting, MeetingEvent, Provider, SyncedEvent
from .protocols import CalendarSource, ContactSource, ManualMeetingStore, ProfileSource, ProviderPreferences
from .relevance import relevant_meetings

logger = logging.getLogger(__name__)


class MeetingOrchestrator:
    """Turns the user's calendars into the day's meetings with known contacts."""

    def __init__(
        self,
        sources: Mapping[Provider, CalendarSource],
        preferences: ProviderPreferences,
        profiles: ProfileSource,
        contacts: ContactSource,
        manual_meetings: ManualMeetingStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sources = dict(sources)
        self._preferences = preferences
        self._profiles = profiles
        self._contacts = contacts
        self._manual = manual_meetings
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def active_providers(self) -> List[Provider]:
        return [p for p in self._preferences.active_providers() if p in self._sources]

    async def sync_meeting_events(self, date: Optional[datetime] = None) -> List[MeetingEvent]:
        providers = self.active_providers()
        if not providers:
            return []

        start = date or self._clock()
        end = start + timedelta(days=1)

        events: List[SyncedEvent] = []
        for provider in providers:
            try:
                events.extend(await self._sources[provider].fetch_events_in_window(start, end))
            except CalendarSyncError as e:
                if not e.recoverable:
                    raise
                logger.info("Skipping %s: %s", provider.value, e.message)

        meetings = relevant_meetings(events, self._contacts.contacts, self.current_user_email(providers))
        return merge_events(meetings)

    def current_user_email(self, providers: Optional[List[Provider]] = None) -> str:
        for provider in providers if providers is not None else self.active_providers():
            if not provider.is_cloud:
                continue
            email = getattr(self._sources.get(provider), "account_email", "")
            if email:
                return email
        return self._profiles.profile.email

    def is_local_access_denied(self) -> bool:
        if Provider.LOCAL not in self.active_providers():
            return False
        return getattr(self._sources[Provider.LOCAL], "has_access", True) is False

    # Manual meetings -------------------------------------------------------

    def manual_meetings(self, date: datetime) -> List[ManualMeeting]:
        return self._manual.meetings_on(date)

    def add_manual_meeting(self, contact_id: str, date: datetime, occasion: str, notes: str = "") -> ManualMeeting:
        meeting = ManualMeeting(contact_id=contact_id, date=date, occasion=occasion.strip(), notes=notes.strip())
        self._manual.add(meeting)
        return meeting

    def update_manual_meeting(self, meeting: ManualMeeting) -> None:
        meeting.occasion = meeting.occasion.strip()
        meeting.notes = meeting.notes.strip()
        self._manual.update(meeting)

    def delete_manual_meeting(self, meeting: ManualMeeting) -> None:
        self._manual.delete(meeting)

    def contact_for(self, meeting: ManualMeeting) -> Optional[Contact]:
        return next((c for c in self._contacts.contacts if c.id == meeting.contact_id), None)
