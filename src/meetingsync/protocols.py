"""Seams between the sync engine and its collaborators."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, List, Optional, Protocol, Sequence, runtime_checkable

from .models import CalendarEvent, Contact, ManualMeeting, Provider, SyncedEvent, UserProfile


@runtime_checkable
class CalendarSource(Protocol):
    """Anything the aggregator and orchestrator can pull events from."""

    provider: Provider

    async def fetch_events_in_window(
        self, start: datetime, end: Optional[datetime] = None
    ) -> List[SyncedEvent]: ...

    async def fetch_calendar_events(
        self, start: datetime, end: Optional[datetime] = None
    ) -> List[CalendarEvent]: ...


class LocalCalendarStore(Protocol):
    def authorization_status(self) -> str: ...

    async def request_access(self) -> bool: ...

    def events_between(self, start: datetime, end: datetime) -> List[SyncedEvent]: ...

    def changes(self) -> AsyncIterator[None]: ...


class ProviderPreferences(Protocol):
    def active_providers(self) -> List[Provider]: ...


class ProfileSource(Protocol):
    @property
    def profile(self) -> UserProfile: ...


class ContactSource(Protocol):
    @property
    def contacts(self) -> Sequence[Contact]: ...


class ManualMeetingStore(Protocol):
    def meetings_on(self, day: datetime) -> List[ManualMeeting]: ...

    def add(self, meeting: ManualMeeting) -> None: ...

    def update(self, meeting: ManualMeeting) -> None: ...

    def delete(self, meeting: ManualMeeting) -> None: ...
