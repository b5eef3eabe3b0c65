from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Mapping, Optional, Protocol, Tuple, TypeVar

from .errors import CalendarSyncError, ErrorKind
from .models import CalendarEvent, Provider
from .protocols import CalendarSource, ProviderPreferences

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)


class _Dated(Protocol):
    @property
    def title(self) -> str: ...

    @property
    def start(self) -> datetime: ...


T = TypeVar("T", bound=_Dated)


def dedupe_key(title: str, start: datetime) -> Tuple[str, int]:
    return (title.lower(), int(start.timestamp()))


def merge_events(events: Iterable[T]) -> List[T]:
    """Sort by start (stable) and keep the first event per dedupe key."""
    deduped: List[T] = []
    seen = set()
    for e in sorted(events, key=lambda e: e.start):
        key = dedupe_key(e.title, e.start)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(e)
    return deduped


@dataclass(frozen=True)
class ProviderOutcome:
    provider: Provider
    events: List[CalendarEvent] = field(default_factory=list)
    error: Optional[CalendarSyncError] = None
    advisory: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CalendarAggregator:
    """Fans out to the enabled providers and keeps the merged result."""

    def __init__(
        self,
        sources: Mapping[Provider, CalendarSource],
        preferences: ProviderPreferences,
        *,
        window: timedelta = DEFAULT_WINDOW,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sources = dict(sources)
        self._preferences = preferences
        self.window = window
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._events: Tuple[CalendarEvent, ...] = ()
        self._last_error: Optional[str] = None

    @property
    def events(self) -> Tuple[CalendarEvent, ...]:
        return self._events

    @property
    def last_error_message(self) -> Optional[str]:
        return self._last_error

    async def fetch_today_events(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[CalendarEvent]:
        start = start or self._clock()
        end = end or start + self.window

        providers = [p for p in self._preferences.active_providers() if p in self._sources]
        outcomes = await asyncio.gather(*(self._fetch(p, start, end) for p in providers))

        last_error: Optional[str] = None
        collected: List[CalendarEvent] = []
        for outcome in outcomes:
            if outcome.error is not None:
                last_error = outcome.error.message
            elif outcome.advisory:
                last_error = outcome.advisory
            collected.extend(outcome.events)

        merged = merge_events(collected)
        # Swapped together; readers never see a partial merge.
        self._events, self._last_error = tuple(merged), last_error
        logger.info("Aggregated %d events from %d providers", len(merged), len(providers))
        return merged

    def cached_events(self) -> List[CalendarEvent]:
        cached: List[CalendarEvent] = []
        for provider in self._preferences.active_providers():
            loader = getattr(self._sources.get(provider), "cached_events", None)
            if loader is not None:
                cached.extend(loader())
        return merge_events(cached)

    async def _fetch(self, provider: Provider, start: datetime, end: datetime) -> ProviderOutcome:
        source = self._sources[provider]
        if getattr(source, "has_access", True) is False:
            return ProviderOutcome(provider, advisory=f"{provider.display_name} access is disabled.")
        try:
            events = await source.fetch_calendar_events(start, end)
        except CalendarSyncError as e:
            logger.warning("%s fetch failed: %s", provider.value, e)
            return ProviderOutcome(provider, error=e)
        except Exception as e:
            logger.exception("Unexpected %s fetch failure", provider.value)
            error = CalendarSyncError(
                ErrorKind.API_FAILURE, f"{provider.display_name} fetch failed: {e}", provider=provider
            )
            return ProviderOutcome(provider, error=error)
        return ProviderOutcome(provider, events=list(events))

