from datetime import datetime, timedelta, timezone

from meetingsync.aggregator import CalendarAggregator
from meetingsync.errors import CalendarAuthError, CalendarRequestError
from meetingsync.models import CalendarEvent, Provider

T0 = datetime(2026, 2, 5, 8, 0, tzinfo=timezone.utc)


def _event(title: str, hours: int, source: Provider) -> CalendarEvent:
    start = T0 + timedelta(hours=hours)
    return CalendarEvent(id=f"{source.value}-{title}", title=title, start=start,
                         end=start + timedelta(minutes=30), source=source.value)


class _Prefs:
    def __init__(self, *providers):
        self.providers = list(providers)

    def active_providers(self):
        return self.providers


class _Source:
    def __init__(self, provider, events=(), error=None, has_access=True):
        self.provider = provider
        self.events = list(events)
        self.error = error
        self.has_access = has_access
        self.calls = []

    async def fetch_calendar_events(self, start, end=None):
        self.calls.append((start, end))
        if self.error is not None:
            raise self.error
        return self.events

    def cached_events(self):
        return self.events


async def test_aggregator_continues_when_one_provider_fails():
    google = _Source(Provider.GOOGLE, error=CalendarRequestError.api_failure(500, Provider.GOOGLE))
    outlook = _Source(Provider.OUTLOOK, [_event("1:1", 2, Provider.OUTLOOK)])
    agg = CalendarAggregator({Provider.GOOGLE: google, Provider.OUTLOOK: outlook},
                             _Prefs(Provider.GOOGLE, Provider.OUTLOOK), clock=lambda: T0)

    events = await agg.fetch_today_events()

    assert [e.title for e in events] == ["1:1"]
    assert agg.events == tuple(events)
    assert agg.last_error_message == "Google Calendar API failed with status code 500."


async def test_window_defaults_to_now_plus_24_hours():
    local = _Source(Provider.LOCAL)
    agg = CalendarAggregator({Provider.LOCAL: local}, _Prefs(Provider.LOCAL), clock=lambda: T0)

    await agg.fetch_today_events()

    assert local.calls == [(T0, T0 + timedelta(hours=24))]


async def test_disabled_local_access_reports_advisory_without_fetching():
    local = _Source(Provider.LOCAL, [_event("x", 1, Provider.LOCAL)], has_access=False)
    agg = CalendarAggregator({Provider.LOCAL: local}, _Prefs(Provider.LOCAL), clock=lambda: T0)

    events = await agg.fetch_today_events()

    assert events == []
    assert local.calls == []
    assert agg.last_error_message == "Local Calendar access is disabled."


async def test_successful_refresh_clears_previous_error():
    google = _Source(Provider.GOOGLE, error=CalendarAuthError.not_signed_in(Provider.GOOGLE))
    agg = CalendarAggregator({Provider.GOOGLE: google}, _Prefs(Provider.GOOGLE), clock=lambda: T0)

    await agg.fetch_today_events()
    assert agg.last_error_message == "Google Calendar account is not connected."

    google.error = None
    google.events = [_event("Standup", 1, Provider.GOOGLE)]
    await agg.fetch_today_events()

    assert agg.last_error_message is None
    assert [e.title for e in agg.events] == ["Standup"]


async def test_providers_without_a_source_are_skipped():
    local = _Source(Provider.LOCAL, [_event("Gym", 3, Provider.LOCAL)])
    agg = CalendarAggregator({Provider.LOCAL: local}, _Prefs(Provider.OUTLOOK, Provider.LOCAL), clock=lambda: T0)

    events = await agg.fetch_today_events()

    assert [e.title for e in events] == ["Gym"]
    assert agg.last_error_message is None


async def test_standup_from_google_and_outlook_appears_once():
    google = _Source(Provider.GOOGLE, [_event("Standup", 1, Provider.GOOGLE)])
    outlook = _Source(Provider.OUTLOOK, [_event("standup", 1, Provider.OUTLOOK)])
    agg = CalendarAggregator({Provider.GOOGLE: google, Provider.OUTLOOK: outlook},
                             _Prefs(Provider.GOOGLE, Provider.OUTLOOK), clock=lambda: T0)

    events = await agg.fetch_today_events()

    assert len(events) == 1


def test_cached_events_merge_active_providers():
    google = _Source(Provider.GOOGLE, [_event("B", 2, Provider.GOOGLE)])
    outlook = _Source(Provider.OUTLOOK, [_event("A", 1, Provider.OUTLOOK)])
    agg = CalendarAggregator({Provider.GOOGLE: google, Provider.OUTLOOK: outlook}, _Prefs(Provider.GOOGLE, Provider.OUTLOOK))

    assert [e.title for e in agg.cached_events()] == ["A", "B"]


async def test_unexpected_source_error_does_not_abort_other_providers():
    local = _Source(Provider.LOCAL, error=OSError("calendar directory vanished"))
    google = _Source(Provider.GOOGLE, [_event("Standup", 1, Provider.GOOGLE)])
    agg = CalendarAggregator({Provider.LOCAL: local, Provider.GOOGLE: google},
                             _Prefs(Provider.LOCAL, Provider.GOOGLE), clock=lambda: T0)

    events = await agg.fetch_today_events()

    assert [e.title for e in events] == ["Standup"]
    assert agg.last_error_message == "Local Calendar fetch failed: calendar directory vanished"
