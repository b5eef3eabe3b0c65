from datetime import datetime, timedelta, timezone

import pytest

from meetingsync.errors import CalendarAuthError, CalendarRequestError
from meetingsync.models import Contact, Provider, SyncedEvent, UserProfile
from meetingsync.orchestrator import MeetingOrchestrator
from meetingsync.repositories import ManualMeetingRepository

DAY = datetime(2026, 4, 1, tzinfo=timezone.utc)

ANA = Contact(id="c-ana", first_name="Ana", last_name="Diaz", email="ana@corp.com", company="Corp")


def _event(title, hour, *attendees, source="google"):
    start = DAY + timedelta(hours=hour)
    return SyncedEvent(id=f"{source}-{title}", title=title, start=start, end=start + timedelta(hours=1),
                       attendee_emails=attendees, source=source)


class _Prefs:
    def __init__(self, *providers):
        self.providers = list(providers)

    def active_providers(self):
        return self.providers


class _Profiles:
    def __init__(self, email=""):
        self.profile = UserProfile(first_name="Sam", email=email)


class _Contacts:
    def __init__(self, *contacts):
        self.contacts = list(contacts)


class _Source:
    def __init__(self, provider, events=(), error=None, account_email="", has_access=True):
        self.provider = provider
        self.events = list(events)
        self.error = error
        self.account_email = account_email
        self.has_access = has_access
        self.windows = []

    async def fetch_events_in_window(self, start, end=None):
        self.windows.append((start, end))
        if self.error is not None:
            raise self.error
        return self.events if self.has_access else []


def _orchestrator(tmp_path, sources, prefs, profile_email="me@example.com", contacts=(ANA,)):
    return MeetingOrchestrator(
        sources, prefs, _Profiles(profile_email), _Contacts(*contacts), ManualMeetingRepository(tmp_path)
    )


async def test_no_active_providers_means_no_meetings(tmp_path):
    source = _Source(Provider.GOOGLE, [_event("Intro", 9, "me@example.com", "ana@corp.com")])
    orch = _orchestrator(tmp_path, {Provider.GOOGLE: source}, _Prefs())

    assert await orch.sync_meeting_events(DAY) == []
    assert source.windows == []


async def test_denied_local_and_signed_out_outlook_yield_empty_list(tmp_path):
    local = _Source(Provider.LOCAL, [_event("Gym", 7, "me@example.com", "ana@corp.com")], has_access=False)
    outlook = _Source(Provider.OUTLOOK, error=CalendarAuthError.not_signed_in(Provider.OUTLOOK))
    orch = _orchestrator(tmp_path, {Provider.LOCAL: local, Provider.OUTLOOK: outlook},
                         _Prefs(Provider.LOCAL, Provider.OUTLOOK))

    assert await orch.sync_meeting_events(DAY) == []
    assert orch.is_local_access_denied()


async def test_fetches_one_day_from_each_provider(tmp_path):
    google = _Source(Provider.GOOGLE)
    outlook = _Source(Provider.OUTLOOK)
    orch = _orchestrator(tmp_path, {Provider.GOOGLE: google, Provider.OUTLOOK: outlook},
                         _Prefs(Provider.GOOGLE, Provider.OUTLOOK))

    await orch.sync_meeting_events(DAY)

    assert google.windows == [(DAY, DAY + timedelta(days=1))]
    assert outlook.windows == [(DAY, DAY + timedelta(days=1))]


async def test_non_recoverable_errors_propagate(tmp_path):
    google = _Source(Provider.GOOGLE, error=CalendarRequestError.api_failure(500, Provider.GOOGLE))
    orch = _orchestrator(tmp_path, {Provider.GOOGLE: google}, _Prefs(Provider.GOOGLE))

    with pytest.raises(CalendarRequestError):
        await orch.sync_meeting_events(DAY)


async def test_meetings_are_linked_deduped_and_sorted(tmp_path):
    google = _Source(Provider.GOOGLE, [
        _event("Review", 14, "me@example.com", "bob@other.io"),
        _event("Standup", 9, "me@example.com", "ana@corp.com"),
        _event("Focus time", 11, "me@example.com"),
    ])
    outlook = _Source(Provider.OUTLOOK, [
        _event("standup", 9, "ana@corp.com", "me@example.com", source="outlook"),
    ])
    orch = _orchestrator(tmp_path, {Provider.GOOGLE: google, Provider.OUTLOOK: outlook},
                         _Prefs(Provider.GOOGLE, Provider.OUTLOOK))

    meetings = await orch.sync_meeting_events(DAY)

    assert [m.title for m in meetings] == ["Standup", "Review"]
    assert meetings[0].linked_contact == ANA
    assert meetings[0].attendee_emails == ("ana@corp.com",)
    assert meetings[1].linked_contact is None


async def test_cloud_account_email_beats_profile_email(tmp_path):
    google = _Source(Provider.GOOGLE, [_event("Sync", 9, "work@corp.com", "ana@corp.com")],
                     account_email="work@corp.com")
    orch = _orchestrator(tmp_path, {Provider.GOOGLE: google}, _Prefs(Provider.GOOGLE), profile_email="home@mail.com")

    meetings = await orch.sync_meeting_events(DAY)

    assert orch.current_user_email() == "work@corp.com"
    assert meetings[0].attendee_emails == ("ana@corp.com",)


def test_profile_email_used_when_no_cloud_account(tmp_path):
    local = _Source(Provider.LOCAL)
    outlook = _Source(Provider.OUTLOOK, account_email="")
    orch = _orchestrator(tmp_path, {Provider.LOCAL: local, Provider.OUTLOOK: outlook},
                         _Prefs(Provider.LOCAL, Provider.OUTLOOK), profile_email="home@mail.com")

    assert orch.current_user_email() == "home@mail.com"
    assert not orch.is_local_access_denied()


def test_manual_meeting_crud(tmp_path):
    orch = _orchestrator(tmp_path, {}, _Prefs())
    at = DAY + timedelta(hours=12)

    meeting = orch.add_manual_meeting("c-ana", at, "  Lunch  ", " bring deck ")
    assert meeting.occasion == "Lunch"
    assert meeting.notes == "bring deck"
    assert [m.id for m in orch.manual_meetings(DAY)] == [meeting.id]
    assert orch.contact_for(meeting) == ANA

    meeting.occasion = "Dinner "
    orch.update_manual_meeting(meeting)
    assert orch.manual_meetings(DAY)[0].occasion == "Dinner"

    orch.delete_manual_meeting(meeting)
    assert orch.manual_meetings(DAY) == []


def test_contact_for_unknown_id_is_none(tmp_path):
    orch = _orchestrator(tmp_path, {}, _Prefs())
    meeting = orch.add_manual_meeting("missing", DAY, "Coffee")

    assert orch.contact_for(meeting) is None
