from __future__ import annotations
from typing import Dict, Iterable, List

from .models import Contact, MeetingEvent, SyncedEvent, normalize_email, normalize_emails


def contacts_by_email(contacts: Iterable[Contact]) -> Dict[str, Contact]:
    index: Dict[str, Contact] = {}
    for contact in contacts:
        email = normalize_email(contact.email)
        if email:
            index[email] = contact   # last write wins
    return index


def relevant_meetings(
    events: Iterable[SyncedEvent],
    contacts: Iterable[Contact],
    owner_email: str = "",
) -> List[MeetingEvent]:
    """Keep events with at least one other party and link the first known contact.

    Attendees are compared in sorted order, so the linked contact does not depend
    on how the provider ordered its attendee list. Unmatched meetings are kept
    with ``linked_contact=None``. Output order follows the input.
    """
    index = contacts_by_email(contacts)
    owner = normalize_email(owner_email)

    meetings: List[MeetingEvent] = []
    for event in events:
        attendees = normalize_emails(event.attendee_emails)
        if len(attendees) <= 1:
            continue

        others = tuple(a for a in attendees if a != owner) if owner else attendees
        if not others:
            continue

        linked = next((index[a] for a in others if a in index), None)
        meetings.append(MeetingEvent(
            id=event.id,
            title=event.title,
            start=event.start,
            end=event.end,
            linked_contact=linked,
            attendee_emails=others,
        ))
    return meetings
