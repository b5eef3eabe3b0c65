from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple
import uuid


class Provider(str, Enum):
    LOCAL = "local"
    GOOGLE = "google"
    OUTLOOK = "outlook"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_cloud(self) -> bool:
        return self is not Provider.LOCAL


_DISPLAY_NAMES = {
    Provider.LOCAL: "Local Calendar",
    Provider.GOOGLE: "Google Calendar",
    Provider.OUTLOOK: "Outlook Calendar",
}


def normalize_email(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip().lower()


def normalize_emails(values: Iterable[Optional[str]]) -> Tuple[str, ...]:
    """Lower-case, drop blanks, dedupe and sort so output is deterministic."""
    return tuple(sorted({e for e in (normalize_email(v) for v in values) if e}))


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime             # timezone-aware
    end: datetime               # timezone-aware
    location: str = ""
    source: str = ""            # Provider value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "location": self.location,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalendarEvent":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            location=str(data.get("location") or ""),
            source=str(data.get("source") or ""),
        )


@dataclass(frozen=True)
class SyncedEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    attendee_emails: Tuple[str, ...] = ()
    location: str = ""
    source: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "attendee_emails", normalize_emails(self.attendee_emails))

    def to_calendar_event(self) -> CalendarEvent:
        return CalendarEvent(
            id=self.id,
            title=self.title,
            start=self.start,
            end=self.end,
            location=self.location,
            source=self.source,
        )


@dataclass(frozen=True)
class Contact:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "company": self.company,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contact":
        return cls(
            id=str(data["id"]),
            first_name=str(data.get("first_name", "")),
            last_name=str(data.get("last_name", "")),
            email=str(data.get("email", "")),
            company=str(data.get("company", "")),
        )


@dataclass(frozen=True)
class MeetingEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    linked_contact: Optional[Contact]
    attendee_emails: Tuple[str, ...]   # current user removed


@dataclass
class ManualMeeting:
    contact_id: str
    date: datetime
    occasion: str
    notes: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "date": self.date.isoformat(),
            "occasion": self.occasion,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManualMeeting":
        return cls(
            id=str(data["id"]),
            contact_id=str(data["contact_id"]),
            date=datetime.fromisoformat(data["date"]),
            occasion=str(data.get("occasion", "")),
            notes=str(data.get("notes", "")),
        )


@dataclass
class UserProfile:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    calendar_provider: Optional[Provider] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "calendar_provider": self.calendar_provider.value if self.calendar_provider else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        raw_provider = data.get("calendar_provider")
        try:
            provider = Provider(raw_provider) if raw_provider else None
        except ValueError:
            provider = None
        return cls(
            first_name=str(data.get("first_name", "")),
            last_name=str(data.get("last_name", "")),
            email=str(data.get("email", "")),
            calendar_provider=provider,
        )
