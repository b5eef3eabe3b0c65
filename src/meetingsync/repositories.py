from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set
import json
import logging

from .cache import write_text_atomic
from .models import Contact, ManualMeeting, Provider, UserProfile

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"
PROFILE_FILE = "user_profile.json"
CONTACTS_FILE = "contacts.json"
MANUAL_MEETINGS_FILE = "manual_meetings.json"


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return default


def _write_json(path: Path, data: Any) -> None:
    write_text_atomic(path, json.dumps(data, indent=2, ensure_ascii=False))


class SettingsRepository:
    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / SETTINGS_FILE

    def calendar_providers(self) -> List[Provider]:
        data = _read_json(self.path, {})
        raw = data.get("calendar_providers", []) if isinstance(data, dict) else []
        providers: List[Provider] = []
        for value in raw if isinstance(raw, list) else []:
            try:
                provider = Provider(value)
            except ValueError:
                logger.warning("Ignoring unknown calendar provider %r in %s", value, self.path)
                continue
            if provider not in providers:
                providers.append(provider)
        return providers

    def save_calendar_providers(self, providers: Iterable[Provider]) -> None:
        data = _read_json(self.path, {})
        if not isinstance(data, dict):
            data = {}
        data["calendar_providers"] = [p.value for p in providers]
        _write_json(self.path, data)


class UserProfileStore:
    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / PROFILE_FILE

    @property
    def profile(self) -> UserProfile:
        data = _read_json(self.path, {})
        return UserProfile.from_dict(data) if isinstance(data, dict) else UserProfile()

    def save(self, profile: UserProfile) -> None:
        _write_json(self.path, profile.to_dict())


class ProviderSelection:
    """Which calendars the user syncs.

    An explicit selection in settings wins; with none saved, the provider picked
    in the user profile (if any) is the only active one.
    """

    def __init__(self, settings: SettingsRepository, profiles: UserProfileStore) -> None:
        self._settings = settings
        self._profiles = profiles

    def active_providers(self) -> List[Provider]:
        providers = self._settings.calendar_providers()
        if providers:
            return providers
        fallback = self._profiles.profile.calendar_provider
        return [fallback] if fallback else []

    def has_configured_providers(self) -> bool:
        return bool(self._settings.calendar_providers())

    def is_enabled(self, provider: Provider) -> bool:
        return provider in self.active_providers()

    def update_selection(self, providers: Set[Provider]) -> List[Provider]:
        ordered = [p for p in Provider if p in providers]
        self._settings.save_calendar_providers(ordered)
        return ordered

    def set_provider_enabled(self, provider: Provider, enabled: bool) -> List[Provider]:
        selected = set(self.active_providers())
        if enabled:
            selected.add(provider)
        else:
            selected.discard(provider)
        return self.update_selection(selected)


class ContactRepository:
    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / CONTACTS_FILE

    @property
    def contacts(self) -> List[Contact]:
        data = _read_json(self.path, [])
        contacts: List[Contact] = []
        for item in data if isinstance(data, list) else []:
            try:
                contacts.append(Contact.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.warning("Skipping malformed contact in %s: %s", self.path, e)
        return contacts

    def get(self, contact_id: str) -> Optional[Contact]:
        return next((c for c in self.contacts if c.id == contact_id), None)

    def add(self, contact: Contact) -> None:
        self._save(self.contacts + [contact])

    def update(self, contact: Contact) -> None:
        self._save([contact if c.id == contact.id else c for c in self.contacts])

    def delete(self, contact: Contact) -> None:
        self._save([c for c in self.contacts if c.id != contact.id])

    def _save(self, contacts: List[Contact]) -> None:
        _write_json(self.path, [c.to_dict() for c in contacts])


class ManualMeetingRepository:
    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / MANUAL_MEETINGS_FILE

    def all(self) -> List[ManualMeeting]:
        data = _read_json(self.path, [])
        meetings: List[ManualMeeting] = []
        for item in data if isinstance(data, list) else []:
            try:
                meetings.append(ManualMeeting.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed manual meeting in %s: %s", self.path, e)
        return meetings

    def meetings_on(self, day: datetime) -> List[ManualMeeting]:
        target = day.date()
        same_day = [m for m in self.all() if m.date.date() == target]
        return sorted(same_day, key=lambda m: m.date)

    def add(self, meeting: ManualMeeting) -> None:
        self._save(self.all() + [meeting])

    def update(self, meeting: ManualMeeting) -> None:
        self._save([meeting if m.id == meeting.id else m for m in self.all()])

    def delete(self, meeting: ManualMeeting) -> None:
        self._save([m for m in self.all() if m.id != meeting.id])

    def _save(self, meetings: List[ManualMeeting]) -> None:
        _write_json(self.path, [m.to_dict() for m in meetings])
