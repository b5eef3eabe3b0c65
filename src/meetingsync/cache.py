from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import json
import logging
import os
import tempfile

from .models import CalendarEvent

logger = logging.getLogger(__name__)


def write_text_atomic(path: Path, text: str, mode: Optional[int] = None) -> None:
    """Write via a sibling temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        if mode is not None:
            os.fchmod(fd, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def load_events(path: str) -> List[CalendarEvent]:
    p = Path(path)
    if not p.exists():
        return []
    data: Any = json.loads(p.read_text(encoding="utf-8"))
    items: List[Dict[str, Any]] = data.get("events", []) if isinstance(data, dict) else []
    return [CalendarEvent.from_dict(item) for item in items]


def save_events(path: str, events: Sequence[CalendarEvent]) -> None:
    payload = {"events": [e.to_dict() for e in events]}
    write_text_atomic(Path(path), json.dumps(payload, indent=2, ensure_ascii=False))


class EventCache:
    """Last successfully fetched events for one provider, for offline display only."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[CalendarEvent]:
        try:
            return load_events(str(self.path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable event cache %s: %s", self.path, e)
            return []

    def save(self, events: Sequence[CalendarEvent]) -> bool:
        try:
            save_events(str(self.path), events)
        except OSError as e:
            logger.warning("Could not write event cache %s: %s", self.path, e)
            return False
        return True
