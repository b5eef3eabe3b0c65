"""Owner-only, file-backed storage of one bearer token per cloud provider.

Each token lives in its own file named after a fixed ``service.account`` pair,
inside a directory only the current user can enter. Reads that fail for any
reason are reported as "no token"; writes are best-effort.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from .cache import write_text_atomic
from .models import Provider

logger = logging.getLogger(__name__)

SERVICE = "meetingsync"

ACCOUNTS: Dict[Provider, str] = {
    Provider.GOOGLE: "google_calendar_access_token",
    Provider.OUTLOOK: "microsoft_calendar_access_token",
}

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class CredentialStore:
    def __init__(self, directory: Path, service: str = SERVICE) -> None:
        self.directory = Path(directory)
        self.service = service

    def path_for(self, provider: Provider) -> Path:
        try:
            account = ACCOUNTS[provider]
        except KeyError:
            raise ValueError(f"{provider.display_name} does not use bearer tokens") from None
        return self.directory / f"{self.service}.{account}"

    def save(self, provider: Provider, token: str) -> None:
        path = self.path_for(provider)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self.directory.chmod(_DIR_MODE)
            write_text_atomic(path, token, mode=_FILE_MODE)
        except OSError as e:
            logger.warning("Could not persist %s token: %s", provider.value, e)

    def read(self, provider: Provider) -> Optional[str]:
        path = self.path_for(provider)
        try:
            token = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read %s token: %s", provider.value, e)
            return None
        return token or None

    def clear(self, provider: Provider) -> None:
        try:
            self.path_for(provider).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s token: %s", provider.value, e)
