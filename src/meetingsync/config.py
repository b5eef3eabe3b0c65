from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import os
import yaml

DEFAULT_DATA_DIR = "~/.local/share/meetingsync"

@dataclass
class HttpConfig:
    timeout_seconds: float

@dataclass
class GoogleConfig:
    enabled: bool
    calendar_id: str
    client_secrets_path: str

@dataclass
class OutlookConfig:
    enabled: bool
    tenant: str
    client_id: str
    client_secret: str

@dataclass
class LocalConfig:
    enabled: bool
    path: str
    debounce_ms: int
    poll_interval_seconds: float

@dataclass
class AppConfig:
    timezone: str
    window_hours: int
    data_dir: str
    http: HttpConfig
    google: GoogleConfig
    outlook: OutlookConfig
    local: LocalConfig

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

def _env_or(value: Any, env_key: str) -> str:
    # Values in config.yaml win; secrets normally come from the environment/.env.
    if value:
        return str(value)
    return os.environ.get(env_key, "")

def load_config(path: str) -> AppConfig:
    p = Path(path)
    data: Dict[str, Any] = {}
    if p.exists():
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    http = data.get("http", {}) or {}
    google = data.get("google", {}) or {}
    outlook = data.get("outlook", {}) or {}
    local = data.get("local", {}) or {}

    return AppConfig(
        timezone=str(data.get("timezone", "UTC")),
        window_hours=int(data.get("window_hours", 24)),
        data_dir=str(data.get("data_dir") or os.environ.get("MEETINGSYNC_DATA_DIR") or DEFAULT_DATA_DIR),
        http=HttpConfig(
            timeout_seconds=float(http.get("timeout_seconds", 30.0)),
        ),
        google=GoogleConfig(
            enabled=bool(google.get("enabled", True)),
            calendar_id=str(google.get("calendar_id", "primary")),
            client_secrets_path=_env_or(google.get("client_secrets_path"), "GOOGLE_CREDENTIALS_JSON"),
        ),
        outlook=OutlookConfig(
            enabled=bool(outlook.get("enabled", True)),
            tenant=str(outlook.get("tenant", "common")),
            client_id=_env_or(outlook.get("client_id"), "MICROSOFT_CLIENT_ID"),
            client_secret=_env_or(outlook.get("client_secret"), "MICROSOFT_CLIENT_SECRET"),
        ),
        local=LocalConfig(
            enabled=bool(local.get("enabled", True)),
            path=str(local.get("path", "~/.calendars")),
            debounce_ms=int(local.get("debounce_ms", 450)),
            poll_interval_seconds=float(local.get("poll_interval_seconds", 2.0)),
        ),
    )
