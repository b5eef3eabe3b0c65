from __future__ import annotations

import argparse
import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
from dotenv import load_dotenv

from .aggregator import CalendarAggregator
from .cache import EventCache
from .calendar_cloud import CloudCalendarClient
from .calendar_google import GoogleCalendarClient
from .calendar_local import LocalCalendarClient, VdirCalendarStore
from .calendar_outlook import OutlookCalendarClient
from .config import AppConfig, load_config
from .credential_store import CredentialStore
from .errors import CalendarConfigurationError, CalendarSyncError
from .models import Provider
from .oauth import OAuthClientConfig, OAuthSession
from .orchestrator import MeetingOrchestrator
from .protocols import CalendarSource
from .repositories import (
    ContactRepository,
    ManualMeetingRepository,
    ProviderSelection,
    SettingsRepository,
    UserProfileStore,
)

logger = logging.getLogger(__name__)

CONFIG_PATH_DEFAULT = "config.yaml"

CACHE_FILES = {
    Provider.GOOGLE: "google_calendar_events.json",
    Provider.OUTLOOK: "outlook_calendar_events.json",
}


@dataclass
class App:
    config: AppConfig
    tz: ZoneInfo
    sources: Dict[Provider, CalendarSource]
    selection: ProviderSelection
    aggregator: CalendarAggregator
    orchestrator: MeetingOrchestrator

    def cloud_client(self, provider: Provider) -> CloudCalendarClient:
        client = self.sources.get(provider)
        if not isinstance(client, CloudCalendarClient):
            raise CalendarConfigurationError.missing("provider is disabled in config.yaml.", provider)
        return client

    def local_client(self) -> Optional[LocalCalendarClient]:
        client = self.sources.get(Provider.LOCAL)
        return client if isinstance(client, LocalCalendarClient) else None


def _oauth_config(cfg: AppConfig, provider: Provider) -> OAuthClientConfig:
    if provider is Provider.GOOGLE:
        return OAuthClientConfig.google_from_file(cfg.google.client_secrets_path)
    return OAuthClientConfig.microsoft(cfg.outlook.client_id, cfg.outlook.client_secret, cfg.outlook.tenant)


def build_cloud_client(cfg: AppConfig, provider: Provider, http: httpx.AsyncClient, tz: ZoneInfo) -> CloudCalendarClient:
    data = cfg.data_path
    session = OAuthSession(_oauth_config(cfg, provider), data / "sessions" / f"{provider.value}.json", http)
    store = CredentialStore(data / "credentials")
    cache = EventCache(data / "cache" / CACHE_FILES[provider])
    window = timedelta(hours=cfg.window_hours)
    if provider is Provider.GOOGLE:
        return GoogleCalendarClient(
            session, store, http, cache, calendar_id=cfg.google.calendar_id, tz=tz, window=window
        )
    return OutlookCalendarClient(session, store, http, cache, tz=tz, window=window)


def build_app(cfg: AppConfig, http: httpx.AsyncClient) -> App:
    tz = ZoneInfo(cfg.timezone)
    data = cfg.data_path
    window = timedelta(hours=cfg.window_hours)

    sources: Dict[Provider, CalendarSource] = {}
    if cfg.local.enabled:
        store = VdirCalendarStore(
            Path(cfg.local.path),
            data / "local_permission.json",
            tz=tz,
            poll_interval=cfg.local.poll_interval_seconds,
        )
        sources[Provider.LOCAL] = LocalCalendarClient(
            store, window=window, debounce_seconds=cfg.local.debounce_ms / 1000
        )

    for provider, enabled in ((Provider.GOOGLE, cfg.google.enabled), (Provider.OUTLOOK, cfg.outlook.enabled)):
        if not enabled:
            continue
        try:
            sources[provider] = build_cloud_client(cfg, provider, http, tz)
        except CalendarConfigurationError as e:
            logger.warning("%s unavailable: %s", provider.display_name, e.message)

    profiles = UserProfileStore(data)
    selection = ProviderSelection(SettingsRepository(data), profiles)
    aggregator = CalendarAggregator(sources, selection, window=window)
    orchestrator = MeetingOrchestrator(
        sources, selection, profiles, ContactRepository(data), ManualMeetingRepository(data)
    )
    return App(cfg, tz, sources, selection, aggregator, orchestrator)


def _day_start(value: Optional[str], tz: ZoneInfo) -> datetime:
    if value:
        day = datetime.strptime(value, "%Y-%m-%d")
        return day.replace(tzinfo=tz)
    return datetime.now(tz=tz).replace(hour=0, minute=0, second=0, microsecond=0)


def _fmt(dt: datetime, tz: ZoneInfo) -> str:
    return dt.astimezone(tz).strftime("%H:%M")


async def cmd_sync(app: App, args: argparse.Namespace) -> int:
    day = _day_start(args.date, app.tz)
    meetings = await app.orchestrator.sync_meeting_events(day)
    if app.orchestrator.is_local_access_denied():
        print("Local calendar access is not granted; run `meetingsync grant-local`.")

    print(f"Meetings on {day:%Y-%m-%d}: {len(meetings)}")
    for m in meetings:
        who = m.linked_contact.full_name if m.linked_contact else ", ".join(m.attendee_emails)
        print(f"  {_fmt(m.start, app.tz)}-{_fmt(m.end, app.tz)}  {m.title}  ({who})")

    manual = app.orchestrator.manual_meetings(day)
    if manual:
        print(f"Manual meetings: {len(manual)}")
    for mm in manual:
        contact = app.orchestrator.contact_for(mm)
        name = contact.full_name if contact else "unknown contact"
        print(f"  {_fmt(mm.date, app.tz)}  {mm.occasion}  ({name})")
    return 0


async def cmd_events(app: App, args: argparse.Namespace) -> int:
    events = await app.aggregator.fetch_today_events()
    for e in events:
        loc = f" @ {e.location}" if e.location else ""
        print(f"{_fmt(e.start, app.tz)}-{_fmt(e.end, app.tz)}  {e.title}{loc}  [{e.source}]")
    if app.aggregator.last_error_message:
        print(f"Last error: {app.aggregator.last_error_message}")
    return 0


async def cmd_sign_in(app: App, args: argparse.Namespace) -> int:
    provider = Provider(args.provider)
    client = app.cloud_client(provider)
    await client.sign_in()
    app.selection.set_provider_enabled(provider, True)
    print(f"Signed in to {provider.display_name} as {client.account_email or 'unknown account'}")
    return 0


async def cmd_sign_out(app: App, args: argparse.Namespace) -> int:
    provider = Provider(args.provider)
    await app.cloud_client(provider).sign_out()
    app.selection.set_provider_enabled(provider, False)
    print(f"Signed out of {provider.display_name}")
    return 0


async def cmd_grant_local(app: App, args: argparse.Namespace) -> int:
    client = app.local_client()
    if client is None:
        print("Local calendar is disabled in config.yaml.")
        return 1
    granted = await client.request_access()
    if granted:
        app.selection.set_provider_enabled(Provider.LOCAL, True)
        print("Local calendar access granted")
        return 0
    print(f"Local calendar directory {app.config.local.path} is not readable; access denied")
    return 1


async def cmd_watch_local(app: App, args: argparse.Namespace) -> int:
    client = app.local_client()
    if client is None or not client.has_access:
        print("Local calendar access is not granted; run `meetingsync grant-local`.")
        return 1
    print(f"Watching {app.config.local.path} (Ctrl-C to stop)")
    async for change in client.watch():
        if change.changed:
            events = await client.fetch_calendar_events(datetime.now(tz=app.tz))
            print(f"Local calendar changed; {len(events)} upcoming events")
    return 0


COMMANDS = {
    "sync": cmd_sync,
    "events": cmd_events,
    "sign-in": cmd_sign_in,
    "sign-out": cmd_sign_out,
    "grant-local": cmd_grant_local,
    "watch-local": cmd_watch_local,
}


async def restore_sessions(app: App) -> None:
    for provider, source in app.sources.items():
        if not isinstance(source, CloudCalendarClient):
            continue
        await source.restore_session()
        if source.is_signed_in:
            logger.info("%s connected as %s", provider.display_name, source.account_email or "<unknown>")
        else:
            logger.info("%s not connected", provider.display_name)


async def run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    async with httpx.AsyncClient(timeout=cfg.http.timeout_seconds) as http:
        app = build_app(cfg, http)
        if args.command in ("sync", "events"):
            await restore_sessions(app)
        return await COMMANDS[args.command](app, args)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="meetingsync")
    ap.add_argument("--config", default=CONFIG_PATH_DEFAULT)
    ap.add_argument("--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Meetings with known contacts for a day")
    sync.add_argument("--date", help="YYYY-MM-DD (default: today)")
    sub.add_parser("events", help="Merged timeline for the next window")
    providers = [Provider.GOOGLE.value, Provider.OUTLOOK.value]
    sub.add_parser("sign-in").add_argument("provider", choices=providers)
    sub.add_parser("sign-out").add_argument("provider", choices=providers)
    sub.add_parser("grant-local", help="Allow reading the local calendar directory")
    sub.add_parser("watch-local", help="Report local calendar changes until interrupted")
    return ap


def prepare_environment() -> None:
    load_dotenv()
    # Microsoft echoes back fewer scopes than requested (openid/offline_access).
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def main(argv: Optional[List[str]] = None) -> int:
    prepare_environment()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except CalendarSyncError as e:
        print(e.message)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
