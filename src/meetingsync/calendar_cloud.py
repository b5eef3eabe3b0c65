from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from .cache import EventCache
from .credential_store import CredentialStore
from .errors import CalendarAuthError, CalendarRequestError, CalendarSyncError
from .models import CalendarEvent, Provider, SyncedEvent
from .oauth import OAuthSession

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_EVENT_DURATION = timedelta(hours=1)


class SignInState(str, Enum):
    SIGNED_OUT = "signed_out"
    SIGNING_IN = "signing_in"
    SIGNED_IN = "signed_in"
    TOKEN_EXPIRING = "token_expiring"


class CloudCalendarClient:
    """Shared token lifecycle and request flow for the OAuth-backed providers.

    Subclasses describe the provider's list-events request and how to map its
    payload; this class owns sign-in state, token selection, the single
    refresh-and-retry on 401, and the offline cache.
    """

    provider: Provider

    def __init__(
        self,
        session: OAuthSession,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        cache: EventCache,
        *,
        window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        self._session = session
        self._credentials = credential_store
        self._http = http_client
        self._cache = cache
        self.window = window
        self._state = SignInState.SIGNED_OUT
        self._account_email = ""

    @property
    def state(self) -> SignInState:
        return self._state

    @property
    def is_signed_in(self) -> bool:
        return self._state in (SignInState.SIGNED_IN, SignInState.TOKEN_EXPIRING)

    @property
    def account_email(self) -> str:
        return self._account_email or self._session.account_email

    async def restore_session(self) -> bool:
        if self._session.has_previous_sign_in():
            try:
                token = await self._session.access_token()
            except CalendarSyncError as e:
                logger.info("Could not restore %s session: %s", self.provider.value, e)
            else:
                self._mark_signed_in(token)
                return True
        if self._credentials.read(self.provider):
            self._state = SignInState.SIGNED_IN
            return True
        self._state = SignInState.SIGNED_OUT
        return False

    async def sign_in(self) -> None:
        self._state = SignInState.SIGNING_IN
        try:
            result = await self._session.sign_in()
        except CalendarSyncError:
            self._state = SignInState.SIGNED_OUT
            raise
        self._account_email = result.account_email
        self._mark_signed_in(result.access_token)

    async def sign_out(self) -> None:
        await self._session.sign_out()
        self._credentials.clear(self.provider)
        self._state = SignInState.SIGNED_OUT
        self._account_email = ""

    async def fetch_events_in_window(self, start: datetime, end: Optional[datetime] = None) -> List[SyncedEvent]:
        end = end or start + self.window
        url, params, headers = self._prepare_request(start, end)

        token = await self._valid_access_token()
        response = await self._send(url, params, headers, token)
        if response.status_code == 401:
            logger.info("%s returned 401; refreshing token once", self.provider.value)
            self._state = SignInState.TOKEN_EXPIRING
            token = await self._forced_refresh()
            response = await self._send(url, params, headers, token)
            if response.status_code == 401:
                self._expire_session()
                raise CalendarAuthError.unauthorized(self.provider)
            self._state = SignInState.SIGNED_IN

        if not 200 <= response.status_code < 300:
            raise CalendarRequestError.api_failure(response.status_code, self.provider)

        try:
            payload = response.json()
        except ValueError as e:
            raise CalendarRequestError.invalid_response(self.provider) from e
        if not isinstance(payload, dict):
            raise CalendarRequestError.invalid_response(self.provider)

        events = [e for e in (self._map_item(item) for item in self._items(payload)) if e is not None]
        self._cache.save([e.to_calendar_event() for e in events])
        logger.debug("Fetched %d %s events", len(events), self.provider.value)
        return events

    async def fetch_calendar_events(self, start: datetime, end: Optional[datetime] = None) -> List[CalendarEvent]:
        return [e.to_calendar_event() for e in await self.fetch_events_in_window(start, end)]

    def cached_events(self) -> List[CalendarEvent]:
        return self._cache.load()

    # Provider hooks -------------------------------------------------------

    def _build_request(self, start: datetime, end: datetime) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        raise NotImplementedError

    def _items(self, payload: Dict[str, Any]) -> Iterable[Any]:
        raise NotImplementedError

    def _map_item(self, item: Any) -> Optional[SyncedEvent]:
        raise NotImplementedError

    # Internals ------------------------------------------------------------

    def _prepare_request(self, start: datetime, end: datetime) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        if start.tzinfo is None or end.tzinfo is None:
            raise CalendarRequestError.invalid_request(self.provider, "Window bounds must be timezone-aware.")
        if end < start:
            raise CalendarRequestError.invalid_request(self.provider, "Window end precedes its start.")
        return self._build_request(start, end)

    async def _valid_access_token(self) -> str:
        try:
            token = await self._session.access_token()
        except CalendarSyncError as e:
            logger.debug("Silent %s session token unavailable: %s", self.provider.value, e)
        else:
            self._mark_signed_in(token)
            return token

        cached = self._credentials.read(self.provider)
        if cached:
            self._state = SignInState.SIGNED_IN
            return cached

        self._state = SignInState.SIGNED_OUT
        raise CalendarAuthError.not_signed_in(self.provider)

    async def _forced_refresh(self) -> str:
        try:
            token = await self._session.access_token(force_refresh=True)
        except CalendarAuthError as e:
            logger.warning("%s token refresh failed: %s", self.provider.value, e)
            self._expire_session()
            raise CalendarAuthError.unauthorized(self.provider) from e
        self._mark_signed_in(token)
        return token

    async def _send(self, url: str, params: Dict[str, Any], headers: Dict[str, str], token: str) -> httpx.Response:
        request_headers = {"Authorization": f"Bearer {token}", **headers}
        try:
            return await self._http.get(url, params=params, headers=request_headers)
        except httpx.HTTPError as e:
            raise CalendarRequestError.network(str(e), self.provider) from e

    def _mark_signed_in(self, token: str) -> None:
        self._credentials.save(self.provider, token)
        self._state = SignInState.SIGNED_IN

    def _expire_session(self) -> None:
        # Unrecoverable: drop both the bearer token and the session.
        self._session.discard()
        self._credentials.clear(self.provider)
        self._state = SignInState.SIGNED_OUT
        self._account_email = ""

