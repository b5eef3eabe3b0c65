"""OAuth session handling for the cloud calendar providers.

Each cloud provider gets its own :class:`OAuthSession`: the interactive
installed-app (loopback) flow from ``google_auth_oauthlib`` for sign-in, an
async refresh-token exchange over ``httpx`` for silent renewal, and an
authorized-user JSON document on disk so the session survives restarts.
Sessions are plain objects owned by the composition root and handed to the
provider clients; nothing here is a process-wide singleton.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from google.auth import jwt
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import AccessDeniedError, OAuth2Error

from .cache import write_text_atomic
from .errors import (
    CalendarAuthError,
    CalendarConfigurationError,
    CalendarRequestError,
    SignInError,
)
from .models import Provider

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"
GOOGLE_CLIENT_ID_SUFFIX = ".apps.googleusercontent.com"
GOOGLE_SCOPES = (
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/calendar.readonly",
)

MICROSOFT_AUTHORITY = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0"
MICROSOFT_SCOPES = (
    "openid",
    "email",
    "offline_access",
    "https://graph.microsoft.com/Calendars.Read",
)

_SESSION_FILE_MODE = 0o600


@dataclass(frozen=True)
class OAuthClientConfig:
    provider: Provider
    client_id: str
    client_secret: str
    auth_uri: str
    token_uri: str
    scopes: Tuple[str, ...]
    revoke_uri: Optional[str] = None
    # Microsoft expects the scope list on refresh-token grants; Google does not.
    send_scope_on_refresh: bool = False

    @classmethod
    def google_from_file(cls, path: str) -> "OAuthClientConfig":
        provider = Provider.GOOGLE
        if not path:
            raise CalendarConfigurationError.missing("GOOGLE_CREDENTIALS_JSON is not set.", provider)

        p = Path(path).expanduser()
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise CalendarConfigurationError.missing(f"client secrets file {p} does not exist.", provider) from None
        except (OSError, ValueError) as e:
            raise CalendarConfigurationError.invalid_client(f"cannot read client secrets file {p}: {e}", provider) from e

        section = data.get("installed") or data.get("web") if isinstance(data, dict) else None
        if not isinstance(section, dict):
            raise CalendarConfigurationError.invalid_client(
                "client secrets file has no 'installed' or 'web' section.", provider
            )

        client_id = str(section.get("client_id") or "").strip()
        client_secret = str(section.get("client_secret") or "").strip()
        if not client_id:
            raise CalendarConfigurationError.missing("client_id is empty.", provider)
        if not client_id.endswith(GOOGLE_CLIENT_ID_SUFFIX):
            raise CalendarConfigurationError.invalid_client("client_id format is invalid.", provider)
        if not client_secret:
            raise CalendarConfigurationError.missing("client_secret is empty.", provider)

        return cls(
            provider=provider,
            client_id=client_id,
            client_secret=client_secret,
            auth_uri=str(section.get("auth_uri") or GOOGLE_AUTH_URI),
            token_uri=str(section.get("token_uri") or GOOGLE_TOKEN_URI),
            scopes=GOOGLE_SCOPES,
            revoke_uri=GOOGLE_REVOKE_URI,
        )

    @classmethod
    def microsoft(cls, client_id: str, client_secret: str, tenant: str = "common") -> "OAuthClientConfig":
        provider = Provider.OUTLOOK
        client_id = (client_id or "").strip()
        client_secret = (client_secret or "").strip()
        if not client_id:
            raise CalendarConfigurationError.missing("MICROSOFT_CLIENT_ID is not set.", provider)
        if not client_secret:
            raise CalendarConfigurationError.missing("MICROSOFT_CLIENT_SECRET is not set.", provider)

        base = MICROSOFT_AUTHORITY.format(tenant=(tenant or "common").strip())
        return cls(
            provider=provider,
            client_id=client_id,
            client_secret=client_secret,
            auth_uri=f"{base}/authorize",
            token_uri=f"{base}/token",
            scopes=MICROSOFT_SCOPES,
            send_scope_on_refresh=True,
        )

    def client_config(self) -> Dict[str, Any]:
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
                "redirect_uris": ["http://localhost"],
            }
        }


@dataclass(frozen=True)
class SessionToken:
    access_token: str
    account_email: str = ""


FlowFactory = Callable[[OAuthClientConfig], Any]


def installed_app_flow(config: OAuthClientConfig) -> InstalledAppFlow:
    return InstalledAppFlow.from_client_config(config.client_config(), scopes=list(config.scopes))


def account_from_id_token(id_token: Optional[str]) -> str:
    if not id_token:
        return ""
    try:
        claims = jwt.decode(id_token, verify=False)
    except ValueError:
        return ""
    return str(claims.get("email") or claims.get("preferred_username") or "").strip()


class OAuthSession:
    def __init__(
        self,
        config: OAuthClientConfig,
        session_path: Path,
        http_client: httpx.AsyncClient,
        *,
        flow_factory: Optional[FlowFactory] = None,
        redirect_port: int = 0,
    ) -> None:
        self.config = config
        self.session_path = Path(session_path)
        self._http = http_client
        self._flow_factory = flow_factory or installed_app_flow
        self._redirect_port = redirect_port
        self._credentials: Optional[Credentials] = None
        self._account = ""
        self._lock = asyncio.Lock()

    @property
    def provider(self) -> Provider:
        return self.config.provider

    @property
    def account_email(self) -> str:
        if self._credentials is None:
            self._load()
        return self._account

    def has_previous_sign_in(self) -> bool:
        return self._credentials is not None or self.session_path.exists()

    async def sign_in(self) -> SessionToken:
        flow = self._flow_factory(self.config)
        try:
            creds = await asyncio.to_thread(flow.run_local_server, port=self._redirect_port)
        except AccessDeniedError as e:
            raise SignInError.cancelled(self.provider) from e
        except OAuth2Error as e:
            raise SignInError.oauth_failure(e.description or e.error, self.provider) from e
        except Exception as e:
            raise SignInError.oauth_failure(str(e) or type(e).__name__, self.provider) from e

        token = (creds.token or "").strip()
        if not token:
            raise CalendarAuthError.token_missing(self.provider)

        async with self._lock:
            self._credentials = creds
            self._account = account_from_id_token(getattr(creds, "id_token", None))
            self._persist()
        logger.info("Signed in to %s as %s", self.provider.value, self._account or "<unknown>")
        return SessionToken(access_token=token, account_email=self._account)

    async def access_token(self, *, force_refresh: bool = False) -> str:
        """Current access token; exchanges the refresh token only when forced or empty."""
        async with self._lock:
            creds = self._load()
            if creds is None:
                raise CalendarAuthError.not_signed_in(self.provider)
            if creds.token and not force_refresh:
                return creds.token
            return await self._refresh(creds)

    async def sign_out(self) -> None:
        creds = self._load()
        if creds is not None and self.config.revoke_uri:
            token = creds.refresh_token or creds.token
            if token:
                try:
                    await self._http.post(self.config.revoke_uri, data={"token": token})
                except httpx.HTTPError as e:
                    logger.warning("Token revocation for %s failed: %s", self.provider.value, e)
        self.discard()

    def discard(self) -> None:
        self._credentials = None
        self._account = ""
        try:
            self.session_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s session file: %s", self.provider.value, e)

    async def _refresh(self, creds: Credentials) -> str:
        if not creds.refresh_token:
            raise CalendarAuthError.unauthorized(self.provider)

        data = {
            "grant_type": "refresh_token",
            "client_id": creds.client_id or self.config.client_id,
            "client_secret": creds.client_secret or self.config.client_secret,
            "refresh_token": creds.refresh_token,
        }
        if self.config.send_scope_on_refresh:
            data["scope"] = " ".join(self.config.scopes)

        try:
            response = await self._http.post(
                creds.token_uri or self.config.token_uri,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise CalendarRequestError.network(str(e), self.provider) from e

        if response.status_code in (400, 401):
            logger.warning("%s refresh token was rejected (%d)", self.provider.value, response.status_code)
            raise CalendarAuthError.unauthorized(self.provider)
        if not 200 <= response.status_code < 300:
            raise CalendarRequestError.api_failure(response.status_code, self.provider)

        try:
            payload = response.json()
        except ValueError as e:
            raise CalendarRequestError.invalid_response(self.provider) from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise CalendarAuthError.token_missing(self.provider)

        id_token = payload.get("id_token") or creds.id_token
        self._credentials = Credentials(
            token=access_token.strip(),
            refresh_token=payload.get("refresh_token") or creds.refresh_token,
            id_token=id_token,
            token_uri=creds.token_uri or self.config.token_uri,
            client_id=creds.client_id or self.config.client_id,
            client_secret=creds.client_secret or self.config.client_secret,
            scopes=creds.scopes,
        )
        self._account = account_from_id_token(id_token) or self._account
        self._persist()
        logger.debug("Refreshed %s access token", self.provider.value)
        return self._credentials.token

    def _load(self) -> Optional[Credentials]:
        if self._credentials is not None:
            return self._credentials
        if not self.session_path.exists():
            return None
        try:
            data = json.loads(self.session_path.read_text(encoding="utf-8"))
            creds = Credentials.from_authorized_user_info(data)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable %s session file: %s", self.provider.value, e)
            return None
        self._credentials = creds
        self._account = str(data.get("account_email") or "")
        return creds

    def _persist(self) -> None:
        if self._credentials is None:
            return
        data = json.loads(self._credentials.to_json())
        data["account_email"] = self._account
        try:
            write_text_atomic(self.session_path, json.dumps(data, indent=2), mode=_SESSION_FILE_MODE)
        except OSError as e:
            logger.warning("Could not persist %s session: %s", self.provider.value, e)
