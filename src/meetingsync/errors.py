from __future__ import annotations
from enum import Enum
from typing import Optional

from .models import Provider


class ErrorKind(str, Enum):
    NOT_SIGNED_IN = "not_signed_in"
    UNAUTHORIZED = "unauthorized"
    TOKEN_MISSING = "token_missing"
    INVALID_REQUEST = "invalid_request"
    INVALID_RESPONSE = "invalid_response"
    API_FAILURE = "api_failure"
    NETWORK = "network"
    MISSING_CONFIGURATION = "missing_configuration"
    INVALID_CLIENT_CONFIGURATION = "invalid_client_configuration"
    OAUTH_FAILURE = "oauth_failure"
    CANCELLED = "cancelled"


# Errors that a fresh sign-in would fix.
RECOVERABLE_KINDS = frozenset({
    ErrorKind.NOT_SIGNED_IN,
    ErrorKind.UNAUTHORIZED,
    ErrorKind.TOKEN_MISSING,
})


def _name(provider: Optional[Provider]) -> str:
    return provider.display_name if provider else "Calendar"


class CalendarSyncError(RuntimeError):
    """Base error for everything a provider client can raise."""

    def __init__(self, kind: ErrorKind, message: str, *, provider: Optional[Provider] = None) -> None:
        self.kind = kind
        self.provider = provider
        self.message = message
        super().__init__(message)

    @property
    def recoverable(self) -> bool:
        return self.kind in RECOVERABLE_KINDS


class CalendarAuthError(CalendarSyncError):
    """Session or token is invalid; signing in again fixes it."""

    @classmethod
    def not_signed_in(cls, provider: Optional[Provider] = None) -> "CalendarAuthError":
        return cls(ErrorKind.NOT_SIGNED_IN, f"{_name(provider)} account is not connected.", provider=provider)

    @classmethod
    def unauthorized(cls, provider: Optional[Provider] = None) -> "CalendarAuthError":
        return cls(
            ErrorKind.UNAUTHORIZED,
            f"{_name(provider)} session expired. Please reconnect your account.",
            provider=provider,
        )

    @classmethod
    def token_missing(cls, provider: Optional[Provider] = None) -> "CalendarAuthError":
        return cls(
            ErrorKind.TOKEN_MISSING,
            f"{_name(provider)} authentication completed but no access token was returned.",
            provider=provider,
        )


class CalendarRequestError(CalendarSyncError):
    """Request could not be built, sent or understood."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        provider: Optional[Provider] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(kind, message, provider=provider)
        self.status_code = status_code

    @classmethod
    def invalid_request(cls, provider: Optional[Provider] = None, detail: str = "") -> "CalendarRequestError":
        message = f"Unable to prepare {_name(provider)} request."
        if detail:
            message = f"{message} {detail}"
        return cls(ErrorKind.INVALID_REQUEST, message, provider=provider)

    @classmethod
    def invalid_response(cls, provider: Optional[Provider] = None) -> "CalendarRequestError":
        return cls(ErrorKind.INVALID_RESPONSE, f"{_name(provider)} returned an invalid response.", provider=provider)

    @classmethod
    def api_failure(cls, status_code: int, provider: Optional[Provider] = None) -> "CalendarRequestError":
        return cls(
            ErrorKind.API_FAILURE,
            f"{_name(provider)} API failed with status code {status_code}.",
            provider=provider,
            status_code=status_code,
        )

    @classmethod
    def network(cls, detail: str, provider: Optional[Provider] = None) -> "CalendarRequestError":
        return cls(ErrorKind.NETWORK, f"{_name(provider)} request failed: {detail}", provider=provider)


class CalendarConfigurationError(CalendarSyncError):
    """App credentials are missing or malformed. Not retried."""

    @classmethod
    def missing(cls, detail: str, provider: Optional[Provider] = None) -> "CalendarConfigurationError":
        return cls(
            ErrorKind.MISSING_CONFIGURATION,
            f"{_name(provider)} sign-in is not configured: {detail}",
            provider=provider,
        )

    @classmethod
    def invalid_client(cls, detail: str, provider: Optional[Provider] = None) -> "CalendarConfigurationError":
        return cls(
            ErrorKind.INVALID_CLIENT_CONFIGURATION,
            f"{_name(provider)} sign-in is misconfigured: {detail}",
            provider=provider,
        )


class SignInError(CalendarSyncError):
    """Interactive sign-in did not complete."""

    @classmethod
    def cancelled(cls, provider: Optional[Provider] = None) -> "SignInError":
        return cls(ErrorKind.CANCELLED, f"{_name(provider)} sign-in was cancelled.", provider=provider)

    @classmethod
    def oauth_failure(cls, reason: str, provider: Optional[Provider] = None) -> "SignInError":
        return cls(ErrorKind.OAUTH_FAILURE, f"{_name(provider)} OAuth error: {reason}", provider=provider)
