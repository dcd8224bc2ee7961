from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Sequence

import google.auth
import requests
from google.auth import exceptions as google_exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from services.cache_store import CacheStoreError, ExpiringCache
from services.credentials import ServiceAccountCredential
from services.errors import AuthError, ConfigurationError, NetworkError

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
DEFAULT_EXPIRES_IN_SECONDS = 3600
DEFAULT_MARGIN_SECONDS = 60
CACHE_KEY_PREFIX = "firebase_access_token"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_in: int


class _TimeoutRequest(Request):
    """google-auth transport adapter that enforces our timeout on every call."""

    def __init__(self, session: Optional[requests.Session], timeout_seconds: float) -> None:
        super().__init__(session=session)
        self._timeout_seconds = timeout_seconds

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url,
            method=method,
            body=body,
            headers=headers,
            timeout=self._timeout_seconds,
            **kwargs,
        )


def _seconds_until(expiry: Optional[datetime]) -> int:
    if expiry is None:
        return DEFAULT_EXPIRES_IN_SECONDS
    # google-auth reports naive UTC datetimes
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return int((expiry - datetime.now(timezone.utc)).total_seconds())


class TokenIssuer(ABC):
    """Exchanges an identity for a short-lived bearer token."""

    @abstractmethod
    def issue(self) -> IssuedToken:
        ...


class _GoogleCredentialsIssuer(TokenIssuer):
    def __init__(self, session: Optional[requests.Session], timeout_seconds: float) -> None:
        self._request = _TimeoutRequest(session, timeout_seconds)

    @abstractmethod
    def _credentials(self):
        ...

    def issue(self) -> IssuedToken:
        credentials = self._credentials()
        try:
            credentials.refresh(self._request)
        except google_exceptions.RefreshError as exc:
            raise AuthError(f"Token request rejected by identity provider: {exc}") from exc
        except google_exceptions.TransportError as exc:
            raise NetworkError(f"Failed to reach identity provider: {exc}") from exc

        token = str(credentials.token or "").strip()
        if not token:
            raise AuthError("Identity provider returned an empty access token")

        return IssuedToken(token=token, expires_in=_seconds_until(credentials.expiry))


class ServiceAccountTokenIssuer(_GoogleCredentialsIssuer):
    """OAuth2 JWT-bearer exchange signed with the service-account private key."""

    def __init__(
        self,
        credential: ServiceAccountCredential,
        scopes: Sequence[str] = (FCM_SCOPE,),
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(session, timeout_seconds)
        try:
            self._google_credentials = service_account.Credentials.from_service_account_info(
                credential.to_service_account_info(),
                scopes=list(scopes),
            )
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Invalid service account credential: {exc}") from exc

    def _credentials(self):
        return self._google_credentials


class ApplicationDefaultTokenIssuer(_GoogleCredentialsIssuer):
    """Delegates to the environment's application-default credentials."""

    def __init__(
        self,
        scopes: Sequence[str] = (FCM_SCOPE,),
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(session, timeout_seconds)
        try:
            self._google_credentials, self.project_id = google.auth.default(scopes=list(scopes))
        except google_exceptions.DefaultCredentialsError as exc:
            raise ConfigurationError(f"Application default credentials unavailable: {exc}") from exc

    def _credentials(self):
        return self._google_credentials


def cache_key_for(project_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}.{project_id}"


class TokenCache:
    """
    Bearer-token cache in front of a TokenIssuer.

    Tokens are stored with an expiry `margin_seconds` earlier than the one the
    provider declared. Check, issue and store run under a per-key lock, so
    concurrent misses on the same key share a single issuance. A failed
    issuance leaves the store untouched.
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        store: ExpiringCache,
        default_key: str,
        margin_seconds: int = DEFAULT_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._issuer = issuer
        self._store = store
        self._default_key = default_key
        self._margin_seconds = margin_seconds
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, key: Optional[str] = None) -> str:
        key = key or self._default_key

        cached = self._store.get(key)
        if cached:
            return cached

        with self._lock_for(key):
            # another caller may have stored a token while we waited
            cached = self._store.get(key)
            if cached:
                return cached

            logger.info("token | cache miss, requesting access token key=%s", key)
            issued = self._issuer.issue()

            lifetime = issued.expires_in - self._margin_seconds
            if lifetime <= 0:
                logger.warning(
                    "token | expires_in=%d within margin=%d, not caching",
                    issued.expires_in,
                    self._margin_seconds,
                )
                return issued.token

            try:
                self._store.set(key, issued.token, self._clock() + lifetime)
            except CacheStoreError as exc:
                logger.warning("token | failed to store access token: %s", exc)
            return issued.token

    def invalidate(self, key: Optional[str] = None) -> None:
        key = key or self._default_key
        with self._lock_for(key):
            self._store.delete(key)
