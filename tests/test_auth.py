"""Tests for token issuance and the token cache."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from google.auth import exceptions as google_exceptions

from conftest import FAKE_PEM, PROJECT_ID, FakeIssuer
from services import auth
from services.auth import (
    ApplicationDefaultTokenIssuer,
    ServiceAccountTokenIssuer,
    TokenCache,
    cache_key_for,
)
from services.cache_store import MemoryCache
from services.credentials import ServiceAccountCredential
from services.errors import AuthError, ConfigurationError, NetworkError

KEY = cache_key_for(PROJECT_ID)


# ── TokenCache ───────────────────────────────────────────────────────────────

def test_second_get_within_validity_reuses_token(token_cache, issuer):
    first = token_cache.get()
    second = token_cache.get()

    assert first == second == "token-1"
    assert issuer.calls == 1


def test_token_expires_at_margin_before_provider_expiry(token_cache, issuer, clock):
    assert token_cache.get() == "token-1"

    clock.advance(3600 - 60 - 1)
    assert token_cache.get() == "token-1"

    clock.advance(1)
    assert token_cache.get() == "token-2"
    assert issuer.calls == 2


def test_custom_margin(issuer, store, clock):
    cache = TokenCache(issuer=issuer, store=store, default_key=KEY, margin_seconds=600, clock=clock)
    cache.get()
    clock.advance(3000)
    assert cache.get() == "token-2"


def test_token_with_lifetime_inside_margin_is_not_cached(store, clock):
    issuer = FakeIssuer(expires_in=30)
    cache = TokenCache(issuer=issuer, store=store, default_key=KEY, clock=clock)

    assert cache.get() == "token-1"
    assert cache.get() == "token-2"
    assert store.get(KEY) is None


def test_issuer_failure_propagates_and_caches_nothing(store, clock):
    issuer = FakeIssuer(error=AuthError("invalid_grant"))
    cache = TokenCache(issuer=issuer, store=store, default_key=KEY, clock=clock)

    with pytest.raises(AuthError, match="invalid_grant"):
        cache.get()
    assert store.get(KEY) is None

    issuer.error = None
    assert cache.get() == "token-2"


def test_issuer_failure_keeps_other_cached_tokens(token_cache, issuer, store):
    assert token_cache.get("other") == "token-1"

    issuer.error = NetworkError("unreachable")
    with pytest.raises(NetworkError):
        token_cache.get(KEY)

    assert store.get("other") == "token-1"


def test_invalidate_forces_reissue(token_cache, issuer):
    token_cache.get()
    token_cache.invalidate()
    assert token_cache.get() == "token-2"


def test_concurrent_misses_share_one_issuance(store, clock):
    issuer = FakeIssuer(delay=0.05)
    cache = TokenCache(issuer=issuer, store=store, default_key=KEY, clock=clock)
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def worker():
        barrier.wait()
        token = cache.get()
        with results_lock:
            results.append(token)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert issuer.calls == 1
    assert results == ["token-1"] * workers


def test_store_write_failure_still_returns_token(issuer, clock):
    store = MagicMock()
    store.get.return_value = None
    store.set.side_effect = auth.CacheStoreError("disk full")
    cache = TokenCache(issuer=issuer, store=store, default_key=KEY, clock=clock)

    assert cache.get() == "token-1"


# ── ServiceAccountTokenIssuer ────────────────────────────────────────────────

@pytest.fixture
def credential():
    return ServiceAccountCredential(
        client_email="svc@demo-project.iam.gserviceaccount.com",
        private_key=FAKE_PEM,
        project_id=PROJECT_ID,
    )


@pytest.fixture
def google_creds(monkeypatch):
    creds = MagicMock()
    creds.token = "ya29.fresh"
    creds.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(seconds=3600)
    factory = MagicMock(return_value=creds)
    monkeypatch.setattr(auth.service_account.Credentials, "from_service_account_info", factory)
    return creds


def test_service_account_issuer_returns_token_and_lifetime(credential, google_creds):
    issued = ServiceAccountTokenIssuer(credential).issue()

    assert issued.token == "ya29.fresh"
    assert 3590 <= issued.expires_in <= 3600
    google_creds.refresh.assert_called_once()


def test_service_account_issuer_requests_firebase_scope(credential, google_creds):
    ServiceAccountTokenIssuer(credential)

    factory = auth.service_account.Credentials.from_service_account_info
    info = factory.call_args.args[0]
    assert info["client_email"] == credential.client_email
    assert factory.call_args.kwargs["scopes"] == [auth.FCM_SCOPE]


def test_missing_expiry_assumes_one_hour(credential, google_creds):
    google_creds.expiry = None
    assert ServiceAccountTokenIssuer(credential).issue().expires_in == 3600


def test_refresh_error_maps_to_auth_error(credential, google_creds):
    google_creds.refresh.side_effect = google_exceptions.RefreshError("invalid_grant: Invalid JWT Signature.")

    with pytest.raises(AuthError, match="invalid_grant"):
        ServiceAccountTokenIssuer(credential).issue()


def test_transport_error_maps_to_network_error(credential, google_creds):
    google_creds.refresh.side_effect = google_exceptions.TransportError("timed out")

    with pytest.raises(NetworkError):
        ServiceAccountTokenIssuer(credential).issue()


def test_empty_token_is_auth_error(credential, google_creds):
    google_creds.token = None
    with pytest.raises(AuthError):
        ServiceAccountTokenIssuer(credential).issue()


def test_unparseable_key_is_configuration_error(credential, monkeypatch):
    monkeypatch.setattr(
        auth.service_account.Credentials,
        "from_service_account_info",
        MagicMock(side_effect=ValueError("Could not deserialize key data")),
    )
    with pytest.raises(ConfigurationError, match="deserialize"):
        ServiceAccountTokenIssuer(credential)


def test_token_request_uses_configured_timeout():
    session = MagicMock()
    request = auth._TimeoutRequest(session, timeout_seconds=5)

    request("https://oauth2.googleapis.com/token", method="POST", body=b"x", timeout=120)

    assert session.request.call_args.kwargs["timeout"] == 5


# ── ApplicationDefaultTokenIssuer ────────────────────────────────────────────

def test_adc_issuer_uses_default_credentials(monkeypatch):
    creds = MagicMock()
    creds.token = "ya29.adc"
    creds.expiry = None
    default = MagicMock(return_value=(creds, "adc-project"))
    monkeypatch.setattr(auth.google.auth, "default", default)

    issuer = ApplicationDefaultTokenIssuer()

    assert issuer.project_id == "adc-project"
    assert issuer.issue().token == "ya29.adc"
    assert default.call_args.kwargs["scopes"] == [auth.FCM_SCOPE]


def test_adc_unavailable_is_configuration_error(monkeypatch):
    monkeypatch.setattr(
        auth.google.auth,
        "default",
        MagicMock(side_effect=google_exceptions.DefaultCredentialsError("no credentials")),
    )
    with pytest.raises(ConfigurationError):
        ApplicationDefaultTokenIssuer()


def test_memory_cache_is_default_capability():
    assert isinstance(MemoryCache(), auth.ExpiringCache)


def test_google_issuer_base_requires_credentials_hook():
    with pytest.raises(TypeError):
        auth._GoogleCredentialsIssuer(session=None, timeout_seconds=1)
