from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from services.credentials import DEFAULT_TOKEN_URI, ServiceAccountCredential
from services.errors import ConfigurationError


class SettingsError(ConfigurationError):
    """Raised when required settings are missing or invalid."""


_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    project_id: str
    client_email: str = ""
    private_key: str = field(default="", repr=False)
    token_uri: str = DEFAULT_TOKEN_URI
    dsn: str = field(default="", repr=False)
    use_adc: bool = False

    fcm_host: str = "fcm.googleapis.com"
    request_timeout_seconds: float = 30.0
    token_cache_margin_seconds: int = 60

    token_cache_path: str = "state/token_cache.json"
    log_path: str = "logs/notifier.log"

    @staticmethod
    def _require_env(name: str) -> str:
        value = os.environ.get(name, "").strip()
        if not value:
            raise SettingsError(f"Missing required environment variable: {name}")
        return value

    @staticmethod
    def _optional_env(name: str, default: str = "") -> str:
        return os.environ.get(name, "").strip() or default

    @staticmethod
    def _number_env(name: str, default: float) -> float:
        raw = os.environ.get(name, "").strip()
        if not raw:
            return default
        try:
            return float(raw)
        except ValueError as exc:
            raise SettingsError(f"{name} must be a number, got {raw!r}") from exc

    @classmethod
    def from_env(cls) -> "Settings":
        dsn = cls._optional_env("FIREBASE_DSN")
        use_adc = cls._optional_env("FIREBASE_USE_ADC").lower() in _TRUTHY

        # the DSN carries its own project id; ADC can discover it
        if dsn or use_adc:
            project_id = cls._optional_env("FIREBASE_PROJECT_ID")
            client_email = cls._optional_env("FIREBASE_CLIENT_EMAIL")
            private_key = os.environ.get("FIREBASE_PRIVATE_KEY", "")
        else:
            project_id = cls._require_env("FIREBASE_PROJECT_ID")
            client_email = cls._require_env("FIREBASE_CLIENT_EMAIL")
            private_key = cls._require_env("FIREBASE_PRIVATE_KEY")

        fcm_host = cls._optional_env("FCM_HOST", "fcm.googleapis.com").rstrip("/")
        if "://" in fcm_host:
            raise SettingsError("FCM_HOST must be a host name without a scheme")

        settings = cls(
            project_id=project_id,
            client_email=client_email,
            private_key=private_key,
            token_uri=cls._optional_env("FIREBASE_TOKEN_URI", DEFAULT_TOKEN_URI),
            dsn=dsn,
            use_adc=use_adc,
            fcm_host=fcm_host,
            request_timeout_seconds=cls._number_env("REQUEST_TIMEOUT_SECONDS", 30.0),
            token_cache_margin_seconds=int(cls._number_env("TOKEN_CACHE_MARGIN_SECONDS", 60)),
            token_cache_path=os.environ.get("TOKEN_CACHE_PATH", "state/token_cache.json").strip(),
            log_path=cls._optional_env("LOG_PATH", "logs/notifier.log"),
        )

        if settings.request_timeout_seconds <= 0:
            raise SettingsError("REQUEST_TIMEOUT_SECONDS must be positive")
        if not (0 <= settings.token_cache_margin_seconds < 3600):
            raise SettingsError("TOKEN_CACHE_MARGIN_SECONDS must be between 0 and 3599")

        return settings

    def credential(self) -> Optional[ServiceAccountCredential]:
        """Service-account credential from the discrete variables, if they are set."""
        if not (self.client_email and self.private_key):
            return None
        return ServiceAccountCredential(
            client_email=self.client_email,
            private_key=self.private_key,
            project_id=self.project_id,
            token_uri=self.token_uri,
        )
