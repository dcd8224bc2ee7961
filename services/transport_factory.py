from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qsl, unquote, urlsplit

from services.api_client import RequestsHttpClient
from services.auth import DEFAULT_MARGIN_SECONDS
from services.cache_store import ExpiringCache
from services.credentials import ServiceAccountCredential
from services.errors import ConfigurationError
from services.firebase_transport import DEFAULT_HOST, FirebaseTransport

SCHEME = "firebase"
ALLOWED_OPTIONS = frozenset(
    {"type", "project_id", "private_key_id", "private_key", "client_email", "client_id", "token_uri"}
)


class UnsupportedSchemeError(ConfigurationError):
    pass


@dataclass(frozen=True)
class Dsn:
    scheme: str
    user: str
    host: str
    options: Dict[str, str] = field(default_factory=dict)
    original: str = field(default="", repr=False)

    @classmethod
    def parse(cls, text: str) -> "Dsn":
        text = text.strip()
        parts = urlsplit(text)
        if not parts.scheme or not parts.hostname:
            raise ConfigurationError("The Firebase DSN is invalid: expected scheme://user@host?options")
        options = dict(parse_qsl(parts.query, keep_blank_values=True))
        return cls(
            scheme=parts.scheme,
            user=unquote(parts.username or ""),
            host=parts.hostname,
            options=options,
            original=text,
        )

    def raw_option(self, name: str) -> Optional[str]:
        """
        Option value cut straight out of the DSN text.

        Query parsing turns "+" into spaces, which corrupts base64 key
        material, so keys are read from the original string.
        """
        marker = f"{name}="
        for chunk in self.original.split("?", 1)[-1].split("&"):
            if chunk.startswith(marker):
                return unquote(chunk[len(marker):])
        return None


class FirebaseTransportFactory:
    def __init__(
        self,
        http_client: Optional[RequestsHttpClient] = None,
        cache: Optional[ExpiringCache] = None,
        timeout_seconds: float = 30.0,
        margin_seconds: int = DEFAULT_MARGIN_SECONDS,
    ) -> None:
        self._http_client = http_client
        self._cache = cache
        self._timeout_seconds = timeout_seconds
        self._margin_seconds = margin_seconds

    def supports(self, dsn: Dsn) -> bool:
        return dsn.scheme == SCHEME

    def credential_from_dsn(self, dsn: Dsn) -> ServiceAccountCredential:
        if not self.supports(dsn):
            raise UnsupportedSchemeError(f'The "{dsn.scheme}" scheme is not supported; supported schemes: {SCHEME}')

        unknown = sorted(set(dsn.options) - ALLOWED_OPTIONS)
        if unknown:
            raise ConfigurationError(f"Unsupported Firebase DSN options: {', '.join(unknown)}")

        info: Dict[str, str] = dict(dsn.options)
        info["client_email"] = info.get("client_email") or f"{dsn.user}@{dsn.host}"
        info["private_key"] = dsn.raw_option("private_key") or ""
        return ServiceAccountCredential.from_mapping(info)

    def create(self, dsn: Dsn, host: str = DEFAULT_HOST) -> FirebaseTransport:
        return FirebaseTransport.from_credential(
            self.credential_from_dsn(dsn),
            http_client=self._http_client,
            cache=self._cache,
            host=host,
            timeout_seconds=self._timeout_seconds,
            margin_seconds=self._margin_seconds,
        )
