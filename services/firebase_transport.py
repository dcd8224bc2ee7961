from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from services.api_client import HttpClient, HttpResponse, RequestsHttpClient
from services.auth import (
    DEFAULT_MARGIN_SECONDS,
    ApplicationDefaultTokenIssuer,
    ServiceAccountTokenIssuer,
    TokenCache,
    TokenIssuer,
    cache_key_for,
)
from services.cache_store import ExpiringCache, MemoryCache
from services.credentials import ServiceAccountCredential
from services.errors import (
    ConfigurationError,
    NotifierError,
    ProviderError,
    UnsupportedMessageTypeError,
)
from services.messages import ChatMessage, SendResult, SentMessage
from services.options import FirebaseOptions
from services.payload import PayloadBuilder

logger = logging.getLogger(__name__)

DEFAULT_HOST = "fcm.googleapis.com"


def _first_result(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    results = payload.get("results")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        return {}
    return results[0]


class FirebaseTransport:
    """
    Sends ChatMessages through the FCM HTTP v1 API.

    One attempt per send, no retries:
      build payload -> bearer token (cached) -> POST -> classify response
    """

    def __init__(
        self,
        project_id: str,
        token_cache: TokenCache,
        http_client: HttpClient,
        host: str = DEFAULT_HOST,
        payload_builder: Optional[PayloadBuilder] = None,
    ) -> None:
        if not project_id:
            raise ConfigurationError("Firebase project_id is required")
        self._project_id = project_id
        self._token_cache = token_cache
        self._http = http_client
        self._host = host.rstrip("/")
        self._payload_builder = payload_builder or PayloadBuilder()

    @classmethod
    def from_credential(
        cls,
        credential: ServiceAccountCredential,
        http_client: Optional[RequestsHttpClient] = None,
        cache: Optional[ExpiringCache] = None,
        host: str = DEFAULT_HOST,
        timeout_seconds: float = 30.0,
        margin_seconds: int = DEFAULT_MARGIN_SECONDS,
    ) -> "FirebaseTransport":
        http_client = http_client or RequestsHttpClient(timeout_seconds=timeout_seconds)
        issuer = ServiceAccountTokenIssuer(
            credential,
            session=http_client.session,
            timeout_seconds=timeout_seconds,
        )
        return cls._assemble(credential.project_id, issuer, http_client, cache, host, margin_seconds)

    @classmethod
    def from_application_default(
        cls,
        project_id: Optional[str] = None,
        http_client: Optional[RequestsHttpClient] = None,
        cache: Optional[ExpiringCache] = None,
        host: str = DEFAULT_HOST,
        timeout_seconds: float = 30.0,
        margin_seconds: int = DEFAULT_MARGIN_SECONDS,
    ) -> "FirebaseTransport":
        http_client = http_client or RequestsHttpClient(timeout_seconds=timeout_seconds)
        issuer = ApplicationDefaultTokenIssuer(session=http_client.session, timeout_seconds=timeout_seconds)
        project_id = project_id or issuer.project_id
        if not project_id:
            raise ConfigurationError("Firebase project_id is required when using application default credentials")
        return cls._assemble(project_id, issuer, http_client, cache, host, margin_seconds)

    @classmethod
    def _assemble(
        cls,
        project_id: str,
        issuer: TokenIssuer,
        http_client: HttpClient,
        cache: Optional[ExpiringCache],
        host: str,
        margin_seconds: int,
    ) -> "FirebaseTransport":
        token_cache = TokenCache(
            issuer=issuer,
            store=cache if cache is not None else MemoryCache(),
            default_key=cache_key_for(project_id),
            margin_seconds=margin_seconds,
        )
        return cls(project_id=project_id, token_cache=token_cache, http_client=http_client, host=host)

    @property
    def endpoint(self) -> str:
        return f"{self._host}/v1/projects/{self._project_id}/messages:send"

    def __str__(self) -> str:
        return f"firebase://{self.endpoint}"

    def supports(self, message: Any) -> bool:
        return isinstance(message, ChatMessage) and (
            message.options is None or isinstance(message.options, FirebaseOptions)
        )

    def send(self, message: ChatMessage) -> SentMessage:
        if not self.supports(message):
            raise UnsupportedMessageTypeError(
                f"{type(self).__name__} only supports ChatMessage with FirebaseOptions, "
                f"got {type(message).__name__}"
            )

        body = self._payload_builder.envelope(message.subject, message.options)
        token = self._token_cache.get()

        url = f"https://{self.endpoint}"
        logger.debug("send | POST %s", url)
        response = self._http.request(
            "POST",
            url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json; charset=UTF-8",
            },
            json_body=body,
        )

        message_id = self._classify(response)
        logger.info("send | ok message_id=%s", message_id)
        return SentMessage(original_message=message, transport=str(self), message_id=message_id)

    def deliver(self, message: ChatMessage) -> SendResult:
        """Like send(), but reports per-call failures as a SendResult instead of raising."""
        try:
            sent = self.send(message)
        except NotifierError as exc:
            logger.warning("send | failed kind=%s detail=%s", exc.kind, exc.detail)
            return SendResult.failure(exc)
        return SendResult.success(sent.message_id)

    @staticmethod
    def _classify(response: HttpResponse) -> str:
        parsed: Any = None
        if response.content_type.startswith("application/json"):
            try:
                parsed = response.json()
            except ValueError:
                parsed = None

        # per-result error wins over the status code
        error = _first_result(parsed).get("error")
        if error:
            detail = str(error)
            raise ProviderError(
                f"Unable to post the Firebase message: {detail}",
                detail=detail,
                status_code=response.status_code,
                response_body=response.body,
            )

        if response.status_code != 200:
            raise ProviderError(
                f"Unable to post the Firebase message: {response.body}",
                detail=response.body,
                status_code=response.status_code,
                response_body=response.body,
            )

        if parsed is None:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None

        return str(_first_result(parsed).get("message_id") or "")
