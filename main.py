from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from config.settings import Settings, SettingsError
from services.api_client import RequestsHttpClient
from services.cache_store import ExpiringCache, FileCache, MemoryCache
from services.errors import NetworkError, NotifierError
from services.firebase_transport import FirebaseTransport
from services.messages import ChatMessage, SentMessage
from services.options import FirebaseOptions
from services.transport_factory import Dsn, FirebaseTransportFactory

LOGGER_NAME = "firebase-notifier"

app = typer.Typer(
    name="firebase-notify",
    help="Send a push notification through Firebase Cloud Messaging.",
    add_completion=False,
)


def setup_logging(log_path: str, verbose: bool = False) -> logging.Logger:
    Path(log_path).parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO

    # module loggers (services.*) propagate to the root logger
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(formatter)

    fh = logging.FileHandler(log_path)
    fh.setLevel(level)
    fh.setFormatter(formatter)

    logger.addHandler(ch)
    logger.addHandler(fh)

    # Ensure UTC timestamps in logs
    logging.Formatter.converter = time.gmtime  # type: ignore[attr-defined]

    return logging.getLogger(LOGGER_NAME)


def build_cache(settings: Settings) -> ExpiringCache:
    if settings.token_cache_path:
        return FileCache(settings.token_cache_path)
    return MemoryCache()


def build_transport(settings: Settings) -> FirebaseTransport:
    http_client = RequestsHttpClient(timeout_seconds=settings.request_timeout_seconds)
    cache = build_cache(settings)

    if settings.dsn:
        factory = FirebaseTransportFactory(
            http_client=http_client,
            cache=cache,
            timeout_seconds=settings.request_timeout_seconds,
            margin_seconds=settings.token_cache_margin_seconds,
        )
        return factory.create(Dsn.parse(settings.dsn), host=settings.fcm_host)

    if settings.use_adc:
        return FirebaseTransport.from_application_default(
            project_id=settings.project_id or None,
            http_client=http_client,
            cache=cache,
            host=settings.fcm_host,
            timeout_seconds=settings.request_timeout_seconds,
            margin_seconds=settings.token_cache_margin_seconds,
        )

    credential = settings.credential()
    if credential is None:
        raise SettingsError("FIREBASE_CLIENT_EMAIL and FIREBASE_PRIVATE_KEY are required")
    return FirebaseTransport.from_credential(
        credential,
        http_client=http_client,
        cache=cache,
        host=settings.fcm_host,
        timeout_seconds=settings.request_timeout_seconds,
        margin_seconds=settings.token_cache_margin_seconds,
    )


def send_with_retries(
    transport: FirebaseTransport,
    message: ChatMessage,
    retries: int,
    wait: Optional[wait_base] = None,
) -> SentMessage:
    """Transport sends once; retrying transient network failures is the caller's call."""
    retrying = Retrying(
        reraise=True,
        stop=stop_after_attempt(retries + 1),
        wait=wait or wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(NetworkError),
    )
    return retrying(transport.send, message)


@app.command()
def send(
    body: str = typer.Argument(..., help="Notification body text."),
    token: Optional[str] = typer.Option(None, "--token", help="Device registration token."),
    topic: Optional[str] = typer.Option(None, "--topic", help="Topic name."),
    title: Optional[str] = typer.Option(None, "--title", help="Notification title."),
    retries: int = typer.Option(0, "--retries", min=0, help="Retries on network errors."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    # Load .env locally; real environment variables take precedence
    load_dotenv()

    if token and topic:
        raise typer.BadParameter("use either --token or --topic, not both")

    try:
        settings = Settings.from_env()
    except SettingsError as exc:
        typer.echo(f"configuration error: {exc}", err=True)
        raise typer.Exit(code=2)

    logger = setup_logging(settings.log_path, verbose=verbose)

    options: Optional[FirebaseOptions] = None
    if token:
        options = FirebaseOptions.for_token(token, title=title)
    elif topic:
        options = FirebaseOptions.for_topic(topic, title=title)

    start = time.time()
    try:
        transport = build_transport(settings)
        logger.info("start | transport=%s", transport)
        sent = send_with_retries(transport, ChatMessage(subject=body, options=options), retries)
    except NotifierError as exc:
        logger.error("failed | kind=%s detail=%s", exc.kind, exc.detail)
        raise typer.Exit(code=1)

    logger.info("completion | message_id=%s duration_seconds=%.2f", sent.message_id, time.time() - start)
    typer.echo(sent.message_id)


if __name__ == "__main__":
    app()
