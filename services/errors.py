from __future__ import annotations

from typing import Optional


class NotifierError(RuntimeError):
    """Base class for every failure surfaced by the Firebase transport."""

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail if detail is not None else message

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigurationError(NotifierError):
    """Raised when credentials or settings are missing or invalid."""


class InvalidArgumentError(NotifierError):
    """Raised when a message or its options cannot be turned into a payload."""


class UnsupportedMessageTypeError(InvalidArgumentError):
    pass


class AuthError(NotifierError):
    """Raised when the identity provider rejects the service-account assertion."""


class NetworkError(NotifierError):
    """Raised when the identity provider or messaging endpoint cannot be reached."""


class ProviderError(NotifierError):
    """Raised when FCM accepted the connection but rejected the message."""

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: str = "",
    ) -> None:
        super().__init__(message, detail)
        self.status_code = status_code
        self.response_body = response_body
