from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from services.errors import NotifierError
    from services.options import FirebaseOptions


@dataclass
class ChatMessage:
    subject: str
    options: Optional["FirebaseOptions"] = None
    transport: Optional[str] = None


@dataclass
class SentMessage:
    original_message: ChatMessage
    transport: str
    message_id: str = ""


@dataclass(frozen=True)
class SendResult:
    """Outcome of one send: a message id on success, an error kind and detail otherwise."""

    ok: bool
    message_id: str = ""
    error_kind: str = ""
    detail: str = ""

    @classmethod
    def success(cls, message_id: str) -> "SendResult":
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failure(cls, error: "NotifierError") -> "SendResult":
        return cls(ok=False, error_kind=error.kind, detail=error.detail)
