from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from services.errors import InvalidArgumentError

RESERVED_KEYS = ("token", "topic")


@dataclass
class FirebaseOptions:
    """
    Per-message FCM options.

    `recipient_id` is a device registration token, or a topic name when
    `use_topic` is set. Recognized FCM v1 blocks have their own fields;
    anything else goes through `extra` and is copied into the message as is.

    See https://firebase.google.com/docs/reference/fcm/rest/v1/projects.messages
    """

    recipient_id: str
    use_topic: bool = False
    title: Optional[str] = None
    body: Optional[str] = None
    notification: Dict[str, Any] = field(default_factory=dict)
    android: Optional[Dict[str, Any]] = None
    apns: Optional[Dict[str, Any]] = None
    webpush: Optional[Dict[str, Any]] = None
    fcm_options: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        reserved = [key for key in RESERVED_KEYS if key in self.extra]
        if reserved:
            raise InvalidArgumentError(
                f"Options must not set {', '.join(reserved)} directly; use recipient_id/use_topic"
            )
        if not isinstance(self.notification, dict):
            raise InvalidArgumentError("notification option must be a mapping")

    @classmethod
    def for_token(cls, token: str, **kwargs: Any) -> "FirebaseOptions":
        return cls(recipient_id=token, use_topic=False, **kwargs)

    @classmethod
    def for_topic(cls, topic: str, **kwargs: Any) -> "FirebaseOptions":
        return cls(recipient_id=topic, use_topic=True, **kwargs)

    @property
    def addressing_field(self) -> str:
        return "topic" if self.use_topic else "token"

    def to_dict(self) -> Dict[str, Any]:
        extra = copy.deepcopy(self.extra)

        notification = copy.deepcopy(self.notification)
        if self.title is not None:
            notification["title"] = self.title
        if self.body is not None:
            notification["body"] = self.body
        extra_notification = extra.pop("notification", None)
        if isinstance(extra_notification, dict):
            notification.update(extra_notification)

        options: Dict[str, Any] = {self.addressing_field: self.recipient_id}
        if notification:
            options["notification"] = notification
        for name in ("android", "apns", "webpush", "fcm_options"):
            value = getattr(self, name)
            if value is not None:
                options[name] = copy.deepcopy(value)
        options.update(extra)
        return options
