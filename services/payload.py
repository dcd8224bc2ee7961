from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping, Optional, Union

from services.errors import InvalidArgumentError
from services.options import RESERVED_KEYS, FirebaseOptions

logger = logging.getLogger(__name__)

OptionsLike = Union[FirebaseOptions, Mapping[str, Any], None]

# data-only messages are not supported by this transport
STRIPPED_KEYS = ("data",)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


class PayloadBuilder:
    """Turns a message body and its options into the FCM v1 `message` object."""

    def build(self, body: str, options: OptionsLike) -> Dict[str, Any]:
        if isinstance(options, FirebaseOptions):
            payload = options.to_dict()
        else:
            payload = copy.deepcopy(dict(options or {}))

        addressing = [key for key in RESERVED_KEYS if not _is_empty(payload.get(key))]
        if len(addressing) != 1:
            raise InvalidArgumentError(
                'The Firebase transport requires exactly one of the "token" or "topic" options to be set.'
            )
        for key in RESERVED_KEYS:
            if key not in addressing:
                payload.pop(key, None)

        notification = payload.get("notification")
        if not isinstance(notification, dict):
            notification = {}
        notification["body"] = body
        payload["notification"] = notification

        for key in STRIPPED_KEYS:
            if payload.pop(key, None) is not None:
                logger.debug("payload | dropped unsupported %r field", key)

        keep = set(addressing) | {"notification"}
        return {key: value for key, value in payload.items() if key in keep or not _is_empty(value)}

    def envelope(self, body: str, options: OptionsLike) -> Dict[str, Any]:
        return {"message": self.build(body, options)}
