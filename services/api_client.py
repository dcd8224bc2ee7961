from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from services.errors import NetworkError


@dataclass
class HttpResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)  # lower-cased names
    body: str = ""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def json(self) -> Any:
        return json.loads(self.body)


class HttpClient(ABC):
    """Minimal HTTP capability the transport needs from its host."""

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> HttpResponse:
        """Perform one request. Connection failures and timeouts raise NetworkError."""


class RequestsHttpClient(HttpClient):
    def __init__(self, timeout_seconds: float = 30.0, session: Optional[requests.Session] = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    @property
    def session(self) -> requests.Session:
        return self._session

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> HttpResponse:
        try:
            resp = self._session.request(
                method=method.upper(),
                url=url,
                headers=headers,
                json=json_body,
                timeout=self._timeout_seconds,
            )
        except requests.Timeout as exc:
            raise NetworkError(f"Request timed out after {self._timeout_seconds}s: {url}") from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to reach {url}: {exc}") from exc

        return HttpResponse(
            status_code=resp.status_code,
            headers={name.lower(): value for name, value in resp.headers.items()},
            body=resp.text,
        )

    def close(self) -> None:
        self._session.close()
