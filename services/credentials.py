from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from services.errors import ConfigurationError

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

_PEM_ARMOUR = "-----"


def normalize_private_key(private_key: str) -> str:
    """
    Restore a PEM key that went through a connection string.

    Only the base64 body between the BEGIN/END armour lines is touched:
      - literal "\\n" sequences become newlines
      - "_" placeholders become newlines
      - spaces (URL-decoded "+") become "+"
    """
    parts = private_key.strip().split(_PEM_ARMOUR)
    if len(parts) < 5:
        return private_key.strip()

    parts[2] = parts[2].replace("\\n", "\n").replace("_", "\n").replace(" ", "+")
    return _PEM_ARMOUR.join(parts)


@dataclass(frozen=True)
class ServiceAccountCredential:
    client_email: str
    private_key: str = field(repr=False)
    project_id: str
    token_uri: str = DEFAULT_TOKEN_URI
    private_key_id: str = ""
    client_id: str = ""

    def __post_init__(self) -> None:
        for name in ("client_email", "project_id", "private_key"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"Missing required credential field: {name}")

        key = normalize_private_key(self.private_key)
        if "-----BEGIN" not in key or "PRIVATE KEY-----" not in key:
            raise ConfigurationError("Credential private_key is not a PEM encoded private key")

        # frozen dataclass: normalized values are written through object.__setattr__
        object.__setattr__(self, "private_key", key)
        object.__setattr__(self, "client_email", self.client_email.strip())
        object.__setattr__(self, "project_id", self.project_id.strip())
        object.__setattr__(self, "token_uri", (self.token_uri or DEFAULT_TOKEN_URI).strip())

    @classmethod
    def from_mapping(cls, info: Dict[str, Any]) -> "ServiceAccountCredential":
        """Build from a service-account JSON mapping (extra keys are ignored)."""
        return cls(
            client_email=str(info.get("client_email") or ""),
            private_key=str(info.get("private_key") or ""),
            project_id=str(info.get("project_id") or ""),
            token_uri=str(info.get("token_uri") or DEFAULT_TOKEN_URI),
            private_key_id=str(info.get("private_key_id") or ""),
            client_id=str(info.get("client_id") or ""),
        )

    def to_service_account_info(self) -> Dict[str, str]:
        info = {
            "type": "service_account",
            "client_email": self.client_email,
            "private_key": self.private_key,
            "project_id": self.project_id,
            "token_uri": self.token_uri,
        }
        if self.private_key_id:
            info["private_key_id"] = self.private_key_id
        if self.client_id:
            info["client_id"] = self.client_id
        return info
