"""Pydantic schemas for service account auth."""

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from matrix_sync.core.errors import AuthError

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class ServiceAccountCredential(BaseModel):
    """Identity and signing key from a Google service account JSON key."""

    model_config = ConfigDict(frozen=True)

    client_email: str
    private_key: str  # PEM (PKCS#8)
    token_uri: str = DEFAULT_TOKEN_URI

    @classmethod
    def from_json(cls, raw: str) -> "ServiceAccountCredential":
        """
        Parse the raw service account key JSON.

        Raises:
            AuthError: If the JSON is malformed or lacks client_email/private_key
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise AuthError(f"Failed to parse service account key: {exc}") from exc
        if not isinstance(data, dict):
            raise AuthError("Service account key must be a JSON object")

        client_email = data.get("client_email")
        private_key = data.get("private_key")
        if not client_email or not private_key:
            raise AuthError("Service account key is missing client_email or private_key")

        return cls(
            client_email=client_email,
            private_key=private_key,
            token_uri=data.get("token_uri") or DEFAULT_TOKEN_URI,
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ServiceAccountCredential":
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise AuthError(f"Failed to read service account key file: {exc}") from exc
        return cls.from_json(raw)


class AccessToken(BaseModel):
    """Short-lived bearer token."""

    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: float  # Epoch seconds, safety margin already applied

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
