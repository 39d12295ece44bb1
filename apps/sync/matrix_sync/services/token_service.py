"""Service account token issuance for the Sheets API.

Implements the OAuth2 JWT-bearer grant directly:
- Build a JWT asserting the service account identity (RS256)
- Exchange it at the token endpoint for a short-lived access token
- Cache the token until shortly before it expires

No retries happen here; callers decide retry policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from matrix_sync.core.errors import AuthError
from matrix_sync.schemas.auth import AccessToken, ServiceAccountCredential

logger = logging.getLogger(__name__)

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"

DEFAULT_ASSERTION_TTL_SECONDS = 3600
DEFAULT_SAFETY_MARGIN_SECONDS = 60


def _load_private_key(pem: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(pem.encode(), password=None)
    except (TypeError, ValueError) as exc:
        raise AuthError(f"Invalid service account private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthError("Service account private key must be an RSA key")
    return key


def _provider_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for field in ("error_description", "error"):
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return response.text[:300] or response.reason_phrase


class ServiceAccountTokenIssuer:
    """
    Issues and caches bearer tokens for one service account.

    One instance per credential; the cache is an instance field so token
    expiry and credential rotation can be exercised in isolation.
    """

    def __init__(
        self,
        credential: ServiceAccountCredential | None,
        *,
        scopes: tuple[str, ...] = (SHEETS_SCOPE,),
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        assertion_ttl_seconds: int = DEFAULT_ASSERTION_TTL_SECONDS,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._credential = credential
        self._scopes = scopes
        self._http_client = http_client
        self._timeout = timeout
        self._assertion_ttl = assertion_ttl_seconds
        self._safety_margin = safety_margin_seconds
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()
        self._private_key: rsa.RSAPrivateKey | None = None

    @property
    def is_configured(self) -> bool:
        return bool(
            self._credential
            and self._credential.client_email
            and self._credential.private_key
        )

    @property
    def service_account_email(self) -> str:
        """Service account email for display."""
        return self._credential.client_email if self._credential else "Unknown"

    @property
    def cached_token(self) -> AccessToken | None:
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call performs a fresh exchange."""
        self._token = None

    def _require_credential(self) -> ServiceAccountCredential:
        if not self.is_configured:
            raise AuthError("Service account credentials not configured")
        return self._credential  # type: ignore[return-value]

    def create_signed_jwt(self) -> str:
        """Build and RS256-sign the JWT-bearer assertion."""
        credential = self._require_credential()
        if self._private_key is None:
            self._private_key = _load_private_key(credential.private_key)

        now = int(self._clock())
        payload = {
            "iss": credential.client_email,
            "scope": " ".join(self._scopes),
            "aud": credential.token_uri,
            "iat": now,
            "exp": now + self._assertion_ttl,
        }
        try:
            return jwt.encode(
                payload,
                self._private_key,
                algorithm="RS256",
                headers={"typ": "JWT"},
            )
        except (TypeError, ValueError, jwt.PyJWTError) as exc:
            raise AuthError(f"JWT signing failed: {exc}") from exc

    async def _post_token_request(self, token_uri: str, form: dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(token_uri, data=form)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(token_uri, data=form)

    async def _exchange_assertion(self) -> AccessToken:
        credential = self._require_credential()
        assertion = self.create_signed_jwt()
        issued_at = self._clock()

        try:
            response = await self._post_token_request(
                credential.token_uri,
                {"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion},
            )
        except httpx.RequestError as exc:
            raise AuthError(f"OAuth2 token request failed: {exc}") from exc

        if not response.is_success:
            message = _provider_error_message(response)
            logger.warning(
                "OAuth2 token request rejected status=%s message=%s",
                response.status_code,
                message,
            )
            raise AuthError(
                f"OAuth2 token request failed: {response.status_code} - {message}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise AuthError("OAuth2 token response was not JSON") from exc

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise AuthError("OAuth2 token response missing access_token")

        try:
            expires_in = int(data.get("expires_in") or self._assertion_ttl)
        except (TypeError, ValueError):
            expires_in = self._assertion_ttl

        logger.info(
            "Issued access token for %s (expires_in=%ss)",
            credential.client_email,
            expires_in,
        )
        return AccessToken(
            value=access_token,
            expires_at=issued_at + expires_in - self._safety_margin,
        )

    async def get_access_token(self) -> AccessToken:
        """
        Return a valid access token, exchanging a new assertion when needed.

        Concurrent callers share a single refresh.

        Raises:
            AuthError: Credential missing, signing failed, or the endpoint refused
        """
        token = self._token
        if token and not token.is_expired(self._clock()):
            return token

        async with self._lock:
            token = self._token
            if token and not token.is_expired(self._clock()):
                return token
            self._token = await self._exchange_assertion()
            return self._token
