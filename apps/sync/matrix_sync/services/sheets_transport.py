"""Authenticated HTTP transport for the Google Sheets API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from matrix_sync.core.errors import ApiError
from matrix_sync.services.http_service import send_with_backoff
from matrix_sync.services.token_service import ServiceAccountTokenIssuer

logger = logging.getLogger(__name__)

HTTPX_TIMEOUT = httpx.Timeout(30.0, connect=5.0)


def decode_api_error(response: httpx.Response) -> ApiError:
    """Map a non-2xx response onto ApiError using Google's error envelope."""
    message = None
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            raw_message = error.get("message")
            if isinstance(raw_message, str) and raw_message.strip():
                message = raw_message.strip()
        elif isinstance(error, str) and error.strip():
            message = error.strip()

    if not message:
        message = f"HTTP {response.status_code}: {response.reason_phrase or 'Unknown error'}"
    return ApiError(response.status_code, message)


class SheetsTransport:
    """
    Sends JSON requests with the current bearer token.

    A 401 drops the cached token and replays the request once. Other failures
    are surfaced as ApiError; retry/backoff only happens when the caller asked
    for more than one attempt.
    """

    def __init__(
        self,
        token_issuer: ServiceAccountTokenIssuer,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | float = HTTPX_TIMEOUT,
        max_attempts: int = 1,
    ):
        self.token_issuer = token_issuer
        self._http_client = http_client
        self._timeout = timeout
        self.max_attempts = max(1, max_attempts)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        token: str,
        body: Any | None,
        params: dict[str, str] | None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        if self._http_client is not None:
            return await self._http_client.request(
                method, url, headers=headers, params=params, json=body
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, params=params, json=body)

    async def _send_authenticated(
        self,
        method: str,
        url: str,
        body: Any | None,
        params: dict[str, str] | None,
    ) -> httpx.Response:
        token = await self.token_issuer.get_access_token()

        async def send() -> httpx.Response:
            return await self._send(method, url, token=token.value, body=body, params=params)

        if self.max_attempts > 1:
            return await send_with_backoff(send, max_attempts=self.max_attempts)
        return await send()

    async def request(
        self,
        url: str,
        method: str = "GET",
        body: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Perform an authenticated call and return the decoded JSON body.

        Raises:
            AuthError: Token acquisition failed
            ApiError: Non-2xx response, or status 0 if the request never completed
        """
        try:
            response = await self._send_authenticated(method, url, body, params)
            if response.status_code == 401:
                logger.info("Sheets API returned 401, refreshing token method=%s", method)
                self.token_issuer.invalidate()
                response = await self._send_authenticated(method, url, body, params)
        except httpx.RequestError as exc:
            logger.warning("Sheets request failed method=%s url=%s error=%s", method, url, exc)
            raise ApiError(0, f"Request failed: {exc}") from exc

        if not response.is_success:
            error = decode_api_error(response)
            logger.warning(
                "Sheets API error method=%s url=%s status=%s message=%s",
                method,
                url,
                error.status,
                error.message,
            )
            raise error

        if not response.content:
            return {}
        try:
            decoded = response.json()
        except ValueError as exc:
            raise ApiError(response.status_code, "Response body was not JSON") from exc
        return decoded if isinstance(decoded, dict) else {"values": decoded}
