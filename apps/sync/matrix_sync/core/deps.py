"""Object graph wiring: settings -> credential -> issuer -> transport -> store."""

import httpx

from matrix_sync.core.config import Settings, settings as default_settings
from matrix_sync.schemas.auth import ServiceAccountCredential
from matrix_sync.services.matrix_state import MatrixStateStore
from matrix_sync.services.sheets_service import SpreadsheetClient
from matrix_sync.services.sheets_transport import SheetsTransport
from matrix_sync.services.token_service import ServiceAccountTokenIssuer


def load_credential(config: Settings) -> ServiceAccountCredential | None:
    """
    Load the service account credential from settings.

    Returns None when nothing is configured; the issuer then raises AuthError
    on first use.

    Raises:
        AuthError: A key is configured but cannot be parsed
    """
    if config.GOOGLE_SERVICE_ACCOUNT_KEY:
        credential = ServiceAccountCredential.from_json(config.GOOGLE_SERVICE_ACCOUNT_KEY)
    elif config.GOOGLE_SERVICE_ACCOUNT_FILE:
        credential = ServiceAccountCredential.from_file(config.GOOGLE_SERVICE_ACCOUNT_FILE)
    else:
        return None

    if config.GOOGLE_TOKEN_URI and credential.token_uri != config.GOOGLE_TOKEN_URI:
        credential = credential.model_copy(update={"token_uri": config.GOOGLE_TOKEN_URI})
    return credential


def build_store(
    config: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> MatrixStateStore:
    """Construct a MatrixStateStore and its collaborators from settings."""
    config = config or default_settings
    issuer = ServiceAccountTokenIssuer(
        load_credential(config),
        http_client=http_client,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        assertion_ttl_seconds=config.TOKEN_LIFETIME_SECONDS,
        safety_margin_seconds=config.TOKEN_SAFETY_MARGIN_SECONDS,
    )
    transport = SheetsTransport(
        issuer,
        http_client=http_client,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        max_attempts=config.SHEETS_MAX_ATTEMPTS,
    )
    client = SpreadsheetClient(
        transport,
        config.GOOGLE_SPREADSHEET_ID,
        base_url=config.SHEETS_API_BASE,
    )
    return MatrixStateStore(client)
