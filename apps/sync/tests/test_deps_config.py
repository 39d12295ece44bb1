"""Tests for settings-driven credential loading and store wiring."""

import json

import pytest

from matrix_sync.core.config import Settings
from matrix_sync.core.deps import build_store, load_credential
from matrix_sync.core.errors import AuthError


def _key_json(private_key_pem: str, **extra) -> str:
    return json.dumps(
        {
            "type": "service_account",
            "client_email": "writer@example-project.iam.gserviceaccount.com",
            "private_key": private_key_pem,
            **extra,
        }
    )


def test_settings_defaults():
    config = Settings(_env_file=None)

    assert config.SHEETS_MAX_ATTEMPTS == 1
    assert config.SYNC_INTERVAL_SECONDS == 60.0
    assert config.service_account_configured is False


def test_spreadsheet_url():
    config = Settings(_env_file=None, GOOGLE_SPREADSHEET_ID="abc")

    assert config.spreadsheet_url == "https://docs.google.com/spreadsheets/d/abc/edit"


def test_load_credential_none_when_unconfigured():
    assert load_credential(Settings(_env_file=None)) is None


def test_load_credential_from_raw_json(private_key_pem):
    config = Settings(_env_file=None, GOOGLE_SERVICE_ACCOUNT_KEY=_key_json(private_key_pem))

    credential = load_credential(config)

    assert credential.client_email == "writer@example-project.iam.gserviceaccount.com"
    assert config.service_account_configured is True


def test_raw_json_takes_precedence_over_file(private_key_pem, tmp_path):
    key_file = tmp_path / "key.json"
    key_file.write_text(_key_json(private_key_pem, client_email="file@example.com"))
    config = Settings(
        _env_file=None,
        GOOGLE_SERVICE_ACCOUNT_KEY=_key_json(private_key_pem),
        GOOGLE_SERVICE_ACCOUNT_FILE=str(key_file),
    )

    assert load_credential(config).client_email == "writer@example-project.iam.gserviceaccount.com"


def test_load_credential_from_file(private_key_pem, tmp_path):
    key_file = tmp_path / "key.json"
    key_file.write_text(_key_json(private_key_pem))

    credential = load_credential(Settings(_env_file=None, GOOGLE_SERVICE_ACCOUNT_FILE=str(key_file)))

    assert credential.private_key == private_key_pem


def test_token_uri_override(private_key_pem):
    config = Settings(
        _env_file=None,
        GOOGLE_SERVICE_ACCOUNT_KEY=_key_json(private_key_pem),
        GOOGLE_TOKEN_URI="https://oauth2.example.test/token",
    )

    assert load_credential(config).token_uri == "https://oauth2.example.test/token"


def test_malformed_key_raises():
    with pytest.raises(AuthError):
        load_credential(Settings(_env_file=None, GOOGLE_SERVICE_ACCOUNT_KEY="{oops"))


@pytest.mark.asyncio
async def test_build_store_wires_settings(private_key_pem, http_client, fake_sheets):
    config = Settings(
        _env_file=None,
        GOOGLE_SERVICE_ACCOUNT_KEY=_key_json(private_key_pem),
        GOOGLE_SPREADSHEET_ID="sheet-123",
        SHEETS_MAX_ATTEMPTS=3,
    )

    store = build_store(config, http_client=http_client)

    assert store.client.is_configured is True
    assert store.client.spreadsheet_id == "sheet-123"
    assert store.client.transport.max_attempts == 3
    assert store.client.transport.token_issuer.service_account_email == (
        "writer@example-project.iam.gserviceaccount.com"
    )
    assert await store.initialize() is True
    assert len(fake_sheets.token_requests) == 1


def test_build_store_without_credential_is_unconfigured():
    store = build_store(Settings(_env_file=None, GOOGLE_SPREADSHEET_ID="sheet-123"))

    assert store.client.is_configured is False
