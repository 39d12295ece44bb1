"""Tests for the matrix-sync CLI."""

import httpx
import pytest
from click.testing import CliRunner

from matrix_sync import cli as cli_module
from matrix_sync.services.matrix_state import MatrixStateStore
from matrix_sync.services.sheets_service import SpreadsheetClient
from matrix_sync.services.sheets_transport import SheetsTransport
from matrix_sync.services.token_service import ServiceAccountTokenIssuer


@pytest.fixture
def patched_store(monkeypatch, credential, seeded_sheets):
    def factory():
        client = httpx.AsyncClient(transport=httpx.MockTransport(seeded_sheets.handler))
        issuer = ServiceAccountTokenIssuer(credential, http_client=client)
        transport = SheetsTransport(issuer, http_client=client)
        return MatrixStateStore(SpreadsheetClient(transport, "sheet-123"))

    monkeypatch.setattr(cli_module, "build_store", factory)
    return seeded_sheets


def test_url_requires_spreadsheet_id(monkeypatch):
    monkeypatch.setattr(cli_module.settings, "GOOGLE_SPREADSHEET_ID", "")

    result = CliRunner().invoke(cli_module.cli, ["url"])

    assert result.exit_code != 0
    assert "GOOGLE_SPREADSHEET_ID not configured" in result.output


def test_url_prints_edit_link(monkeypatch):
    monkeypatch.setattr(cli_module.settings, "GOOGLE_SPREADSHEET_ID", "abc")

    result = CliRunner().invoke(cli_module.cli, ["url"])

    assert result.exit_code == 0
    assert result.output.strip() == "https://docs.google.com/spreadsheets/d/abc/edit"


def test_status_prints_counts(patched_store):
    result = CliRunner().invoke(cli_module.cli, ["status"])

    assert result.exit_code == 0, result.output
    assert "Spreadsheet: https://docs.google.com/spreadsheets/d/sheet-123/edit" in result.output
    assert "Audiences: 2" in result.output
    assert "Topics: 2" in result.output
    assert "Messages: 1 live, 0 removed" in result.output
    assert "Templates: 1" in result.output


def test_pull_lists_cells(patched_store):
    result = CliRunner().invoke(cli_module.cli, ["pull", "--topic", "launch"])

    assert result.exit_code == 0, result.output
    assert "Launch [launch]" in result.output
    assert "ya: ya!launch!m1!a!n1" in result.output
    assert "Retention" not in result.output


def test_status_reports_api_failure(patched_store):
    patched_store.token_status = 400

    result = CliRunner().invoke(cli_module.cli, ["status"])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_watch_reports_until_count_reached(patched_store):
    result = CliRunner().invoke(cli_module.cli, ["watch", "--interval", "0.01", "--count", "2"])

    assert result.exit_code == 0, result.output
    reports = [line for line in result.output.splitlines() if line.startswith("Last sync:")]
    assert len(reports) == 2
    assert reports[-1].endswith("(1 messages)")
    assert len(patched_store.token_requests) == 1


def test_watch_rejects_negative_count(patched_store):
    result = CliRunner().invoke(cli_module.cli, ["watch", "--count", "-1"])

    assert result.exit_code == 2
