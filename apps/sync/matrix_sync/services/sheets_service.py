"""Sheet-level operations on the matrix spreadsheet."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from matrix_sync.core.errors import ConfigurationError
from matrix_sync.services.sheets_transport import SheetsTransport

logger = logging.getLogger(__name__)

DEFAULT_SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
VALUE_INPUT_OPTION = "USER_ENTERED"


def _encode_range(a1_range: str) -> str:
    return quote(a1_range, safe="!:")


def column_letter(index: int) -> str:
    """1-based column index to A1 letters (1 -> A, 27 -> AA)."""
    if index < 1:
        raise ValueError("column index must be >= 1")
    letters = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def row_range(row_number: int, width: int) -> str:
    """A1 range covering `width` columns of one sheet row."""
    return f"A{row_number}:{column_letter(width)}{row_number}"


class SpreadsheetClient:
    """Bulk read, range write and append against one spreadsheet."""

    def __init__(
        self,
        transport: SheetsTransport,
        spreadsheet_id: str,
        *,
        base_url: str = DEFAULT_SHEETS_API_BASE,
    ):
        self.transport = transport
        self.spreadsheet_id = spreadsheet_id
        self.base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.spreadsheet_id) and self.transport.token_issuer.is_configured

    @property
    def spreadsheet_url(self) -> str:
        """Browser URL for manual editing."""
        return f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}/edit"

    def _require_spreadsheet_id(self) -> str:
        if not self.spreadsheet_id:
            raise ConfigurationError("GOOGLE_SPREADSHEET_ID not configured")
        return self.spreadsheet_id

    def _values_url(self, a1_range: str, suffix: str = "") -> str:
        spreadsheet_id = self._require_spreadsheet_id()
        return f"{self.base_url}/{spreadsheet_id}/values/{_encode_range(a1_range)}{suffix}"

    async def get_spreadsheet_info(self) -> dict[str, Any]:
        spreadsheet_id = self._require_spreadsheet_id()
        return await self.transport.request(f"{self.base_url}/{spreadsheet_id}")

    async def read_sheet(self, sheet: str, a1_range: str = "A:Z") -> list[list[str]]:
        """Return the raw rows of a sheet (header included)."""
        data = await self.transport.request(self._values_url(f"{sheet}!{a1_range}"))
        values = data.get("values") or []
        return [[str(cell) for cell in row] for row in values]

    async def write_range(self, sheet: str, a1_range: str, rows: list[list[str]]) -> dict[str, Any]:
        full_range = f"{sheet}!{a1_range}"
        logger.debug("Writing %s rows to %s", len(rows), full_range)
        return await self.transport.request(
            self._values_url(full_range),
            method="PUT",
            body={"range": full_range, "values": rows},
            params={"valueInputOption": VALUE_INPUT_OPTION},
        )

    async def append_rows(self, sheet: str, rows: list[list[str]]) -> dict[str, Any]:
        logger.debug("Appending %s rows to %s", len(rows), sheet)
        return await self.transport.request(
            self._values_url(sheet, ":append"),
            method="POST",
            body={"values": rows},
            params={"valueInputOption": VALUE_INPUT_OPTION},
        )
