"""
Test configuration and fixtures.

Provides:
- A generated RSA service account credential
- FakeSheetsServer: in-memory token endpoint + Sheets values API behind
  httpx.MockTransport
- A fully wired MatrixStateStore talking to the fake server
"""

import json
import re
from dataclasses import dataclass, field
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from matrix_sync.schemas.auth import ServiceAccountCredential
from matrix_sync.services.matrix_state import MatrixStateStore
from matrix_sync.services.sheets_service import SpreadsheetClient
from matrix_sync.services.sheets_transport import SheetsTransport
from matrix_sync.services.token_service import ServiceAccountTokenIssuer

SPREADSHEET_ID = "sheet-123"
SERVICE_ACCOUNT_EMAIL = "matrix-sync@example-project.iam.gserviceaccount.com"
TOKEN_URI = "https://oauth2.googleapis.com/token"

AUDIENCE_HEADER = [
    "id", "name", "order", "status", "strategy", "buying_platform", "data_source",
    "targeting_type", "device", "tag", "key", "comment", "campaign_name",
    "campaign_id", "lineitem_name", "lineitem_id",
]
TOPIC_HEADER = [
    "id", "name", "key", "order", "status", "tag1", "tag2", "tag3", "tag4",
    "created", "comment",
]
MESSAGE_HEADER = [
    "Name", "Number", "Variant", "Audience", "Topic", "Version", "Template",
    "Landing URL", "Headline", "Copy1", "Copy2", "Flash", "CTA", "Comment", "Status",
]
TEMPLATE_HEADER = ["name", "type", "dimensions", "version"]

_CELL_REF = re.compile(r"^[A-Z]+(\d+)")


# =============================================================================
# Fake Google endpoints
# =============================================================================


@dataclass
class FakeSheetsServer:
    """In-memory stand-in for the OAuth2 token endpoint and Sheets values API."""

    spreadsheet_id: str = SPREADSHEET_ID
    sheets: dict[str, list[list[str]]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    token_requests: list[dict[str, str]] = field(default_factory=list)
    auth_headers: list[str] = field(default_factory=list)
    token_status: int = 200
    token_error: dict | None = None
    fail_writes: dict[str, int] = field(default_factory=dict)
    fail_reads: dict[str, int] = field(default_factory=dict)
    unauthorized_once: bool = False

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("PUT", "POST")]

    def _error(self, status: int, message: str) -> httpx.Response:
        return httpx.Response(
            status,
            json={"error": {"code": status, "message": message, "status": "FAILED"}},
        )

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_requests.append(form)
        if self.token_status != 200:
            return httpx.Response(
                self.token_status,
                json=self.token_error or {"error": "invalid_grant"},
            )
        return httpx.Response(
            200,
            json={
                "access_token": f"token-{len(self.token_requests)}",
                "expires_in": 3600,
                "token_type": "Bearer",
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            return self._token(request)

        self.auth_headers.append(request.headers.get("Authorization", ""))
        if self.unauthorized_once:
            self.unauthorized_once = False
            return self._error(401, "Request had invalid authentication credentials.")

        prefix = f"/v4/spreadsheets/{self.spreadsheet_id}"
        path = request.url.path
        if not path.startswith(prefix):
            return self._error(404, "Requested entity was not found.")
        rest = path[len(prefix):]
        self.calls.append((request.method, rest))

        if rest == "":
            return httpx.Response(200, json={"spreadsheetId": self.spreadsheet_id})

        target = rest[len("/values/"):]
        if request.method == "POST" and target.endswith(":append"):
            sheet = target[: -len(":append")]
            if sheet in self.fail_writes:
                return self._error(self.fail_writes[sheet], "Backend error")
            rows = json.loads(request.content)["values"]
            self.sheets.setdefault(sheet, []).extend([[str(c) for c in row] for row in rows])
            return httpx.Response(200, json={"updates": {"updatedRows": len(rows)}})

        sheet, _, a1_range = target.partition("!")
        if request.method == "GET":
            if sheet in self.fail_reads:
                return self._error(self.fail_reads[sheet], "Backend error")
            values = self.sheets.get(sheet, [])
            payload = {"range": f"{sheet}!{a1_range}"}
            if values:
                payload["values"] = [list(row) for row in values]
            return httpx.Response(200, json=payload)

        if request.method == "PUT":
            if sheet in self.fail_writes:
                return self._error(self.fail_writes[sheet], "Backend error")
            rows = json.loads(request.content)["values"]
            start = int(_CELL_REF.match(a1_range).group(1))
            existing = self.sheets.setdefault(sheet, [])
            for offset, row in enumerate(rows):
                index = start - 1 + offset
                while len(existing) <= index:
                    existing.append([])
                existing[index] = [str(c) for c in row]
            return httpx.Response(200, json={"updatedRows": len(rows)})

        return self._error(400, "Unsupported request")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def credential(private_key_pem) -> ServiceAccountCredential:
    return ServiceAccountCredential(
        client_email=SERVICE_ACCOUNT_EMAIL,
        private_key=private_key_pem,
        token_uri=TOKEN_URI,
    )


@pytest.fixture
def fake_sheets() -> FakeSheetsServer:
    return FakeSheetsServer()


@pytest_asyncio.fixture
async def http_client(fake_sheets):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_sheets.handler)) as client:
        yield client


@pytest.fixture
def token_issuer(credential, http_client) -> ServiceAccountTokenIssuer:
    return ServiceAccountTokenIssuer(credential, http_client=http_client)


@pytest.fixture
def spreadsheet_client(token_issuer, http_client) -> SpreadsheetClient:
    transport = SheetsTransport(token_issuer, http_client=http_client)
    return SpreadsheetClient(transport, SPREADSHEET_ID)


@pytest.fixture
def store(spreadsheet_client) -> MatrixStateStore:
    return MatrixStateStore(spreadsheet_client)


@pytest.fixture
def seeded_sheets(fake_sheets) -> FakeSheetsServer:
    """Spreadsheet with two audiences, two topics, one message and a template."""
    fake_sheets.sheets = {
        "audiences": [
            AUDIENCE_HEADER,
            ["aud-1", "Young Adults", "1", "active", "", "", "", "", "", "", "ya"],
            ["aud-2", "Professionals", "2", "active", "", "", "", "", "", "", "prof"],
        ],
        "topics": [
            TOPIC_HEADER,
            ["top-1", "Launch", "launch", "1", "active"],
            ["top-2", "Retention", "retain", "2", "active"],
        ],
        "messages": [
            MESSAGE_HEADER,
            ["ya!launch!m1!a!n1", "1", "a", "ya", "launch", "1", "banner", "",
             "Meet the new app", "", "", "", "Download", "", "active"],
        ],
        "templates": [
            TEMPLATE_HEADER,
            ["banner", "html", "300x250", "2.0"],
        ],
    }
    return fake_sheets
