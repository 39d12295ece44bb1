"""Service layer modules."""

from matrix_sync.services.matrix_state import MatrixStateStore
from matrix_sync.services.outbox import Outbox
from matrix_sync.services.sheets_service import SpreadsheetClient
from matrix_sync.services.sheets_transport import SheetsTransport
from matrix_sync.services.sync_scheduler import SyncScheduler
from matrix_sync.services.token_service import ServiceAccountTokenIssuer

__all__ = [
    "MatrixStateStore",
    "Outbox",
    "ServiceAccountTokenIssuer",
    "SheetsTransport",
    "SpreadsheetClient",
    "SyncScheduler",
]
