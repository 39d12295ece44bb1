"""Pydantic schemas."""

from matrix_sync.schemas.auth import AccessToken, ServiceAccountCredential
from matrix_sync.schemas.matrix import (
    Audience,
    ChangeLogEntry,
    FlushResult,
    MatrixSnapshot,
    Message,
    SheetError,
    SheetResult,
    Template,
    Topic,
)

__all__ = [
    "AccessToken",
    "Audience",
    "ChangeLogEntry",
    "FlushResult",
    "MatrixSnapshot",
    "Message",
    "ServiceAccountCredential",
    "SheetError",
    "SheetResult",
    "Template",
    "Topic",
]
