"""Pydantic schemas for matrix entities and sync results."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from matrix_sync.enums import ChangeAction, EntityType, MessageStatus


class Audience(BaseModel):
    """Matrix column."""
    id: str
    name: str
    key: str  # Referenced by Message.audience
    order: int
    status: str = "active"
    strategy: str = ""
    buying_platform: str = ""
    data_source: str = ""
    targeting_type: str = ""
    device: str = ""
    tag: str = ""
    comment: str = ""
    campaign_name: str = ""
    campaign_id: str = ""
    lineitem_name: str = ""
    lineitem_id: str = ""
    is_new: bool = False
    is_modified: bool = False


class Topic(BaseModel):
    """Matrix row."""
    id: str
    name: str
    key: str  # Referenced by Message.topic
    order: int
    status: str = "active"
    tag1: str = ""
    tag2: str = ""
    tag3: str = ""
    tag4: str = ""
    created: str = ""  # ISO date
    comment: str = ""
    is_new: bool = False
    is_modified: bool = False


class Message(BaseModel):
    """
    A creative message in one matrix cell.

    `name` is always audience!topic!m{number}!{variant}!n{version}.
    """
    id: str
    name: str
    number: int
    variant: str
    audience: str
    topic: str
    version: int = 1
    template: str = ""
    landing_url: str = ""
    headline: str = ""
    copy1: str = ""
    copy2: str = ""
    flash: str = ""
    cta: str = ""
    comment: str = ""
    status: str = MessageStatus.ACTIVE.value
    is_new: bool = False
    is_modified: bool = False

    @property
    def is_removed(self) -> bool:
        return (self.status or MessageStatus.ACTIVE.value) == MessageStatus.REMOVED.value


class Template(BaseModel):
    """Creative template (read-only)."""
    id: int
    name: str
    type: str = ""
    dimensions: str = ""
    version: str = "1.0"


class MatrixSnapshot(BaseModel):
    """Decoded content of one full spreadsheet read."""
    audiences: list[Audience] = Field(default_factory=list)
    topics: list[Topic] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    templates: list[Template] = Field(default_factory=list)


class ChangeLogEntry(BaseModel):
    """Outbox record for one local mutation."""
    id: int  # Monotonic sequence within the process
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: EntityType
    action: ChangeAction
    data: dict[str, Any]
    synced: bool = False


class SheetResult(BaseModel):
    """A partition that was written successfully."""
    sheet: str
    success: bool = True
    count: int


class SheetError(BaseModel):
    """A partition that failed to write."""
    sheet: str
    error: str
    count: int


class FlushResult(BaseModel):
    """Outcome of draining the outbox."""
    success: bool
    results: list[SheetResult] = Field(default_factory=list)
    errors: list[SheetError] = Field(default_factory=list)
    total_changes: int = 0
