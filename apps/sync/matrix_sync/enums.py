"""Enum definitions for matrix constants."""

from enum import Enum


class SheetName(str, Enum):
    """Sheets in the matrix spreadsheet."""

    AUDIENCES = "audiences"
    TOPICS = "topics"
    MESSAGES = "messages"
    TEMPLATES = "templates"


class EntityType(str, Enum):
    """Entity types tracked by the change log."""

    AUDIENCE = "audience"
    TOPIC = "topic"
    MESSAGE = "message"

    @property
    def sheet(self) -> SheetName:
        return ENTITY_SHEETS[self]


ENTITY_SHEETS = {
    EntityType.AUDIENCE: SheetName.AUDIENCES,
    EntityType.TOPIC: SheetName.TOPICS,
    EntityType.MESSAGE: SheetName.MESSAGES,
}


class ChangeAction(str, Enum):
    """Kinds of local mutation recorded in the change log."""

    CREATE = "create"
    UPDATE = "update"
    MOVE = "move"
    COPY = "copy"
    REMOVE = "remove"


class MessageStatus(str, Enum):
    """
    Message lifecycle status.

    REMOVED is a soft delete: the row stays in the sheet and in local state.
    """

    ACTIVE = "active"
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    REMOVED = "removed"


DEFAULT_ENTITY_STATUS = "active"
