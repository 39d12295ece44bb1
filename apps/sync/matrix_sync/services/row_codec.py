"""Row codec: flat sheet rows <-> matrix entities.

Rows are positional; row 1 of every sheet is a header and is skipped.
Decoding is tolerant by default: rows missing required fields are skipped
and short rows are padded (the Sheets API drops trailing blank cells).
Pass strict=True to raise ValidationError instead.

Also owns the message naming and numbering rules:
- name is audience!topic!m{number}!{variant}!n{version}
- a (topic, audience) pair shares one number; variants a..z accumulate under it
- a new pair takes max(all numbers) + 1
"""

from __future__ import annotations

import logging
import re
import string
from typing import Iterable, Sequence

from matrix_sync.core.errors import ValidationError, VariantCapacityError
from matrix_sync.enums import DEFAULT_ENTITY_STATUS, MessageStatus, SheetName
from matrix_sync.schemas.matrix import Audience, Message, Template, Topic

logger = logging.getLogger(__name__)

AUDIENCE_COLUMNS = (
    "id",
    "name",
    "order",
    "status",
    "strategy",
    "buying_platform",
    "data_source",
    "targeting_type",
    "device",
    "tag",
    "key",
    "comment",
    "campaign_name",
    "campaign_id",
    "lineitem_name",
    "lineitem_id",
)

TOPIC_COLUMNS = (
    "id",
    "name",
    "key",
    "order",
    "status",
    "tag1",
    "tag2",
    "tag3",
    "tag4",
    "created",
    "comment",
)

MESSAGE_COLUMNS = (
    "name",
    "number",
    "variant",
    "audience",
    "topic",
    "version",
    "template",
    "landing_url",
    "headline",
    "copy1",
    "copy2",
    "flash",
    "cta",
    "comment",
    "status",
)

TEMPLATE_COLUMNS = ("name", "type", "dimensions", "version")

MESSAGE_HEADER = (
    "Name",
    "Number",
    "Variant",
    "Audience",
    "Topic",
    "Version",
    "Template",
    "Landing URL",
    "Headline",
    "Copy1",
    "Copy2",
    "Flash",
    "CTA",
    "Comment",
    "Status",
)
MESSAGE_STATUS_COLUMN = MESSAGE_COLUMNS.index("status")  # 0-based, column 15

VARIANT_LETTERS = string.ascii_lowercase
KEY_MAX_LENGTH = 10

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_NON_KEY_CHARS = re.compile(r"[^a-z0-9]")


# =============================================================================
# Helpers
# =============================================================================


def _parse_int(value: str) -> int | None:
    """Leading-integer parse ("12", "12.0", "12abc" -> 12); None when absent."""
    match = _LEADING_INT.match(value or "")
    return int(match.group(1)) if match else None


def _cells(
    row: Sequence[object] | None,
    columns: tuple[str, ...],
    *,
    sheet: SheetName,
    row_number: int,
    strict: bool,
) -> dict[str, str] | None:
    if not row:
        return None
    if len(row) > len(columns):
        if strict:
            raise ValidationError(
                f"{sheet.value} row {row_number} has {len(row)} cells, expected {len(columns)}"
            )
        logger.debug("Ignoring %s extra cells in %s row %s", len(row) - len(columns), sheet.value, row_number)
    values = [str(cell).strip() if cell is not None else "" for cell in row[: len(columns)]]
    values.extend([""] * (len(columns) - len(values)))
    return dict(zip(columns, values))


def _missing(cells: dict[str, str], required: Iterable[str]) -> list[str]:
    return [field for field in required if not cells[field]]


def _skip_or_raise(sheet: SheetName, row_number: int, missing: list[str], strict: bool) -> None:
    message = f"{sheet.value} row {row_number} missing required fields: {', '.join(missing)}"
    if strict:
        raise ValidationError(message)
    logger.warning("Skipping %s", message)


def _data_rows(rows: Sequence[Sequence[object]] | None) -> list[tuple[int, Sequence[object]]]:
    """(1-based data index, row) for every row after the header."""
    if not rows or len(rows) <= 1:
        return []
    return list(enumerate(rows[1:], start=1))


# =============================================================================
# Decoding
# =============================================================================


def decode_audiences(rows: Sequence[Sequence[object]] | None, *, strict: bool = False) -> list[Audience]:
    audiences: list[Audience] = []
    for index, row in _data_rows(rows):
        cells = _cells(row, AUDIENCE_COLUMNS, sheet=SheetName.AUDIENCES, row_number=index + 1, strict=strict)
        if cells is None:
            continue
        missing = _missing(cells, ("name", "key"))
        if missing:
            _skip_or_raise(SheetName.AUDIENCES, index + 1, missing, strict)
            continue

        audiences.append(
            Audience(
                **{
                    **cells,
                    "id": cells["id"] or f"aud_{index}",
                    "order": _parse_int(cells["order"]) or index,
                    "status": cells["status"] or DEFAULT_ENTITY_STATUS,
                }
            )
        )
    return sorted(audiences, key=lambda a: (a.order, a.key))


def decode_topics(rows: Sequence[Sequence[object]] | None, *, strict: bool = False) -> list[Topic]:
    topics: list[Topic] = []
    for index, row in _data_rows(rows):
        cells = _cells(row, TOPIC_COLUMNS, sheet=SheetName.TOPICS, row_number=index + 1, strict=strict)
        if cells is None:
            continue
        missing = _missing(cells, ("name", "key"))
        if missing:
            _skip_or_raise(SheetName.TOPICS, index + 1, missing, strict)
            continue

        topics.append(
            Topic(
                **{
                    **cells,
                    "id": cells["id"] or f"topic_{index}",
                    "order": _parse_int(cells["order"]) or index,
                    "status": cells["status"] or DEFAULT_ENTITY_STATUS,
                }
            )
        )
    return sorted(topics, key=lambda t: (t.order, t.key))


def decode_messages(rows: Sequence[Sequence[object]] | None, *, strict: bool = False) -> list[Message]:
    """
    Decode the messages sheet.

    The sheet is written append-only, so it reads as a log: a later row with
    the same name supersedes an earlier one (e.g. a removal tombstone).
    """
    by_name: dict[str, Message] = {}
    for index, row in _data_rows(rows):
        cells = _cells(row, MESSAGE_COLUMNS, sheet=SheetName.MESSAGES, row_number=index + 1, strict=strict)
        if cells is None:
            continue
        missing = _missing(cells, ("name", "number", "audience", "topic"))
        if missing:
            _skip_or_raise(SheetName.MESSAGES, index + 1, missing, strict)
            continue

        by_name[cells["name"]] = Message(
            **{
                **cells,
                "id": f"msg_{index}",
                "number": _parse_int(cells["number"]) or 1,
                "variant": cells["variant"] or "a",
                "version": _parse_int(cells["version"]) or 1,
                "status": cells["status"] or MessageStatus.ACTIVE.value,
            }
        )
    return list(by_name.values())


def decode_templates(rows: Sequence[Sequence[object]] | None, *, strict: bool = False) -> list[Template]:
    templates: list[Template] = []
    for index, row in _data_rows(rows):
        cells = _cells(row, TEMPLATE_COLUMNS, sheet=SheetName.TEMPLATES, row_number=index + 1, strict=strict)
        if cells is None:
            continue
        if not cells["name"]:
            _skip_or_raise(SheetName.TEMPLATES, index + 1, ["name"], strict)
            continue
        templates.append(
            Template(
                id=index,
                name=cells["name"],
                type=cells["type"],
                dimensions=cells["dimensions"],
                version=cells["version"] or "1.0",
            )
        )
    return templates


# =============================================================================
# Encoding (fixed width and order, all strings)
# =============================================================================


def encode_audience_row(audience: Audience) -> list[str]:
    values = audience.model_dump(include=set(AUDIENCE_COLUMNS))
    values["status"] = values["status"] or DEFAULT_ENTITY_STATUS
    return [str(values[column]) for column in AUDIENCE_COLUMNS]


def encode_topic_row(topic: Topic) -> list[str]:
    values = topic.model_dump(include=set(TOPIC_COLUMNS))
    values["status"] = values["status"] or DEFAULT_ENTITY_STATUS
    return [str(values[column]) for column in TOPIC_COLUMNS]


def encode_message_row(message: Message, *, status: str | None = None) -> list[str]:
    """Encode a message; `status` overrides the record's own (used for tombstones)."""
    values = message.model_dump(include=set(MESSAGE_COLUMNS))
    values["status"] = status or values["status"] or MessageStatus.ACTIVE.value
    return [str(values[column]) for column in MESSAGE_COLUMNS]


# =============================================================================
# Header self-healing (messages sheet)
# =============================================================================


def needs_header_repair(header: Sequence[str] | None) -> bool:
    """True unless column 15 of the header reads "Status"."""
    if not header or len(header) <= MESSAGE_STATUS_COLUMN:
        return True
    cell = str(header[MESSAGE_STATUS_COLUMN] or "").strip()
    return cell.lower() != "status"


def repair_message_header(header: Sequence[str] | None) -> list[str]:
    """Fill blank header cells with the expected names and force column 15 to "Status"."""
    current = [str(cell or "") for cell in (header or [])][: len(MESSAGE_HEADER)]
    current.extend([""] * (len(MESSAGE_HEADER) - len(current)))
    repaired = [cell if cell.strip() else expected for cell, expected in zip(current, MESSAGE_HEADER)]
    repaired[MESSAGE_STATUS_COLUMN] = MESSAGE_HEADER[MESSAGE_STATUS_COLUMN]
    return repaired


# =============================================================================
# Naming and allocation
# =============================================================================


def message_name(audience: str, topic: str, number: int, variant: str, version: int) -> str:
    return f"{audience}!{topic}!m{number}!{variant}!n{version}"


def next_message_number(messages: Sequence[Message], topic: str, audience: str) -> int:
    """
    Number for a new message in (topic, audience).

    Reuses the pair's number when it already has messages (removed ones
    included), otherwise max over all messages + 1.
    """
    for message in messages:
        if message.topic == topic and message.audience == audience:
            return message.number
    return max((message.number for message in messages), default=0) + 1


def next_variant(messages: Sequence[Message], topic: str, audience: str, number: int) -> str:
    """
    First unused letter a..z within (topic, audience, number).

    Raises:
        VariantCapacityError: All 26 letters are taken
    """
    used = {
        message.variant
        for message in messages
        if message.topic == topic and message.audience == audience and message.number == number
    }
    for letter in VARIANT_LETTERS:
        if letter not in used:
            return letter
    raise VariantCapacityError(
        f"No variant letters left for topic={topic} audience={audience} number={number}"
    )


def derive_key(name: str, fallback: str) -> str:
    """Slug key: lower-case, alphanumerics only, at most 10 characters."""
    key = _NON_KEY_CHARS.sub("", (name or "").lower())[:KEY_MAX_LENGTH]
    return key or fallback
