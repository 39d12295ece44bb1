"""In-memory matrix state with change tracking and spreadsheet flush.

Mutations are synchronous: they update local state and append an outbox
entry. Network work happens only in initialize(), flush() and
sync_from_remote().

Write model per sheet:
- audiences/topics: create appends a row, update rewrites the matching row
  in place (looked up by id, then key)
- messages: append-only. Every change appends the message's current row;
  a rename (move, identity update) also appends a "removed" tombstone for
  the previous name. decode_messages reads the sheet as a log.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from matrix_sync.core.errors import (
    ConfigurationError,
    MatrixSyncError,
    NotFoundError,
    ValidationError,
)
from matrix_sync.core.structured_logging import build_log_context
from matrix_sync.enums import (
    DEFAULT_ENTITY_STATUS,
    ChangeAction,
    EntityType,
    MessageStatus,
    SheetName,
)
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
from matrix_sync.services import row_codec
from matrix_sync.services.outbox import Outbox
from matrix_sync.services.sheets_service import SpreadsheetClient, row_range

logger = logging.getLogger(__name__)

MESSAGE_IDENTITY_FIELDS = frozenset({"audience", "topic", "number", "variant", "version"})
MESSAGE_UPDATABLE_FIELDS = frozenset(Message.model_fields) - {"id"}
MESSAGE_STATUSES = frozenset(status.value for status in MessageStatus)

FLUSH_ORDER = (EntityType.AUDIENCE, EntityType.TOPIC, EntityType.MESSAGE)


def _temp_id(prefix: str) -> str:
    return f"temp_{prefix}_{uuid4().hex[:12]}"


class MatrixStateStore:
    """
    Canonical in-memory copy of the matrix plus its outbox.

    Single writer by convention: only these methods mutate state. Accessors
    and mutation results are copies, so callers can hold them as snapshots.
    """

    def __init__(self, client: SpreadsheetClient, *, strict_decode: bool = False):
        self.client = client
        self.strict_decode = strict_decode
        self.outbox = Outbox()
        self.is_connected = False
        self.last_sync_time: datetime | None = None
        self.last_error: str | None = None
        self._audiences: list[Audience] = []
        self._topics: list[Topic] = []
        self._messages: list[Message] = []
        self._templates: list[Template] = []

    # =========================================================================
    # Read accessors
    # =========================================================================

    @property
    def audiences(self) -> list[Audience]:
        return [audience.model_copy() for audience in self._audiences]

    @property
    def topics(self) -> list[Topic]:
        return [topic.model_copy() for topic in self._topics]

    @property
    def messages(self) -> list[Message]:
        return [message.model_copy() for message in self._messages]

    @property
    def templates(self) -> list[Template]:
        return [template.model_copy() for template in self._templates]

    @property
    def change_log(self) -> list[ChangeLogEntry]:
        return self.outbox.entries

    @property
    def pending_changes(self) -> list[ChangeLogEntry]:
        return self.outbox.pending()

    @property
    def has_pending_changes(self) -> bool:
        return self.outbox.has_pending()

    def get_messages_for_cell(self, topic_key: str, audience_key: str) -> list[Message]:
        """Live (not removed) messages in one matrix cell."""
        return [
            message.model_copy()
            for message in self._messages
            if message.topic == topic_key
            and message.audience == audience_key
            and not message.is_removed
        ]

    # =========================================================================
    # Lookups
    # =========================================================================

    def _find_audience(self, key: str) -> Audience:
        for audience in self._audiences:
            if audience.key == key:
                return audience
        raise NotFoundError(f"Audience not found: {key}")

    def _find_topic(self, key: str) -> Topic:
        for topic in self._topics:
            if topic.key == key:
                return topic
        raise NotFoundError(f"Topic not found: {key}")

    def _message_index(self, message_id: str) -> int:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        raise NotFoundError(f"Message not found: {message_id}")

    def _name_taken(self, name: str, *, exclude_id: str) -> bool:
        return any(
            message.name == name and message.id != exclude_id and not message.is_removed
            for message in self._messages
        )

    # =========================================================================
    # Audience / topic mutations
    # =========================================================================

    def add_audience(self, name: str) -> Audience:
        order = max((audience.order for audience in self._audiences), default=0) + 1
        audience = Audience(
            id=_temp_id("aud"),
            name=name,
            key=row_codec.derive_key(name, f"aud{order}"),
            order=order,
            status=DEFAULT_ENTITY_STATUS,
            is_new=True,
        )
        self._audiences.append(audience)
        self.outbox.append(EntityType.AUDIENCE, ChangeAction.CREATE, audience.model_dump())
        return audience.model_copy()

    def add_topic(self, name: str) -> Topic:
        order = max((topic.order for topic in self._topics), default=0) + 1
        topic = Topic(
            id=_temp_id("top"),
            name=name,
            key=row_codec.derive_key(name, f"top{order}"),
            order=order,
            status=DEFAULT_ENTITY_STATUS,
            created=date.today().isoformat(),
            is_new=True,
        )
        self._topics.append(topic)
        self.outbox.append(EntityType.TOPIC, ChangeAction.CREATE, topic.model_dump())
        return topic.model_copy()

    def update_audience_name(self, audience_key: str, new_name: str) -> list[Audience]:
        """Rename every audience with this key (keys are not unique)."""
        renamed = [audience for audience in self._audiences if audience.key == audience_key]
        if not renamed:
            raise NotFoundError(f"Audience not found: {audience_key}")
        for audience in renamed:
            audience.name = new_name
            audience.is_modified = True
            self.outbox.append(EntityType.AUDIENCE, ChangeAction.UPDATE, audience.model_dump())
        return [audience.model_copy() for audience in renamed]

    def update_topic_name(self, topic_key: str, new_name: str) -> list[Topic]:
        """Rename every topic with this key (keys are not unique)."""
        renamed = [topic for topic in self._topics if topic.key == topic_key]
        if not renamed:
            raise NotFoundError(f"Topic not found: {topic_key}")
        for topic in renamed:
            topic.name = new_name
            topic.is_modified = True
            self.outbox.append(EntityType.TOPIC, ChangeAction.UPDATE, topic.model_dump())
        return [topic.model_copy() for topic in renamed]

    # =========================================================================
    # Message mutations
    # =========================================================================

    def add_message(self, topic_key: str, audience_key: str) -> Message:
        """
        Create an empty message in a cell.

        Raises:
            NotFoundError: Unknown topic or audience key
            VariantCapacityError: The cell's number already has variants a-z
        """
        self._find_topic(topic_key)
        self._find_audience(audience_key)

        number = row_codec.next_message_number(self._messages, topic_key, audience_key)
        variant = row_codec.next_variant(self._messages, topic_key, audience_key, number)
        version = 1

        message = Message(
            id=_temp_id("msg"),
            name=row_codec.message_name(audience_key, topic_key, number, variant, version),
            number=number,
            variant=variant,
            audience=audience_key,
            topic=topic_key,
            version=version,
            status=MessageStatus.ACTIVE.value,
            is_new=True,
        )
        self._messages.append(message)
        self.outbox.append(EntityType.MESSAGE, ChangeAction.CREATE, message.model_dump())
        return message.model_copy()

    def update_message(self, message_id: str, changes: dict[str, Any]) -> Message:
        """
        Merge field changes into a message.

        The name is recomputed when an identity field changes, unless the
        caller supplied a name as well.

        Raises:
            NotFoundError: Unknown message id
            ValidationError: Unknown field, invalid value, or the new name is
                held by another live message
        """
        index = self._message_index(message_id)
        current = self._messages[index]

        unknown = set(changes) - MESSAGE_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown message fields: {', '.join(sorted(unknown))}")
        if "status" in changes and changes["status"] not in MESSAGE_STATUSES:
            raise ValidationError(f"Invalid message status: {changes['status']}")

        merged = {**current.model_dump(), **changes, "is_modified": True}
        if MESSAGE_IDENTITY_FIELDS & changes.keys() and "name" not in changes:
            merged["name"] = row_codec.message_name(
                merged["audience"],
                merged["topic"],
                merged["number"],
                merged["variant"],
                merged["version"],
            )
        if merged["name"] != current.name and self._name_taken(merged["name"], exclude_id=message_id):
            raise ValidationError(f"Message name already in use: {merged['name']}")
        try:
            updated = Message.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc

        self._messages[index] = updated
        self.outbox.append(
            EntityType.MESSAGE,
            ChangeAction.UPDATE,
            {
                "id": message_id,
                "changes": dict(changes),
                "record": updated.model_dump(),
                "previous": current.model_dump(),
            },
        )
        return updated.model_copy()

    def move_message(self, message_id: str, new_audience_key: str) -> Message:
        """
        Move a message to another audience column in the same topic row.

        The variant is re-allocated only if the target name is already held
        by another live message.

        Raises:
            NotFoundError: Unknown message id or audience key
        """
        current = self._messages[self._message_index(message_id)]
        self._find_audience(new_audience_key)
        if current.audience == new_audience_key:
            return current.model_copy()

        previous = current.model_dump()
        variant = current.variant
        name = row_codec.message_name(
            new_audience_key, current.topic, current.number, variant, current.version
        )
        if self._name_taken(name, exclude_id=message_id):
            variant = row_codec.next_variant(
                self._messages, current.topic, new_audience_key, current.number
            )
            name = row_codec.message_name(
                new_audience_key, current.topic, current.number, variant, current.version
            )

        changes: dict[str, Any] = {"audience": new_audience_key, "name": name}
        if variant != current.variant:
            changes["variant"] = variant
        moved = self.update_message(message_id, changes)

        self.outbox.append(
            EntityType.MESSAGE,
            ChangeAction.MOVE,
            {
                "message_id": message_id,
                "from": previous["audience"],
                "to": new_audience_key,
                "record": moved.model_dump(),
                "previous": previous,
            },
        )
        return moved

    def copy_message(self, message_id: str, new_audience_key: str) -> Message:
        """
        Copy a message into another audience column under the same number.

        Raises:
            NotFoundError: Unknown message id or audience key
            VariantCapacityError: No free variant letter in the target cell
        """
        original = self._messages[self._message_index(message_id)]
        self._find_audience(new_audience_key)

        variant = row_codec.next_variant(
            self._messages, original.topic, new_audience_key, original.number
        )
        copied = original.model_copy(
            update={
                "id": _temp_id("msg_copy"),
                "name": row_codec.message_name(
                    new_audience_key, original.topic, original.number, variant, original.version
                ),
                "audience": new_audience_key,
                "variant": variant,
                "is_new": True,
                "is_modified": False,
            }
        )
        self._messages.append(copied)
        self.outbox.append(
            EntityType.MESSAGE,
            ChangeAction.COPY,
            {"original_id": message_id, "new_message": copied.model_dump()},
        )
        return copied.model_copy()

    def remove_message(self, message_id: str) -> Message:
        """
        Soft-delete a message (status "removed"); removing twice is a no-op.

        Raises:
            NotFoundError: Unknown message id
        """
        index = self._message_index(message_id)
        current = self._messages[index]
        if current.is_removed:
            return current.model_copy()

        removed = current.model_copy(
            update={"status": MessageStatus.REMOVED.value, "is_modified": True}
        )
        self._messages[index] = removed
        self.outbox.append(EntityType.MESSAGE, ChangeAction.REMOVE, removed.model_dump())
        return removed.model_copy()

    # =========================================================================
    # Remote sync
    # =========================================================================

    async def initialize(self) -> bool:
        """
        Verify configuration and connectivity, then load the matrix.

        Raises:
            ConfigurationError: Service account or spreadsheet id missing
            AuthError / ApiError: The spreadsheet is unreachable
        """
        if not self.client.is_configured:
            self.is_connected = False
            raise ConfigurationError(
                "Service account not configured. Set GOOGLE_SERVICE_ACCOUNT_KEY "
                "and GOOGLE_SPREADSHEET_ID."
            )
        try:
            await self.client.get_spreadsheet_info()
        except MatrixSyncError as exc:
            self.is_connected = False
            self.last_error = f"Failed to connect to Google Sheets: {exc}"
            raise
        self.is_connected = True
        return await self.sync_from_remote()

    def disconnect(self) -> None:
        self.is_connected = False

    async def fetch_snapshot(self) -> MatrixSnapshot:
        """Read and decode all four sheets without touching local state."""
        audience_rows, topic_rows, message_rows, template_rows = await asyncio.gather(
            self.client.read_sheet(SheetName.AUDIENCES.value),
            self.client.read_sheet(SheetName.TOPICS.value),
            self.client.read_sheet(SheetName.MESSAGES.value),
            self.client.read_sheet(SheetName.TEMPLATES.value),
        )
        strict = self.strict_decode
        return MatrixSnapshot(
            audiences=row_codec.decode_audiences(audience_rows, strict=strict),
            topics=row_codec.decode_topics(topic_rows, strict=strict),
            messages=row_codec.decode_messages(message_rows, strict=strict),
            templates=row_codec.decode_templates(template_rows, strict=strict),
        )

    async def sync_from_remote(self, *, force: bool = False) -> bool:
        """
        Replace local collections with the spreadsheet contents.

        Refused while unsynced changes exist (they would be overwritten)
        unless force=True, including changes made while the read is in
        flight. Any read or decode failure leaves local state
        untouched.
        """
        if self.outbox.has_pending() and not force:
            self.last_error = "Sync skipped: unsaved local changes pending"
            logger.warning(
                "Skipping sync with %s unsynced changes",
                len(self.outbox.pending()),
                extra=build_log_context(change_count=len(self.outbox.pending())),
            )
            return False

        changes_before = len(self.outbox)
        try:
            snapshot = await self.fetch_snapshot()
        except MatrixSyncError as exc:
            self.last_error = f"Sync failed: {exc}"
            logger.warning(
                "Sync failed error=%s",
                exc,
                extra=build_log_context(spreadsheet_id=self.client.spreadsheet_id),
            )
            return False

        # Mutations can land while the read is suspended
        if len(self.outbox) != changes_before and not force:
            self.last_error = "Sync skipped: local changes made during sync"
            logger.warning(
                "Discarding sync snapshot, %s changes made during read",
                len(self.outbox) - changes_before,
                extra=build_log_context(change_count=len(self.outbox.pending())),
            )
            return False

        self._audiences = snapshot.audiences
        self._topics = snapshot.topics
        self._messages = snapshot.messages
        self._templates = snapshot.templates
        self.last_sync_time = datetime.now(timezone.utc)
        self.last_error = None
        logger.info(
            "Synced matrix audiences=%s topics=%s messages=%s templates=%s",
            len(snapshot.audiences),
            len(snapshot.topics),
            len(snapshot.messages),
            len(snapshot.templates),
        )
        return True

    async def flush(self, *, refresh: bool = False) -> FlushResult:
        """
        Write unsynced outbox entries to the spreadsheet.

        Each entity type is a partition written independently; a failing
        partition is reported in `errors` and its entries stay unsynced.
        With refresh=True a fully successful flush is followed by a sync.
        """
        groups = self.outbox.pending_by_type()
        total = sum(len(entries) for entries in groups.values())
        if not total:
            return FlushResult(success=True, total_changes=0)

        writers: dict[EntityType, Callable[[list[ChangeLogEntry]], Awaitable[None]]] = {
            EntityType.AUDIENCE: self._flush_audiences,
            EntityType.TOPIC: self._flush_topics,
            EntityType.MESSAGE: self._flush_messages,
        }
        results: list[SheetResult] = []
        errors: list[SheetError] = []

        for entity_type in FLUSH_ORDER:
            entries = groups.get(entity_type)
            if not entries:
                continue
            sheet = entity_type.sheet.value
            try:
                await writers[entity_type](entries)
            except MatrixSyncError as exc:
                logger.warning(
                    "Flush failed for %s: %s",
                    sheet,
                    exc,
                    extra=build_log_context(sheet=sheet, change_count=len(entries)),
                )
                errors.append(SheetError(sheet=sheet, error=str(exc), count=len(entries)))
                continue

            self.outbox.mark_synced(entries)
            results.append(SheetResult(sheet=sheet, count=len(entries)))
            logger.info(
                "Flushed %s changes to %s",
                len(entries),
                sheet,
                extra=build_log_context(sheet=sheet, change_count=len(entries)),
            )

        result = FlushResult(
            success=not errors,
            results=results,
            errors=errors,
            total_changes=total,
        )
        if result.success and refresh:
            await self.sync_from_remote()
        return result

    # =========================================================================
    # Partition writers
    # =========================================================================

    async def _flush_keyed_sheet(
        self,
        sheet: SheetName,
        entries: list[ChangeLogEntry],
        *,
        columns: tuple[str, ...],
        decode: Callable[[dict[str, Any]], Audience | Topic],
        encode: Callable[[Any], list[str]],
    ) -> None:
        current = await self.client.read_sheet(sheet.value)
        width = len(columns)
        if not current:
            await self.client.write_range(sheet.value, row_range(1, width), [list(columns)])
            current = [list(columns)]

        id_column = columns.index("id")
        key_column = columns.index("key")
        row_by_id: dict[str, int] = {}
        row_by_key: dict[str, int] = {}
        for row_number, row in enumerate(current[1:], start=2):
            if len(row) > id_column and row[id_column].strip():
                row_by_id.setdefault(row[id_column].strip(), row_number)
            if len(row) > key_column and row[key_column].strip():
                row_by_key.setdefault(row[key_column].strip(), row_number)

        updates: dict[int, list[str]] = {}
        appends: list[list[str]] = []
        append_index: dict[str, int] = {}

        for entry in entries:
            record = decode(entry.data)
            row = encode(record)
            if record.id in append_index:
                appends[append_index[record.id]] = row
                continue
            target = row_by_id.get(record.id)
            if target is None and entry.action == ChangeAction.UPDATE:
                target = row_by_key.get(record.key)
            if target is not None:
                updates[target] = row
            else:
                append_index[record.id] = len(appends)
                appends.append(row)

        for row_number, row in updates.items():
            await self.client.write_range(sheet.value, row_range(row_number, width), [row])
        if appends:
            await self.client.append_rows(sheet.value, appends)

    async def _flush_audiences(self, entries: list[ChangeLogEntry]) -> None:
        await self._flush_keyed_sheet(
            SheetName.AUDIENCES,
            entries,
            columns=row_codec.AUDIENCE_COLUMNS,
            decode=Audience.model_validate,
            encode=row_codec.encode_audience_row,
        )

    async def _flush_topics(self, entries: list[ChangeLogEntry]) -> None:
        await self._flush_keyed_sheet(
            SheetName.TOPICS,
            entries,
            columns=row_codec.TOPIC_COLUMNS,
            decode=Topic.model_validate,
            encode=row_codec.encode_topic_row,
        )

    async def _ensure_message_header(self, current: list[list[str]]) -> None:
        header_range = row_range(1, len(row_codec.MESSAGE_HEADER))
        if not current:
            await self.client.write_range(
                SheetName.MESSAGES.value, header_range, [list(row_codec.MESSAGE_HEADER)]
            )
            return
        if not row_codec.needs_header_repair(current[0]):
            return

        repaired = row_codec.repair_message_header(current[0])
        logger.info("Repairing messages header row: %s", repaired)
        try:
            await self.client.write_range(SheetName.MESSAGES.value, header_range, [repaired])
        except MatrixSyncError as exc:
            # Data still lands in column 15
            logger.warning("Failed to repair messages header: %s", exc)

    async def _flush_messages(self, entries: list[ChangeLogEntry]) -> None:
        current = await self.client.read_sheet(SheetName.MESSAGES.value)
        await self._ensure_message_header(current)

        rows: list[list[str]] = []
        last_row_by_name: dict[str, list[str]] = {}

        def emit(row: list[str]) -> None:
            name = row[0]
            if last_row_by_name.get(name) == row:
                return
            rows.append(row)
            last_row_by_name[name] = row

        def emit_with_tombstone(data: dict[str, Any]) -> None:
            record = Message.model_validate(data["record"])
            previous = data.get("previous")
            if previous and previous.get("name") != record.name:
                emit(
                    row_codec.encode_message_row(
                        Message.model_validate(previous), status=MessageStatus.REMOVED.value
                    )
                )
            emit(row_codec.encode_message_row(record))

        for entry in entries:
            if entry.action == ChangeAction.CREATE:
                emit(row_codec.encode_message_row(Message.model_validate(entry.data)))
            elif entry.action == ChangeAction.COPY:
                emit(row_codec.encode_message_row(Message.model_validate(entry.data["new_message"])))
            elif entry.action in (ChangeAction.UPDATE, ChangeAction.MOVE):
                emit_with_tombstone(entry.data)
            elif entry.action == ChangeAction.REMOVE:
                emit(
                    row_codec.encode_message_row(
                        Message.model_validate(entry.data), status=MessageStatus.REMOVED.value
                    )
                )

        if rows:
            await self.client.append_rows(SheetName.MESSAGES.value, rows)
