"""
Pydantic models for Airtable webhook notifications and payloads,
plus the closed set of record changes the reconciler applies.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field


class IdRef(BaseModel):
    id: str | None = None


class AirtableWebhookNotification(BaseModel):
    """
    Lightweight ping Airtable POSTs to the notification URL.
    Carries no change data; payloads must be fetched separately.
    """

    base: IdRef | None = None
    webhook: IdRef | None = None
    timestamp: str | None = None
    cursor: int | None = None

    class Config:
        extra = "allow"

    @property
    def base_id(self) -> str | None:
        return self.base.id if self.base else None

    @property
    def webhook_id(self) -> str | None:
        return self.webhook.id if self.webhook else None

    def is_ping(self, require_cursor: bool = False) -> bool:
        """True when the notification carries nothing actionable."""
        if not self.base_id or not self.webhook_id:
            return True
        return require_cursor and self.cursor is None


class CellValues(BaseModel):
    cellValuesByFieldId: dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "allow"


class ChangedRecord(BaseModel):
    """Entry of changedRecordsById: current holds the new values of changed fields."""

    current: CellValues = Field(default_factory=CellValues)
    previous: CellValues | None = None
    unchanged: CellValues | None = None

    class Config:
        extra = "allow"


class CreatedRecord(BaseModel):
    createdTime: str | None = None
    cellValuesByFieldId: dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "allow"


class TableChanges(BaseModel):
    """Per-table change set inside a payload."""

    changedRecordsById: dict[str, ChangedRecord] = Field(default_factory=dict)
    createdRecordsById: dict[str, CreatedRecord] = Field(default_factory=dict)
    destroyedRecordIds: list[str] = Field(default_factory=list)

    class Config:
        extra = "allow"  # changedFieldsById, destroyedFieldIds, changedMetadata...


class WebhookPayload(BaseModel):
    timestamp: str | None = None
    baseTransactionNumber: int | None = None
    payloadFormat: str | None = None
    changedTablesById: dict[str, TableChanges] | None = None

    class Config:
        extra = "allow"


class PayloadPage(BaseModel):
    """One page of GET .../payloads."""

    payloads: list[WebhookPayload] = Field(default_factory=list)
    cursor: int | None = None
    mightHaveMore: bool = False

    class Config:
        extra = "allow"


@dataclass(frozen=True)
class RecordsDeleted:
    record_ids: tuple[str, ...]


@dataclass(frozen=True)
class RecordUpdated:
    record_id: str
    cell_values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordsCreated:
    record_ids: tuple[str, ...]


RecordChange = RecordsDeleted | RecordUpdated | RecordsCreated


def classify_table_changes(changes: TableChanges) -> list[RecordChange]:
    """
    Turn a table change set into an ordered list of record changes.

    Deletions always come first, and updates for records destroyed in the same
    change set are dropped: a destroyed record cannot be updated.
    """
    result: list[RecordChange] = []
    destroyed = set(changes.destroyedRecordIds)

    if destroyed:
        # dict.fromkeys keeps delivery order while removing duplicates
        result.append(RecordsDeleted(tuple(dict.fromkeys(changes.destroyedRecordIds))))

    for record_id, changed in changes.changedRecordsById.items():
        if record_id in destroyed:
            continue
        cell_values = dict(changed.current.cellValuesByFieldId)
        # Cleared cells only show up in previous
        if changed.previous:
            for field_id in changed.previous.cellValuesByFieldId:
                cell_values.setdefault(field_id, None)
        result.append(RecordUpdated(record_id, cell_values))

    created = [rid for rid in changes.createdRecordsById if rid not in destroyed]
    if created:
        result.append(RecordsCreated(tuple(created)))

    return result


def count_superseded_updates(changes: TableChanges) -> int:
    """Number of updates dropped because the record was destroyed in the same change set."""
    destroyed = set(changes.destroyedRecordIds)
    return sum(1 for record_id in changes.changedRecordsById if record_id in destroyed)


def normalize_cell_value(value: Any) -> Any:
    """
    Convert an Airtable cell value into the shape stored in local answers.

    Select choices and collaborators arrive as objects; forms store their names.
    """
    if isinstance(value, dict):
        for key in ("name", "email", "id"):
            if value.get(key) is not None:
                return value[key]
        return value
    if isinstance(value, list):
        return [normalize_cell_value(item) for item in value]
    return value
