"""
Applies Airtable webhook payloads to locally mirrored form responses.

Deletions become one bulk soft delete, updates are mapped from Airtable field ids
to form question keys, creations are only counted (the owning form of a record
that was never submitted here cannot be known).
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

import structlog

from app.integrations.airtable.models import (
    RecordChange,
    RecordsCreated,
    RecordsDeleted,
    RecordUpdated,
    TableChanges,
    WebhookPayload,
    classify_table_changes,
    count_superseded_updates,
    normalize_cell_value,
)
from app.models.database import FormSchema
from app.services.supabase_service import SupabaseService

logger = structlog.get_logger()


class SkipReason(str, Enum):
    NOT_FOUND_LOCAL = "not_found_local"
    FORM_NOT_FOUND = "form_not_found"
    SCHEMA_DRIFT = "schema_drift"
    UNCHANGED = "unchanged"
    ALREADY_DELETED = "already_deleted"
    DESTROYED_IN_SAME_PAYLOAD = "destroyed_in_same_payload"
    ATTACHMENT_FIELD = "attachment_field"


@dataclass
class ReconciliationResult:
    deleted_count: int = 0
    updated_count: int = 0
    created_count: int = 0
    skip_reasons: Counter = field(default_factory=Counter)

    @property
    def skipped_count(self) -> int:
        return sum(self.skip_reasons.values())

    def skip(self, reason: SkipReason, count: int = 1) -> None:
        if count:
            self.skip_reasons[reason] += count

    def merge(self, other: "ReconciliationResult") -> "ReconciliationResult":
        self.deleted_count += other.deleted_count
        self.updated_count += other.updated_count
        self.created_count += other.created_count
        self.skip_reasons.update(other.skip_reasons)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "updated_count": self.updated_count,
            "created_count": self.created_count,
            "skipped_count": self.skipped_count,
            "skip_reasons": {reason.value: n for reason, n in self.skip_reasons.items()},
        }


class FormSchemaResolver:
    """Resolves form id -> {airtable_field_id: question_key}, cached for one run."""

    def __init__(self, supabase_service: SupabaseService):
        self.supabase_service = supabase_service
        self._cache: dict[UUID, FormSchema | None] = {}

    def _form(self, form_id: UUID) -> FormSchema | None:
        if form_id not in self._cache:
            self._cache[form_id] = self.supabase_service.get_form(form_id)
        return self._cache[form_id]

    def field_map(self, form_id: UUID) -> dict[str, str] | None:
        form = self._form(form_id)
        return form.field_to_question_key() if form else None

    def unsynced_fields(self, form_id: UUID) -> set[str]:
        form = self._form(form_id)
        return form.unsynced_field_ids() if form else set()


class ChangeReconciler:
    """Reconciles payloads against the responses table."""

    def __init__(
        self,
        supabase_service: SupabaseService | None = None,
        schema_resolver: FormSchemaResolver | None = None,
    ):
        self.supabase_service = supabase_service or SupabaseService()
        self.schema_resolver = schema_resolver or FormSchemaResolver(self.supabase_service)

    def apply_payload(self, payload: WebhookPayload) -> ReconciliationResult:
        """
        Apply one payload. Tables are independent; within a table deletions are
        applied before updates.
        """
        result = ReconciliationResult()
        if not payload.changedTablesById:
            logger.debug(
                "Payload has no table changes, skipping",
                base_transaction_number=payload.baseTransactionNumber,
            )
            return result

        for table_id, changes in payload.changedTablesById.items():
            result.merge(self.apply_table_changes(table_id, changes))

        logger.info(
            "Applied Airtable payload",
            base_transaction_number=payload.baseTransactionNumber,
            **result.to_dict(),
        )
        return result

    def apply_table_changes(self, table_id: str, changes: TableChanges) -> ReconciliationResult:
        result = ReconciliationResult()
        result.skip(SkipReason.DESTROYED_IN_SAME_PAYLOAD, count_superseded_updates(changes))

        for change in classify_table_changes(changes):
            self._apply_change(table_id, change, result)
        return result

    def _apply_change(
        self, table_id: str, change: RecordChange, result: ReconciliationResult
    ) -> None:
        if isinstance(change, RecordsDeleted):
            result.deleted_count += self._apply_deletions(table_id, change)
        elif isinstance(change, RecordUpdated):
            outcome = self._apply_update(change)
            if outcome is None:
                result.updated_count += 1
            else:
                result.skip(outcome)
        elif isinstance(change, RecordsCreated):
            # Not materialized: no local form can be inferred for these records
            result.created_count += len(change.record_ids)
            logger.debug(
                "Observed records created in Airtable",
                table_id=table_id,
                record_count=len(change.record_ids),
            )
        else:
            raise TypeError(f"Unknown record change: {change!r}")

    def _apply_deletions(self, table_id: str, change: RecordsDeleted) -> int:
        matched = self.supabase_service.mark_responses_deleted(list(change.record_ids))
        if matched:
            logger.info(
                "Marked responses deleted in Airtable",
                table_id=table_id,
                requested=len(change.record_ids),
                matched=matched,
            )
        else:
            logger.info(
                "No local responses for destroyed Airtable records",
                table_id=table_id,
                requested=len(change.record_ids),
            )
        return matched

    def _apply_update(self, change: RecordUpdated) -> SkipReason | None:
        """Returns None when the response was written, else why it was skipped."""
        response = self.supabase_service.get_response_by_airtable_record_id(change.record_id)
        if not response:
            logger.debug("No local response for Airtable record", record_id=change.record_id)
            return SkipReason.NOT_FOUND_LOCAL

        if response.is_deleted_in_airtable:
            return SkipReason.ALREADY_DELETED

        field_map = self.schema_resolver.field_map(response.form_id)
        if field_map is None:
            logger.warning(
                "Form of response not found",
                record_id=change.record_id,
                form_id=str(response.form_id),
            )
            return SkipReason.FORM_NOT_FOUND

        answers = dict(response.answers)
        mapped = 0
        changed = False
        for field_id, raw_value in change.cell_values.items():
            question_key = field_map.get(field_id)
            if question_key is None:
                continue
            mapped += 1
            value = normalize_cell_value(raw_value)
            if question_key not in answers or answers[question_key] != value:
                answers[question_key] = value
                changed = True

        if not mapped:
            if self.schema_resolver.unsynced_fields(response.form_id).intersection(
                change.cell_values
            ):
                logger.debug(
                    "Only attachment fields changed, answers left as submitted",
                    record_id=change.record_id,
                )
                return SkipReason.ATTACHMENT_FIELD
            logger.debug(
                "No changed field maps to a question",
                record_id=change.record_id,
                field_ids=list(change.cell_values),
            )
            return SkipReason.SCHEMA_DRIFT
        if not changed:
            return SkipReason.UNCHANGED

        self.supabase_service.update_response_answers(response.id, answers)
        logger.info(
            "Updated response from Airtable",
            record_id=change.record_id,
            response_id=str(response.id),
            mapped_fields=mapped,
        )
        return None
