"""Tests for Airtable wire models and change classification."""

from app.integrations.airtable.models import (
    AirtableWebhookNotification,
    PayloadPage,
    RecordsCreated,
    RecordsDeleted,
    RecordUpdated,
    TableChanges,
    classify_table_changes,
    count_superseded_updates,
    normalize_cell_value,
)


class TestNotificationPing:
    def test_missing_ids_is_ping(self):
        assert AirtableWebhookNotification.model_validate({}).is_ping()
        assert AirtableWebhookNotification.model_validate({"base": {"id": "app1"}}).is_ping()

    def test_complete_notification_is_not_ping(self):
        notification = AirtableWebhookNotification.model_validate(
            {
                "base": {"id": "app1"},
                "webhook": {"id": "ach1"},
                "timestamp": "2024-01-01T00:00:00.000Z",
            }
        )
        assert notification.base_id == "app1"
        assert notification.webhook_id == "ach1"
        assert not notification.is_ping()

    def test_missing_cursor_is_ping_only_when_required(self):
        notification = AirtableWebhookNotification.model_validate(
            {"base": {"id": "app1"}, "webhook": {"id": "ach1"}}
        )
        assert not notification.is_ping(require_cursor=False)
        assert notification.is_ping(require_cursor=True)

        with_cursor = notification.model_copy(update={"cursor": 7})
        assert not with_cursor.is_ping(require_cursor=True)


class TestClassifyTableChanges:
    def test_deletions_come_first(self):
        changes = TableChanges.model_validate(
            {
                "createdRecordsById": {"recNew": {"cellValuesByFieldId": {}}},
                "changedRecordsById": {
                    "rec2": {"current": {"cellValuesByFieldId": {"fldName": "x"}}}
                },
                "destroyedRecordIds": ["rec1", "rec1", "rec3"],
            }
        )

        result = classify_table_changes(changes)

        assert result == [
            RecordsDeleted(("rec1", "rec3")),
            RecordUpdated("rec2", {"fldName": "x"}),
            RecordsCreated(("recNew",)),
        ]

    def test_destroyed_record_update_is_dropped(self):
        changes = TableChanges.model_validate(
            {
                "changedRecordsById": {
                    "rec1": {"current": {"cellValuesByFieldId": {"fldName": "x"}}},
                    "rec2": {"current": {"cellValuesByFieldId": {"fldName": "y"}}},
                },
                "destroyedRecordIds": ["rec1"],
            }
        )

        result = classify_table_changes(changes)

        assert result == [RecordsDeleted(("rec1",)), RecordUpdated("rec2", {"fldName": "y"})]
        assert count_superseded_updates(changes) == 1

    def test_cleared_cell_becomes_none(self):
        changes = TableChanges.model_validate(
            {
                "changedRecordsById": {
                    "rec1": {
                        "current": {"cellValuesByFieldId": {}},
                        "previous": {"cellValuesByFieldId": {"fldName": "old"}},
                    }
                }
            }
        )

        assert classify_table_changes(changes) == [RecordUpdated("rec1", {"fldName": None})]

    def test_empty_changes(self):
        assert classify_table_changes(TableChanges()) == []


class TestNormalizeCellValue:
    def test_select_choice_uses_name(self):
        assert normalize_cell_value({"id": "selA", "name": "Red", "color": "red"}) == "Red"

    def test_collaborator_falls_back_to_email(self):
        assert normalize_cell_value({"id": "usr1", "email": "a@example.com"}) == "a@example.com"

    def test_lists_are_normalized_per_item(self):
        assert normalize_cell_value([{"name": "Red"}, {"name": "Blue"}]) == ["Red", "Blue"]

    def test_scalars_pass_through(self):
        assert normalize_cell_value("text") == "text"
        assert normalize_cell_value(3) == 3
        assert normalize_cell_value(None) is None


class TestPayloadPage:
    def test_defaults(self):
        page = PayloadPage.model_validate({"payloads": []})
        assert page.cursor is None
        assert page.mightHaveMore is False

    def test_payload_without_table_changes(self):
        page = PayloadPage.model_validate(
            {"payloads": [{"timestamp": "t", "baseTransactionNumber": 4}], "cursor": 2}
        )
        assert page.payloads[0].changedTablesById is None
        assert page.cursor == 2


class TestFormSchemaFieldMap:
    def test_attachment_questions_are_not_mapped(self, form):
        assert form.field_to_question_key() == {"fldName": "q1", "fldColor": "q_color"}
        assert form.unsynced_field_ids() == {"fldFile"}
