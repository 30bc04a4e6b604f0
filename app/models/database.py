"""
Pydantic models for Supabase database tables.
These models represent the structure of data stored in Supabase.
"""
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

QuestionType = Literal[
    "singleLineText",
    "multilineText",
    "singleSelect",
    "multipleSelects",
    "multipleAttachments",
]

# Attachments are uploaded through the form; Airtable only echoes attachment ids back
UNSYNCED_QUESTION_TYPES = frozenset({"multipleAttachments"})

# Answers hold text, multi-select lists or whatever scalar Airtable returns
AnswerValue = str | list[str] | int | float | bool | None


class Credential(BaseModel):
    """Model for airtable_credentials table. Tokens are plaintext once loaded."""

    id: UUID | None = None
    owner_id: str
    airtable_user_id: str | None = None
    email: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Condition(BaseModel):
    question_key: str
    operator: Literal["equals", "notEquals", "contains"]
    value: Any = None


class ConditionalRules(BaseModel):
    logic: Literal["AND", "OR"] = "AND"
    conditions: list[Condition] = Field(default_factory=list)


class Question(BaseModel):
    """A form question bound to one Airtable field."""

    question_key: str
    airtable_field_id: str
    label: str
    type: QuestionType
    options: list[str] = Field(default_factory=list)
    required: bool = False
    conditional_rules: ConditionalRules | None = None


class FormSchema(BaseModel):
    """Model for forms table."""

    id: UUID
    owner_id: str
    title: str | None = None
    airtable_base_id: str
    airtable_table_id: str
    questions: list[Question] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def field_to_question_key(self) -> dict[str, str]:
        """Map Airtable field id -> local question key, attachment questions excluded."""
        return {
            q.airtable_field_id: q.question_key
            for q in self.questions
            if q.type not in UNSYNCED_QUESTION_TYPES
        }

    def unsynced_field_ids(self) -> set[str]:
        """Airtable field ids of questions whose answers are never written back."""
        return {
            q.airtable_field_id for q in self.questions if q.type in UNSYNCED_QUESTION_TYPES
        }


class FormResponse(BaseModel):
    """Model for responses table (local mirror of one Airtable record)."""

    id: UUID | None = None
    form_id: UUID
    airtable_record_id: str
    answers: dict[str, AnswerValue] = Field(default_factory=dict)
    is_deleted_in_airtable: bool = False
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


class WebhookSubscription(BaseModel):
    """Model for airtable_webhooks table."""

    id: UUID | None = None
    owner_id: str | None = None
    base_id: str
    webhook_id: str
    notification_url: str
    cursor: int | None = None
    mac_secret_base64: str | None = None
    expiration_time: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
