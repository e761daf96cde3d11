from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class Actor(BaseModel):
    user_id: str
    org_id: str


FieldType = Literal["text", "textarea", "number", "date", "select", "checkbox"]
FieldCategory = Literal["creation", "action"]
Frequency = Literal["weekly", "monthly", "quarterly", "half_yearly", "yearly"]
DerivedStatus = Literal["UPCOMING", "OPEN", "COMPLETED", "OVERDUE"]
MappingConfidence = Literal["high", "medium", "low"]
WindowState = Literal["upcoming", "open", "completed", "missed"]

DERIVED_STATUSES: tuple[str, ...] = ("UPCOMING", "OPEN", "COMPLETED", "OVERDUE")


class TemplateFieldInput(BaseModel):
    field_key: str = ""
    field_label: str = Field(min_length=1, max_length=255)
    field_type: FieldType = "text"
    field_category: FieldCategory = "creation"
    is_required: bool = False
    display_order: int = Field(default=0, ge=0)
    config: dict[str, Any] = Field(default_factory=dict)


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=255)
    doc_num: str = ""
    sop: str = ""
    description: str = ""
    fields: list[TemplateFieldInput] = Field(min_length=1)

    @model_validator(mode="after")
    def action_fields_need_keys(self) -> "TemplateCreate":
        _check_action_keys(self.fields)
        return self


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, min_length=1, max_length=255)
    doc_num: str | None = None
    sop: str | None = None
    description: str | None = None
    fields: list[TemplateFieldInput] | None = None

    @model_validator(mode="after")
    def action_fields_need_keys(self) -> "TemplateUpdate":
        if self.fields is not None:
            if not self.fields:
                raise ValueError("a template needs at least one field")
            _check_action_keys(self.fields)
        return self


def _check_action_keys(fields: list[TemplateFieldInput]) -> None:
    for index, item in enumerate(fields):
        if item.field_category == "action" and not item.field_key.strip():
            raise ValueError(f"fields[{index}]: action fields require a field_key")


class JobCreate(BaseModel):
    template_id: int
    assigned_to: str = Field(min_length=1)
    frequency: Frequency
    anchor_date: date
    reference: str | None = None
    creation_values: dict[str, Any] = Field(default_factory=dict)


class JobUpdate(BaseModel):
    assigned_to: str | None = Field(default=None, min_length=1)
    frequency: Frequency | None = None
    anchor_date: date | None = None


class ExecuteJobAction(BaseModel):
    action_values: dict[str, Any] = Field(default_factory=dict)
    notes: str = ""


class ExtractionResult(BaseModel):
    description: str = ""
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FieldMapping(BaseModel):
    document_column: str
    template_field_key: str
    template_field_label: str = ""
    field_category: FieldCategory = "creation"
    confidence: MappingConfidence = "high"


class MappingReport(BaseModel):
    is_valid: bool
    missing_required_fields: list[str] = Field(default_factory=list)
    unmapped_optional_fields: list[str] = Field(default_factory=list)
    unmapped_columns: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class MappedJob(BaseModel):
    index: int
    creation_values: dict[str, Any] = Field(default_factory=dict)
    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RowValidationError(BaseModel):
    index: int
    errors: list[str]


class CreatedRow(BaseModel):
    index: int
    job_id: int


class RowFailure(BaseModel):
    index: int
    error: str


class BulkJobInput(BaseModel):
    creation_values: dict[str, Any] = Field(default_factory=dict)
    assigned_to: str | None = None
    frequency: Frequency | None = None
    anchor_date: date | None = None
    reference: str | None = None


class BulkCreateRequest(BaseModel):
    template_id: int
    assigned_to: str | None = None
    frequency: Frequency | None = None
    anchor_date: date | None = None
    jobs: list[BulkJobInput] = Field(min_length=1)


class BulkCreateResult(BaseModel):
    total_attempted: int
    total_created: int
    created: list[CreatedRow] = Field(default_factory=list)
    failed: list[RowFailure] = Field(default_factory=list)
    validation_errors: list[RowValidationError] = Field(default_factory=list)


class CycleWindow(BaseModel):
    index: int
    start: datetime
    end: datetime
    state: WindowState = "upcoming"
    execution_ids: list[int] = Field(default_factory=list)


class ModelResponse(BaseModel):
    content: str
    raw: dict[str, Any] = Field(default_factory=dict)


class TextImprovement(BaseModel):
    original_text: str
    improved_text: str
    prompt_used: str
