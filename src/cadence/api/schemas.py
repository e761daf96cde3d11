from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from cadence.types import ExtractionResult, FieldMapping, MappedJob, MappingReport


class SuggestMappingRequest(BaseModel):
    template_id: int
    columns: list[str] = Field(min_length=1)


class MappingResponse(BaseModel):
    mapping: list[FieldMapping]
    report: MappingReport


class ValidateMappingRequest(BaseModel):
    template_id: int
    columns: list[str]
    mapping: list[FieldMapping]


class ExtractResponse(BaseModel):
    template_id: int
    extraction: ExtractionResult
    mapping: list[FieldMapping]
    report: MappingReport


class ApplyMappingRequest(BaseModel):
    template_id: int
    rows: list[dict[str, Any]]
    mapping: list[FieldMapping]


class ApplyMappingResponse(BaseModel):
    jobs: list[MappedJob]
    valid_count: int
    invalid_count: int


class ImproveTextRequest(BaseModel):
    text: str
    prompt_key: str = "improve"
