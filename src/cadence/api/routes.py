from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from cadence.api.deps import get_actor, get_ai_service, get_app_settings, get_db, get_extractor
from cadence.api.schemas import (
    ApplyMappingRequest,
    ApplyMappingResponse,
    ExtractResponse,
    ImproveTextRequest,
    MappingResponse,
    SuggestMappingRequest,
    ValidateMappingRequest,
)
from cadence.config import Settings
from cadence.core.bulk import BulkJobService
from cadence.core.extraction import DocumentExtractor
from cadence.core.jobs import JobService
from cadence.core.templates import TemplateService
from cadence.errors import DomainValidationError
from cadence.llm.router import AIService
from cadence.types import (
    Actor,
    BulkCreateRequest,
    BulkCreateResult,
    ExecuteJobAction,
    JobCreate,
    JobUpdate,
    MappingReport,
    TemplateCreate,
    TemplateUpdate,
    TextImprovement,
)

router = APIRouter(prefix="/api", tags=["api"])


@router.post("/templates", status_code=201)
def create_template(
    payload: TemplateCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return TemplateService(db, actor, settings=settings).create_template(payload)


@router.get("/templates")
def list_templates(
    category: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> list[dict[str, Any]]:
    return TemplateService(db, actor, settings=settings).list_templates(category=category)


@router.get("/templates/{template_id}")
def get_template(
    template_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return TemplateService(db, actor, settings=settings).get_template(template_id)


@router.patch("/templates/{template_id}")
def update_template(
    template_id: int,
    payload: TemplateUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return TemplateService(db, actor, settings=settings).update_template(template_id, payload)


@router.delete("/templates/{template_id}")
def deactivate_template(
    template_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return TemplateService(db, actor, settings=settings).deactivate_template(template_id)


@router.get("/templates/{template_id}/board")
def template_board(
    template_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return JobService(db, actor, settings=settings).template_board(template_id)


@router.post("/jobs/bulk/extract", response_model=ExtractResponse)
def extract_bulk_document(
    template_id: int = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
    extractor: DocumentExtractor = Depends(get_extractor),
) -> ExtractResponse:
    bulk = BulkJobService(db, actor, settings=settings)
    bulk.templates.require_template(template_id)

    content = file.file.read(settings.max_upload_bytes + 1)
    extraction = extractor.extract(content=content, filename=file.filename or "upload")
    mapping, report = bulk.suggest(template_id, extraction.columns)
    return ExtractResponse(template_id=template_id, extraction=extraction, mapping=mapping, report=report)


@router.post("/jobs/bulk/suggest-mapping", response_model=MappingResponse)
def suggest_bulk_mapping(
    payload: SuggestMappingRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> MappingResponse:
    mapping, report = BulkJobService(db, actor, settings=settings).suggest(payload.template_id, payload.columns)
    return MappingResponse(mapping=mapping, report=report)


@router.post("/jobs/bulk/validate-mapping", response_model=MappingReport)
def validate_bulk_mapping(
    payload: ValidateMappingRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> MappingReport:
    return BulkJobService(db, actor, settings=settings).validate(
        payload.template_id, payload.columns, payload.mapping
    )


@router.post("/jobs/bulk/apply-mapping", response_model=ApplyMappingResponse)
def apply_bulk_mapping(
    payload: ApplyMappingRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> ApplyMappingResponse:
    jobs = BulkJobService(db, actor, settings=settings).apply(payload.template_id, payload.rows, payload.mapping)
    valid = sum(1 for job in jobs if job.is_valid)
    return ApplyMappingResponse(jobs=jobs, valid_count=valid, invalid_count=len(jobs) - valid)


@router.post("/jobs/bulk", response_model=BulkCreateResult)
def create_bulk_jobs(
    payload: BulkCreateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> BulkCreateResult:
    result = BulkJobService(db, actor, settings=settings).create_bulk_jobs(payload)
    if result.validation_errors:
        raise DomainValidationError(
            f"{len(result.validation_errors)} of {result.total_attempted} rows failed validation",
            errors=[item.model_dump() for item in result.validation_errors],
            code="BULK_VALIDATION_FAILED",
        )
    return result


@router.post("/jobs", status_code=201)
def create_job(
    payload: JobCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return JobService(db, actor, settings=settings).create_job(payload)


@router.get("/jobs")
def list_jobs(
    status: str | None = Query(default=None),
    template_id: int | None = Query(default=None),
    assigned_to: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> list[dict[str, Any]]:
    return JobService(db, actor, settings=settings).list_jobs(
        status=status, template_id=template_id, assigned_to=assigned_to
    )


@router.get("/jobs/{job_id}")
def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return JobService(db, actor, settings=settings).get_job_detail(job_id)


@router.patch("/jobs/{job_id}")
def update_job(
    job_id: int,
    payload: JobUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return JobService(db, actor, settings=settings).update_job(job_id, payload)


@router.delete("/jobs/{job_id}")
def delete_job(
    job_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return JobService(db, actor, settings=settings).delete_job(job_id)


@router.post("/jobs/{job_id}/execute", status_code=201)
def execute_job(
    job_id: int,
    payload: ExecuteJobAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    return JobService(db, actor, settings=settings).execute_job_action(job_id, payload)


@router.post("/ai/improve-text", response_model=TextImprovement)
def improve_text(
    payload: ImproveTextRequest,
    actor: Actor = Depends(get_actor),
    ai: AIService = Depends(get_ai_service),
) -> TextImprovement:
    return ai.improve_text(text=payload.text, prompt_key=payload.prompt_key)
