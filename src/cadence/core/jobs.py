from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cadence.config import Settings, get_settings
from cadence.core.fields import coerce_values, missing_required
from cadence.core.status import (
    as_utc,
    can_execute,
    current_window,
    derive_status,
    next_due_date,
    window_bounds,
    window_history,
)
from cadence.core.templates import TemplateService, serialize_field
from cadence.db.models import Job, JobExecution, JobTemplate, JobTemplateField
from cadence.db.repositories import Repository
from cadence.errors import DomainValidationError, NotFoundError, PersistenceError
from cadence.types import DERIVED_STATUSES, Actor, ExecuteJobAction, JobCreate, JobUpdate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class JobService:
    def __init__(
        self,
        session: Session,
        actor: Actor,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self.actor = actor
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.repo = Repository(session, actor.org_id)
        self.templates = TemplateService(session, actor, settings=self.settings)

    def create_job(self, payload: JobCreate) -> dict[str, Any]:
        template = self.templates.require_template(payload.template_id)
        fields = self.templates.template_fields(template.id)

        values, errors = validate_creation_values(fields, payload.creation_values)
        if errors:
            raise DomainValidationError("Job validation failed", errors=errors)

        job_values = {
            "template_id": template.id,
            "template_version": template.version,
            "reference": payload.reference or None,
            "assigned_to": payload.assigned_to,
            "frequency": payload.frequency,
            "anchor_date": payload.anchor_date,
            "creation_values_json": values,
        }
        try:
            job = self.repo.create_job(values=job_values, created_by=self.actor.user_id)
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Job insert rejected org=%s reference=%s", self.actor.org_id, payload.reference)
            raise DomainValidationError(
                "Job conflicts with an existing job",
                errors=[f'Reference "{payload.reference}" is already in use'],
                code="CONFLICT",
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Job insert failed org=%s", self.actor.org_id)
            raise PersistenceError("Job could not be saved") from exc

        logger.info("Created job id=%s template=%s org=%s", job.id, template.id, job.org_id)
        return self.serialize_job(job, [], template=template)

    def require_job(self, job_id: int) -> Job:
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def get_job_detail(self, job_id: int) -> dict[str, Any]:
        job = self.require_job(job_id)
        template = self.templates.require_template(job.template_id, include_inactive=True)
        fields = self.templates.template_fields(template.id)
        executions = self.repo.list_executions(job.id)
        now = self.clock()

        by_key = {item.field_key: item for item in fields}
        creation_fields = [
            {
                "field_key": item.field_key,
                "field_label": item.field_label,
                "field_type": item.field_type,
                "value": job.creation_values_json.get(item.field_key),
            }
            for item in fields
            if item.field_category == "creation"
        ]
        payload = self.serialize_job(job, executions, template=template, now=now)
        payload.update(
            {
                "template": {
                    "id": template.id,
                    "name": template.name,
                    "category": template.category,
                    "doc_num": template.doc_num,
                    "sop": template.sop,
                    "version": template.version,
                    "active": template.active,
                },
                "creation_fields": creation_fields,
                "action_fields": [
                    serialize_field(item) for item in fields if item.field_category == "action"
                ],
                "executions": [serialize_execution(item, by_key) for item in executions],
                "windows": [
                    window.model_dump(mode="json") for window in window_history(job, executions, now)
                ],
            }
        )
        return payload

    def list_jobs(
        self,
        *,
        status: str | None = None,
        template_id: int | None = None,
        assigned_to: str | None = None,
    ) -> list[dict[str, Any]]:
        if status and status.upper() not in DERIVED_STATUSES:
            raise DomainValidationError(
                f"Unknown status '{status}'",
                errors=[f"status must be one of: {', '.join(DERIVED_STATUSES)}"],
            )
        jobs = self.repo.list_jobs(template_id=template_id, assigned_to=assigned_to)
        executions = self.repo.executions_by_job(job.id for job in jobs)
        now = self.clock()

        listed = [self.serialize_job(job, executions[job.id], now=now) for job in jobs]
        if status:
            wanted = status.upper()
            listed = [item for item in listed if item["status"] == wanted]
        return listed

    def update_job(self, job_id: int, payload: JobUpdate) -> dict[str, Any]:
        job = self.require_job(job_id)
        values = payload.model_dump(exclude_none=True)
        if values:
            job = self.repo.update_job(job, values)
            logger.info("Updated job id=%s fields=%s", job.id, sorted(values))
        return self.serialize_job(job, self.repo.list_executions(job.id))

    def delete_job(self, job_id: int) -> dict[str, Any]:
        job = self.require_job(job_id)
        self.repo.delete_job(job)
        logger.info("Deleted job id=%s org=%s", job_id, self.actor.org_id)
        return {"id": job_id, "deleted": True}

    def template_board(self, template_id: int) -> dict[str, Any]:
        template = self.templates.require_template(template_id)
        fields = self.templates.template_fields(template.id)
        by_key = {item.field_key: item for item in fields}
        jobs = self.repo.list_jobs(template_id=template.id)
        executions = self.repo.executions_by_job(job.id for job in jobs)
        history = self.repo.recent_template_executions(template.id, limit=self.settings.template_history_limit)
        now = self.clock()

        return {
            "template": self.templates.serialize_template(template),
            "jobs": [self.serialize_job(job, executions[job.id], now=now) for job in jobs],
            "executions": [serialize_execution(item, by_key) for item in history],
        }

    def execute_job_action(self, job_id: int, payload: ExecuteJobAction) -> dict[str, Any]:
        """Append an execution for the job's current window.

        The job row is never touched; its status is derived again from the new history.
        """
        job = self.require_job(job_id)
        fields = self.templates.template_fields(job.template_id)
        executions = self.repo.list_executions(job.id)
        now = as_utc(self.clock())

        status = derive_status(job, executions, now)
        allow_rework = self.settings.duplicate_execution_policy == "append"
        if not can_execute(job, executions, now, allow_rework=allow_rework):
            if status == "UPCOMING":
                raise DomainValidationError(
                    "Job is not due yet",
                    errors=[f"The first window opens on {first_window_start(job)}"],
                    code="NOT_DUE",
                )
            raise DomainValidationError(
                "Job is already completed for the current window",
                errors=["An execution already exists for the current window"],
                code="ALREADY_COMPLETED",
            )

        values, errors = validate_action_values(fields, payload.action_values)
        if errors:
            raise DomainValidationError("Execution validation failed", errors=errors)

        try:
            execution = self.repo.add_execution(
                job,
                executed_by=self.actor.user_id,
                executed_at=now,
                action_values=values,
                notes=payload.notes,
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Execution insert failed job=%s", job.id)
            raise PersistenceError("Execution could not be saved") from exc

        logger.info("Recorded execution id=%s job=%s previous_status=%s", execution.id, job.id, status)
        history = [execution, *executions]
        by_key = {item.field_key: item for item in fields}
        return {
            "execution": serialize_execution(execution, by_key),
            "previous_status": status,
            "status": derive_status(job, history, now),
            "next_due_date": next_due_date(job, history, now).isoformat(),
        }

    def serialize_job(
        self,
        job: Job,
        executions: Sequence[JobExecution],
        *,
        template: JobTemplate | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or self.clock()
        window = current_window(job, now)
        last = max((as_utc(item.executed_at) for item in executions), default=None)
        payload = {
            "id": job.id,
            "template_id": job.template_id,
            "template_version": job.template_version,
            "reference": job.reference,
            "assigned_to": job.assigned_to,
            "frequency": job.frequency,
            "anchor_date": job.anchor_date.isoformat(),
            "creation_values": dict(job.creation_values_json or {}),
            "created_by": job.created_by,
            "status": derive_status(job, executions, now),
            "next_due_date": next_due_date(job, executions, now).isoformat(),
            "current_window": window.model_dump(mode="json") if window else None,
            "last_executed_at": last.isoformat() if last else None,
            "execution_count": len(executions),
        }
        if template is not None:
            payload["template_name"] = template.name
        return payload


def validate_creation_values(
    fields: Sequence[JobTemplateField], values: dict[str, Any]
) -> tuple[dict[str, Any], list[str]]:
    creation = [item for item in fields if item.field_category == "creation"]
    errors = missing_required(creation, values, category="creation")
    coerced, type_errors = coerce_values(creation, values)
    return coerced, errors + type_errors


def validate_action_values(
    fields: Sequence[JobTemplateField], values: dict[str, Any]
) -> tuple[dict[str, Any], list[str]]:
    action = [item for item in fields if item.field_category == "action"]
    errors = missing_required(action, values, category="action")
    coerced, type_errors = coerce_values(action, values)
    return coerced, errors + type_errors


def first_window_start(job: Job) -> str:
    start, _ = window_bounds(job.anchor_date, job.frequency, 0)
    return start.date().isoformat()


def serialize_execution(item: JobExecution, fields_by_key: dict[str, JobTemplateField]) -> dict[str, Any]:
    values = item.action_values_json or {}
    return {
        "id": item.id,
        "job_id": item.job_id,
        "executed_by": item.executed_by,
        "executed_at": as_utc(item.executed_at).isoformat(),
        "notes": item.notes,
        "action_values": dict(values),
        "action_fields": [
            {
                "field_key": key,
                "field_label": fields_by_key[key].field_label if key in fields_by_key else key,
                "value": value,
            }
            for key, value in values.items()
        ],
    }
