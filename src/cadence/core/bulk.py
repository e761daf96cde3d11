"""Bulk job creation.

The whole batch is checked first; a single invalid row rejects the batch and nothing
is written. Valid batches are inserted one row per transaction, so a row that fails
at insert time is reported in ``failed`` while the other rows are still created.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cadence.config import Settings, get_settings
from cadence.core.jobs import validate_creation_values
from cadence.core.mapping import apply_mapping, suggest_mapping, validate_mapping
from cadence.core.templates import TemplateService
from cadence.db.models import JobTemplate, JobTemplateField
from cadence.db.repositories import Repository
from cadence.types import (
    Actor,
    BulkCreateRequest,
    BulkCreateResult,
    BulkJobInput,
    CreatedRow,
    FieldMapping,
    MappedJob,
    MappingReport,
    RowFailure,
    RowValidationError,
)

logger = logging.getLogger(__name__)


class BulkJobService:
    def __init__(self, session: Session, actor: Actor, *, settings: Settings | None = None):
        self.session = session
        self.actor = actor
        self.settings = settings or get_settings()
        self.repo = Repository(session, actor.org_id)
        self.templates = TemplateService(session, actor, settings=self.settings)

    def suggest(self, template_id: int, columns: Sequence[str]) -> tuple[list[FieldMapping], MappingReport]:
        fields = self._fields(template_id)
        mapping = suggest_mapping(fields, columns)
        return mapping, validate_mapping(fields, columns, mapping)

    def validate(
        self, template_id: int, columns: Sequence[str], mapping: Sequence[FieldMapping]
    ) -> MappingReport:
        return validate_mapping(self._fields(template_id), columns, mapping)

    def apply(
        self,
        template_id: int,
        rows: Sequence[dict[str, Any]],
        mapping: Sequence[FieldMapping],
    ) -> list[MappedJob]:
        return apply_mapping(rows, mapping, self._fields(template_id))

    def prevalidate(
        self,
        fields: Sequence[JobTemplateField],
        request: BulkCreateRequest,
    ) -> list[RowValidationError]:
        failures: list[RowValidationError] = []
        for index, row in enumerate(request.jobs):
            _, errors = validate_creation_values(fields, row.creation_values)
            if not (row.assigned_to or request.assigned_to):
                errors.append('Field "Assigned to" is required')
            if not (row.frequency or request.frequency):
                errors.append('Field "Frequency" is required')
            if not (row.anchor_date or request.anchor_date):
                errors.append('Field "First due date" is required')
            if errors:
                failures.append(RowValidationError(index=index, errors=errors))
        return failures

    def create_bulk_jobs(self, request: BulkCreateRequest) -> BulkCreateResult:
        template = self.templates.require_template(request.template_id)
        fields = self.templates.template_fields(template.id)
        total = len(request.jobs)

        failures = self.prevalidate(fields, request)
        if failures:
            logger.info(
                "Bulk batch rejected template=%s rows=%s invalid_rows=%s",
                template.id,
                total,
                len(failures),
            )
            return BulkCreateResult(total_attempted=total, total_created=0, validation_errors=failures)

        created: list[CreatedRow] = []
        failed: list[RowFailure] = []
        for index, row in enumerate(request.jobs):
            try:
                job = self.repo.create_job(
                    values=self._job_values(template, fields, request, row),
                    created_by=self.actor.user_id,
                )
            except IntegrityError as exc:
                self.session.rollback()
                logger.warning("Bulk row %s violated a constraint: %s", index, exc.orig)
                failed.append(RowFailure(index=index, error=_integrity_message(row)))
                continue
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception("Bulk row %s could not be saved", index)
                failed.append(RowFailure(index=index, error=f"Job could not be saved: {type(exc).__name__}"))
                continue
            created.append(CreatedRow(index=index, job_id=job.id))

        logger.info(
            "Bulk batch finished template=%s attempted=%s created=%s failed=%s",
            template.id,
            total,
            len(created),
            len(failed),
        )
        return BulkCreateResult(
            total_attempted=total,
            total_created=len(created),
            created=created,
            failed=failed,
        )

    def _fields(self, template_id: int) -> list[JobTemplateField]:
        template = self.templates.require_template(template_id)
        return self.templates.template_fields(template.id)

    @staticmethod
    def _job_values(
        template: JobTemplate,
        fields: Sequence[JobTemplateField],
        request: BulkCreateRequest,
        row: BulkJobInput,
    ) -> dict[str, Any]:
        values, _ = validate_creation_values(fields, row.creation_values)
        return {
            "template_id": template.id,
            "template_version": template.version,
            "reference": row.reference or None,
            "assigned_to": row.assigned_to or request.assigned_to,
            "frequency": row.frequency or request.frequency,
            "anchor_date": row.anchor_date or request.anchor_date,
            "creation_values_json": values,
        }


def _integrity_message(row: BulkJobInput) -> str:
    if row.reference:
        return f'Reference "{row.reference}" is already in use'
    return "Job conflicts with an existing record"
