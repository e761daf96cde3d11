from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from cadence.db.models import Job, JobExecution, JobTemplate, JobTemplateField


class Repository:
    """Data access for one organization. Every query is filtered by ``org_id``."""

    def __init__(self, session: Session, org_id: str):
        self.session = session
        self.org_id = org_id

    def create_template(
        self,
        *,
        values: dict[str, Any],
        fields: list[dict[str, Any]],
        created_by: str,
    ) -> JobTemplate:
        template = JobTemplate(org_id=self.org_id, created_by=created_by, version=1, active=True, **values)
        self.session.add(template)
        self.session.flush()
        self._add_fields(template.id, fields)
        self.session.commit()
        self.session.refresh(template)
        return template

    def get_template(self, template_id: int, *, include_inactive: bool = False) -> JobTemplate | None:
        statement = select(JobTemplate).where(
            JobTemplate.id == template_id, JobTemplate.org_id == self.org_id
        )
        if not include_inactive:
            statement = statement.where(JobTemplate.active.is_(True))
        return self.session.scalar(statement)

    def list_templates(self, *, category: str | None = None) -> list[JobTemplate]:
        statement = select(JobTemplate).where(
            JobTemplate.org_id == self.org_id, JobTemplate.active.is_(True)
        )
        if category:
            statement = statement.where(JobTemplate.category == category)
        statement = statement.order_by(JobTemplate.created_at.desc(), JobTemplate.id.desc())
        return list(self.session.scalars(statement).all())

    def list_template_fields(self, template_id: int) -> list[JobTemplateField]:
        statement = (
            select(JobTemplateField)
            .where(JobTemplateField.template_id == template_id)
            .order_by(
                JobTemplateField.field_category.desc(),
                JobTemplateField.display_order,
                JobTemplateField.id,
            )
        )
        return list(self.session.scalars(statement).all())

    def update_template(
        self,
        template: JobTemplate,
        *,
        values: dict[str, Any],
        fields: list[dict[str, Any]] | None = None,
    ) -> JobTemplate:
        for key, value in values.items():
            setattr(template, key, value)
        template.version += 1

        if fields is not None:
            self.session.execute(delete(JobTemplateField).where(JobTemplateField.template_id == template.id))
            self._add_fields(template.id, fields)

        self.session.commit()
        self.session.refresh(template)
        return template

    def deactivate_template(self, template: JobTemplate) -> JobTemplate:
        template.active = False
        self.session.commit()
        self.session.refresh(template)
        return template

    def _add_fields(self, template_id: int, fields: list[dict[str, Any]]) -> None:
        for item in fields:
            values = dict(item)
            values["config_json"] = values.pop("config", None) or {}
            self.session.add(JobTemplateField(template_id=template_id, **values))

    def create_job(self, *, values: dict[str, Any], created_by: str) -> Job:
        job = Job(org_id=self.org_id, created_by=created_by, **values)
        self.session.add(job)
        self.session.commit()
        self.session.refresh(job)
        return job

    def get_job(self, job_id: int) -> Job | None:
        return self.session.scalar(select(Job).where(Job.id == job_id, Job.org_id == self.org_id))

    def list_jobs(
        self,
        *,
        template_id: int | None = None,
        assigned_to: str | None = None,
    ) -> list[Job]:
        statement = select(Job).where(Job.org_id == self.org_id)
        if template_id is not None:
            statement = statement.where(Job.template_id == template_id)
        if assigned_to:
            statement = statement.where(Job.assigned_to == assigned_to)
        statement = statement.order_by(Job.created_at.desc(), Job.id.desc())
        return list(self.session.scalars(statement).all())

    def update_job(self, job: Job, values: dict[str, Any]) -> Job:
        for key, value in values.items():
            setattr(job, key, value)
        self.session.commit()
        self.session.refresh(job)
        return job

    def delete_job(self, job: Job) -> None:
        self.session.execute(delete(JobExecution).where(JobExecution.job_id == job.id))
        self.session.delete(job)
        self.session.commit()

    def add_execution(
        self,
        job: Job,
        *,
        executed_by: str,
        executed_at: datetime,
        action_values: dict[str, Any],
        notes: str = "",
    ) -> JobExecution:
        execution = JobExecution(
            org_id=self.org_id,
            job_id=job.id,
            executed_by=executed_by,
            executed_at=executed_at,
            action_values_json=action_values,
            notes=notes,
        )
        self.session.add(execution)
        self.session.commit()
        self.session.refresh(execution)
        return execution

    def list_executions(self, job_id: int) -> list[JobExecution]:
        statement = (
            select(JobExecution)
            .where(JobExecution.job_id == job_id, JobExecution.org_id == self.org_id)
            .order_by(JobExecution.executed_at.desc(), JobExecution.id.desc())
        )
        return list(self.session.scalars(statement).all())

    def executions_by_job(self, job_ids: Iterable[int]) -> dict[int, list[JobExecution]]:
        ids = list(job_ids)
        grouped: dict[int, list[JobExecution]] = {job_id: [] for job_id in ids}
        if not ids:
            return grouped
        statement = (
            select(JobExecution)
            .where(JobExecution.job_id.in_(ids), JobExecution.org_id == self.org_id)
            .order_by(JobExecution.executed_at.desc(), JobExecution.id.desc())
        )
        for execution in self.session.scalars(statement).all():
            grouped[execution.job_id].append(execution)
        return grouped

    def recent_template_executions(self, template_id: int, limit: int = 100) -> list[JobExecution]:
        statement = (
            select(JobExecution)
            .join(Job, Job.id == JobExecution.job_id)
            .where(Job.template_id == template_id, JobExecution.org_id == self.org_id)
            .order_by(JobExecution.executed_at.desc(), JobExecution.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(statement).all())
