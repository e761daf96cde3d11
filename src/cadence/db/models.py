from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from cadence.db.base import Base, TimestampMixin, utcnow


class JobTemplate(TimestampMixin, Base):
    __tablename__ = "job_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    doc_num: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    sop: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String(120), nullable=False)


class JobTemplateField(TimestampMixin, Base):
    __tablename__ = "job_template_fields"
    __table_args__ = (UniqueConstraint("template_id", "field_key", name="uq_template_field_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("job_templates.id", ondelete="CASCADE"), index=True, nullable=False
    )
    field_key: Mapped[str] = mapped_column(String(120), nullable=False)
    field_label: Mapped[str] = mapped_column(String(255), nullable=False)
    field_type: Mapped[str] = mapped_column(String(40), default="text", nullable=False)
    field_category: Mapped[str] = mapped_column(String(40), default="creation", nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    config_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    @property
    def config(self) -> dict[str, Any]:
        return self.config_json or {}


class Job(TimestampMixin, Base):
    __tablename__ = "jobs"
    __table_args__ = (UniqueConstraint("org_id", "reference", name="uq_job_org_reference"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("job_templates.id", ondelete="RESTRICT"), index=True, nullable=False
    )
    template_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    assigned_to: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    frequency: Mapped[str] = mapped_column(String(40), nullable=False)
    anchor_date: Mapped[date] = mapped_column(Date, nullable=False)
    creation_values_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_by: Mapped[str] = mapped_column(String(120), nullable=False)


class JobExecution(TimestampMixin, Base):
    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True, nullable=False)
    executed_by: Mapped[str] = mapped_column(String(120), nullable=False)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    action_values_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
