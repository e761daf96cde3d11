from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cadence.config import Settings, get_settings
from cadence.core.fields import generate_field_key
from cadence.db.models import JobTemplate, JobTemplateField
from cadence.db.repositories import Repository
from cadence.errors import DomainValidationError, NotFoundError, PersistenceError
from cadence.types import Actor, TemplateCreate, TemplateFieldInput, TemplateUpdate

logger = logging.getLogger(__name__)


class TemplateService:
    def __init__(self, session: Session, actor: Actor, *, settings: Settings | None = None):
        self.session = session
        self.actor = actor
        self.settings = settings or get_settings()
        self.repo = Repository(session, actor.org_id)

    def create_template(self, payload: TemplateCreate) -> dict[str, Any]:
        fields = prepare_fields(payload.fields)
        values = payload.model_dump(exclude={"fields"})
        try:
            template = self.repo.create_template(values=values, fields=fields, created_by=self.actor.user_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Template insert failed org=%s", self.actor.org_id)
            raise PersistenceError("Template could not be saved") from exc

        logger.info("Created template id=%s org=%s fields=%s", template.id, template.org_id, len(fields))
        return self.serialize_template(template)

    def list_templates(self, *, category: str | None = None) -> list[dict[str, Any]]:
        return [
            self.serialize_template(template, include_fields=False)
            for template in self.repo.list_templates(category=category)
        ]

    def get_template(self, template_id: int) -> dict[str, Any]:
        return self.serialize_template(self.require_template(template_id))

    def require_template(self, template_id: int, *, include_inactive: bool = False) -> JobTemplate:
        template = self.repo.get_template(template_id, include_inactive=include_inactive)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    def template_fields(self, template_id: int) -> list[JobTemplateField]:
        return self.repo.list_template_fields(template_id)

    def update_template(self, template_id: int, payload: TemplateUpdate) -> dict[str, Any]:
        template = self.require_template(template_id)
        values = payload.model_dump(exclude={"fields"}, exclude_none=True)
        fields = prepare_fields(payload.fields) if payload.fields is not None else None
        try:
            template = self.repo.update_template(template, values=values, fields=fields)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Template update failed id=%s", template_id)
            raise PersistenceError("Template could not be updated") from exc

        logger.info("Updated template id=%s version=%s", template.id, template.version)
        return self.serialize_template(template)

    def deactivate_template(self, template_id: int) -> dict[str, Any]:
        template = self.repo.deactivate_template(self.require_template(template_id))
        logger.info("Deactivated template id=%s", template.id)
        return self.serialize_template(template, include_fields=False)

    def serialize_template(self, template: JobTemplate, *, include_fields: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": template.id,
            "name": template.name,
            "category": template.category,
            "doc_num": template.doc_num,
            "sop": template.sop,
            "description": template.description,
            "version": template.version,
            "active": template.active,
            "created_by": template.created_by,
            "created_at": template.created_at.isoformat(),
            "updated_at": template.updated_at.isoformat(),
        }
        if include_fields:
            payload["fields"] = [serialize_field(item) for item in self.repo.list_template_fields(template.id)]
        return payload


def prepare_fields(fields: list[TemplateFieldInput]) -> list[dict[str, Any]]:
    """Resolve field keys and reject duplicates before anything is written."""
    explicit = [item.field_key.strip() for item in fields if item.field_key.strip()]
    duplicates = sorted({key for key in explicit if explicit.count(key) > 1})
    if duplicates:
        raise DomainValidationError(
            "Duplicate field keys",
            errors=[f'Field key "{key}" is used more than once' for key in duplicates],
        )

    errors: list[str] = []
    for item in fields:
        if item.field_type == "select" and not item.config.get("options"):
            errors.append(f'Field "{item.field_label}" needs at least one option')
    if errors:
        raise DomainValidationError("Invalid template fields", errors=errors)

    taken = set(explicit)
    prepared: list[dict[str, Any]] = []
    for position, item in enumerate(fields):
        key = item.field_key.strip()
        if not key:
            key = generate_field_key(item.field_label, taken)
            taken.add(key)
        prepared.append(
            {
                "field_key": key,
                "field_label": item.field_label.strip(),
                "field_type": item.field_type,
                "field_category": item.field_category,
                "is_required": item.is_required,
                "display_order": item.display_order or position,
                "config": item.config,
            }
        )
    return prepared


def serialize_field(item: JobTemplateField) -> dict[str, Any]:
    return {
        "id": item.id,
        "field_key": item.field_key,
        "field_label": item.field_label,
        "field_type": item.field_type,
        "field_category": item.field_category,
        "is_required": item.is_required,
        "display_order": item.display_order,
        "config": item.config,
    }
