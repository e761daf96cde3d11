from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from cadence.api.app import create_app
from cadence.config import Settings
from cadence.core.templates import TemplateService
from cadence.db.session import Database
from cadence.errors import ExternalServiceError
from cadence.llm.router import AIService
from cadence.types import Actor, TemplateCreate

HEADERS = {"X-User-Id": "user-1", "X-Org-Id": "org-1"}


class FakeAIService(AIService):
    """Answers from canned payloads instead of calling a provider."""

    def __init__(self, settings: Settings, *, table: dict[str, Any] | None = None, text: str = "Improved text."):
        super().__init__(settings)
        self.table = table or {}
        self.text = text
        self.prompts: list[str] = []
        self.fail = False

    def _call_json(self, *, task: str, prompt: str, system: str) -> dict[str, Any]:
        self.prompts.append(prompt)
        if self.fail or not self.table:
            raise ExternalServiceError("AI service is unavailable")
        return self.table

    def _call_text(self, *, task: str, prompt: str, system: str, temperature: float) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise ExternalServiceError("AI service is unavailable")
        return self.text


def inspection_template_payload() -> dict[str, Any]:
    return {
        "name": "Equipment Inspection",
        "category": "Safety",
        "doc_num": "SOP-104",
        "sop": "Forklift inspection",
        "description": "Monthly equipment inspection",
        "fields": [
            {"field_label": "Equipment Name", "field_type": "text", "is_required": True, "display_order": 1},
            {"field_label": "Location", "field_type": "text", "display_order": 2},
            {
                "field_key": "due_date",
                "field_label": "Due Date",
                "field_type": "date",
                "is_required": True,
                "display_order": 3,
            },
            {
                "field_label": "Priority",
                "field_type": "select",
                "display_order": 4,
                "config": {"options": ["Low", "Medium", "High"]},
            },
            {
                "field_key": "inspection_result",
                "field_label": "Inspection Result",
                "field_type": "select",
                "field_category": "action",
                "is_required": True,
                "display_order": 1,
                "config": {"options": ["Pass", "Fail"]},
            },
            {
                "field_key": "comments",
                "field_label": "Comments",
                "field_type": "textarea",
                "field_category": "action",
                "display_order": 2,
            },
        ],
    }


@pytest.fixture
def template_payload() -> dict[str, Any]:
    return inspection_template_payload()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_env="test",
        database_url=f"sqlite:///{tmp_path / 'cadence-test.db'}",
        data_dir=tmp_path / "data",
        openai_api_key="",
        local_llm_enabled=False,
        duplicate_execution_policy="append",
    )


@pytest.fixture
def database(settings: Settings) -> Generator[Database, None, None]:
    database = Database.from_settings(settings)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def session(database: Database) -> Generator[Session, None, None]:
    with database.session() as db:
        yield db


@pytest.fixture
def actor() -> Actor:
    return Actor(user_id="user-1", org_id="org-1")


@pytest.fixture
def make_template(session: Session, settings: Settings) -> Callable[..., dict[str, Any]]:
    def factory(actor: Actor, **overrides: Any) -> dict[str, Any]:
        payload = TemplateCreate.model_validate({**inspection_template_payload(), **overrides})
        return TemplateService(session, actor, settings=settings).create_template(payload)

    return factory


@pytest.fixture
def template(make_template: Callable[..., dict[str, Any]], actor: Actor) -> dict[str, Any]:
    return make_template(actor)


@pytest.fixture
def fake_ai(settings: Settings) -> FakeAIService:
    return FakeAIService(settings)


@pytest.fixture
def client(settings: Settings, database: Database, fake_ai: FakeAIService) -> Generator[TestClient, None, None]:
    app = create_app(settings, database=database, ai_service=fake_ai)
    with TestClient(app, headers=HEADERS) as test_client:
        yield test_client
