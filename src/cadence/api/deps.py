from __future__ import annotations

from collections.abc import Generator

from fastapi import Header, Request
from sqlalchemy.orm import Session

from cadence.config import Settings
from cadence.core.extraction import DocumentExtractor
from cadence.db.session import Database
from cadence.errors import AuthorizationError
from cadence.llm.router import AIService
from cadence.types import Actor


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    with get_database(request).session() as db:
        yield db


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service


def get_extractor(request: Request) -> DocumentExtractor:
    return DocumentExtractor(get_ai_service(request), get_app_settings(request))


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_org_id: str | None = Header(default=None),
) -> Actor:
    user_id = (x_user_id or "").strip()
    org_id = (x_org_id or "").strip()
    if not user_id or not org_id:
        raise AuthorizationError()
    return Actor(user_id=user_id, org_id=org_id)
