from __future__ import annotations

import json
from collections.abc import Generator
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, get_args

import typer
import uvicorn
from pydantic import ValidationError

from cadence.api.app import create_app
from cadence.config import get_settings
from cadence.core.bulk import BulkJobService
from cadence.core.extraction import DocumentExtractor
from cadence.core.jobs import JobService
from cadence.core.mapping import mapping_from_pairs
from cadence.core.templates import TemplateService
from cadence.db.init import init_database
from cadence.db.session import Database
from cadence.errors import AuthorizationError, CadenceError
from cadence.logging_config import configure_logging
from cadence.types import (
    Actor,
    BulkCreateRequest,
    BulkJobInput,
    ExecuteJobAction,
    Frequency,
    TemplateCreate,
)

app = typer.Typer(help="Cadence CLI")
templates_app = typer.Typer(help="Job template commands")
jobs_app = typer.Typer(help="Job commands")

app.add_typer(templates_app, name="templates")
app.add_typer(jobs_app, name="jobs")

OrgOption = typer.Option(..., "--org", envvar="CADENCE_ORG_ID", help="Organization id")
UserOption = typer.Option(..., "--user", envvar="CADENCE_USER_ID", help="Acting user id")


@contextmanager
def open_database() -> Generator[Database, None, None]:
    settings = get_settings()
    database = Database.from_settings(settings)
    init_database(database, settings)
    try:
        yield database
    finally:
        database.dispose()


def echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def fail(exc: CadenceError) -> None:
    echo_json(exc.to_payload())
    raise typer.Exit(code=1)


def resolve_actor(org: str, user: str) -> Actor:
    org_id, user_id = org.strip(), user.strip()
    if not org_id or not user_id:
        fail(AuthorizationError())
    return Actor(user_id=user_id, org_id=org_id)


@app.command("init")
def init_cmd() -> None:
    """Create the data directory and database tables."""
    configure_logging()
    settings = get_settings()
    database = Database.from_settings(settings)
    try:
        result = init_database(database, settings)
    finally:
        database.dispose()
    echo_json({"ok": True, **result})


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    settings = get_settings()
    app_instance = create_app(settings)
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)


@templates_app.command("create")
def templates_create(
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
    org: str = OrgOption,
    user: str = UserOption,
) -> None:
    """Create a template from a JSON definition."""
    configure_logging()
    actor = resolve_actor(org, user)
    try:
        payload = TemplateCreate.model_validate_json(file.read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise typer.BadParameter(f"invalid template definition: {exc}") from exc
    with open_database() as database, database.session() as db:
        try:
            echo_json(TemplateService(db, actor).create_template(payload))
        except CadenceError as exc:
            fail(exc)


@templates_app.command("list")
def templates_list(
    category: str | None = typer.Option(None, "--category"),
    org: str = OrgOption,
    user: str = UserOption,
) -> None:
    configure_logging()
    actor = resolve_actor(org, user)
    with open_database() as database, database.session() as db:
        echo_json(TemplateService(db, actor).list_templates(category=category))


@jobs_app.command("list")
def jobs_list(
    status: str | None = typer.Option(None, "--status"),
    template_id: int | None = typer.Option(None, "--template-id"),
    assigned_to: str | None = typer.Option(None, "--assigned-to"),
    org: str = OrgOption,
    user: str = UserOption,
) -> None:
    configure_logging()
    actor = resolve_actor(org, user)
    with open_database() as database, database.session() as db:
        service = JobService(db, actor)
        try:
            echo_json(service.list_jobs(status=status, template_id=template_id, assigned_to=assigned_to))
        except CadenceError as exc:
            fail(exc)


@jobs_app.command("import")
def jobs_import(
    template_id: int = typer.Option(..., "--template-id"),
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
    assigned_to: str = typer.Option(..., "--assigned-to"),
    frequency: str = typer.Option(..., "--frequency"),
    anchor_date: str = typer.Option(..., "--anchor-date", help="End of the first due window (YYYY-MM-DD)"),
    mapping: list[str] = typer.Option([], "--map", help="Override a column mapping: 'Column=field_key'"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    org: str = OrgOption,
    user: str = UserOption,
) -> None:
    """Extract a document, map its columns and create one job per row."""
    configure_logging()
    actor = resolve_actor(org, user)
    settings = get_settings()
    if frequency not in get_args(Frequency):
        raise typer.BadParameter(f"--frequency must be one of: {', '.join(get_args(Frequency))}")
    try:
        first_due = date.fromisoformat(anchor_date)
    except ValueError as exc:
        raise typer.BadParameter(f"invalid --anchor-date '{anchor_date}'") from exc

    overrides: dict[str, str] = {}
    for item in mapping:
        column, sep, key = item.partition("=")
        if not sep or not column.strip():
            raise typer.BadParameter(f"--map expects 'Column=field_key', got '{item}'")
        overrides[column.strip()] = key.strip()

    with open_database() as database, database.session() as db:
        try:
            bulk = BulkJobService(db, actor, settings=settings)
            extraction = DocumentExtractor(settings=settings).extract(
                content=file.read_bytes(), filename=file.name
            )
            suggested, _ = bulk.suggest(template_id, extraction.columns)
            if overrides:
                fields = bulk.templates.template_fields(template_id)
                keep = [entry for entry in suggested if entry.document_column not in overrides]
                try:
                    suggested = keep + mapping_from_pairs(overrides, fields)
                except ValueError as exc:
                    raise typer.BadParameter(str(exc)) from exc

            report = bulk.validate(template_id, extraction.columns, suggested)
            mapped = bulk.apply(template_id, extraction.rows, suggested)
            summary = {
                "columns": extraction.columns,
                "mapping": [entry.model_dump() for entry in suggested],
                "report": report.model_dump(),
                "rows": len(mapped),
                "invalid_rows": [job.model_dump() for job in mapped if not job.is_valid],
            }
            if dry_run or not report.is_valid:
                echo_json(summary)
                if not report.is_valid:
                    raise typer.Exit(code=1)
                return

            request = BulkCreateRequest(
                template_id=template_id,
                assigned_to=assigned_to,
                frequency=frequency,
                anchor_date=first_due,
                jobs=[BulkJobInput(creation_values=job.creation_values) for job in mapped],
            )
            result = bulk.create_bulk_jobs(request)
        except CadenceError as exc:
            fail(exc)
            return

    echo_json({**summary, "result": result.model_dump()})
    if result.validation_errors:
        raise typer.Exit(code=1)


@jobs_app.command("execute")
def jobs_execute(
    job_id: int = typer.Option(..., "--job-id"),
    values: str = typer.Option("{}", "--values", help="Action values as a JSON object"),
    notes: str = typer.Option("", "--notes"),
    org: str = OrgOption,
    user: str = UserOption,
) -> None:
    configure_logging()
    actor = resolve_actor(org, user)
    try:
        action_values = json.loads(values)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"--values is not valid JSON: {exc}") from exc
    if not isinstance(action_values, dict):
        raise typer.BadParameter("--values must be a JSON object")

    with open_database() as database, database.session() as db:
        service = JobService(db, actor)
        try:
            echo_json(service.execute_job_action(job_id, ExecuteJobAction(action_values=action_values, notes=notes)))
        except CadenceError as exc:
            fail(exc)


def main() -> None:
    app()
