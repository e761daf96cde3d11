from __future__ import annotations

from pathlib import Path

from cadence.config import Settings, get_settings
from cadence.db.session import Database


def ensure_data_directories(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    paths: list[Path] = [settings.data_dir]
    if settings.database_url.startswith("sqlite:///"):
        db_path = Path(settings.database_url.removeprefix("sqlite:///"))
        paths.append(db_path.parent)
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def init_database(database: Database, settings: Settings | None = None) -> dict[str, str]:
    ensure_data_directories(settings)
    database.create_all()
    return {"database_url": database.url, "status": "initialized"}
