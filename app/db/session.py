# app/db/session.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.db.models import Base  # важно, чтобы модели были импортированы


def _ensure_sqlite_dir(db_url: str) -> None:
    # sqlite:///./data/data.db  → ./data
    if db_url.startswith("sqlite"):
        # Отбрасываем префикс sqlite:///
        prefix = "sqlite:///"
        if db_url.startswith(prefix):
            fs_path = db_url[len(prefix):]
            # :memory: - ничего не делаем
            if fs_path == ":memory:":
                return
            d = Path(fs_path).resolve().parent
            d.mkdir(parents=True, exist_ok=True)


# engine создаём лениво: URL берётся из config.yaml, который грузится на старте
_ENGINE: Optional[Engine] = None
_SESSION_FACTORY: Optional[sessionmaker] = None


def configure(db_url: Optional[str] = None) -> sessionmaker:
    """Создать engine и фабрику сессий (повторный вызов пересоздаёт)."""
    global _ENGINE, _SESSION_FACTORY
    url = db_url or settings.db_url
    _ensure_sqlite_dir(url)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _ENGINE = create_engine(url, future=True, connect_args=connect_args)
    _SESSION_FACTORY = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE, future=True)
    return _SESSION_FACTORY


def session_factory() -> sessionmaker:
    if _SESSION_FACTORY is None:
        return configure()
    return _SESSION_FACTORY


def init_db() -> None:
    """Создать таблицы, если их ещё нет."""
    session_factory()
    Base.metadata.create_all(bind=_ENGINE)
