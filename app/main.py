# app/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from app.core.config import settings

# Роутеры API
from app.memories.api.if_memories_api import router as if_memories_router
from app.api.routes.points import router as points_router
from app.api.routes.global_variables import router as global_variables_router
from app.api.routes.journal import router as journal_router

# Движок IF-памяти
from app.memories.runtime import ensure_started, stop_if_running

# БД (создать таблицы, в т.ч. if_memory_events)
from app.db.session import init_db, session_factory

log = logging.getLogger("web")

# ─────────────────────────────────────────────────────────────────────────────
# Приложение
# ─────────────────────────────────────────────────────────────────────────────
app = FastAPI(title="IF-Memory")

# ─────────────────────────────────────────────────────────────────────────────
# Подключаем роутеры
# ─────────────────────────────────────────────────────────────────────────────
app.include_router(if_memories_router)
app.include_router(points_router, tags=["points"])
app.include_router(global_variables_router)
app.include_router(journal_router, prefix="/api", tags=["journal"])  # даёт /api/journal/if-memories


# ─────────────────────────────────────────────────────────────────────────────
# Старт/стоп сервисов
# ─────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def _startup():
    # 1) грузим YAML
    settings.load_yaml_config()

    # 2) журнал циклов: таблица if_memory_events (если журнал пишем в БД)
    factory = None
    if settings.engine.get("persist_journal", True):
        init_db()
        factory = session_factory()

    # 3) движок + таймеры по всем включённым IF-памятям
    ensure_started(
        settings.get_cfg(),
        memories_path=settings.memories_path,
        backups=settings.backups,
        session_factory=factory,
    )
    log.info("if-memory service ready")


@app.on_event("shutdown")
def _shutdown():
    stop_if_running()
