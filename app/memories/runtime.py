# app/memories/runtime.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from app.core.config import ENGINE_DEFAULTS
from app.services.point_store import PointStore, point_store
from app.services.scheduler import Scheduler

from .committer import OutputCommitter
from .engine import IfMemoryEngine
from .evaluator import ConditionEvaluator, DefaultConditionEvaluator
from .global_vars import GlobalVariableRegistry
from .repositories import (
    InMemoryCycleLogStorage,
    InMemoryIfMemoryStorage,
    SqlCycleLogStorage,
    YamlIfMemoryStorage,
)
from .resolver import SourceResolver
from .storage import CycleLogStorage, IfMemoryStorage, MemoriesRepository
from .types import IfMemory
from .validator import normalize_branches, validate_if_memory

log = logging.getLogger("memories")

# Глобальные синглтоны
_ENGINE: Optional[IfMemoryEngine] = None
_SCHEDULER: Optional[Scheduler] = None
_REPO: Optional[MemoriesRepository] = None
_GVARS: Optional[GlobalVariableRegistry] = None
_POINTS: Optional[PointStore] = None


def _memory_check(
    evaluator: ConditionEvaluator,
    points: PointStore,
    gvars: GlobalVariableRegistry,
) -> Callable[[IfMemory], None]:
    """
    Проверка записи из YAML перед тем, как она попадёт в движок.
    Выключенные памяти проверяем без живых хранилищ: источники проверит enable.
    """
    def _check(memory: IfMemory) -> None:
        live = not memory.is_disabled
        validate_if_memory(
            memory,
            evaluator=evaluator,
            points=points if live else None,
            global_vars=gvars if live else None,
        )
        memory.branches = normalize_branches(memory.branches)

    return _check


def ensure_started(
    cfg: Dict[str, Any],
    *,
    memories_path: Optional[Path] = None,
    backups: Optional[Dict[str, Any]] = None,
    session_factory=None,
    start_runners: bool = True,
) -> IfMemoryEngine:
    """
    Поднять движок IF-памяти, если ещё не поднят.
    Вызываем один раз на старте приложения (после загрузки config.yaml).

    memories_path=None → определения живут только в памяти (тесты).
    session_factory=None или engine.persist_journal=false → журнал в памяти.
    """
    global _ENGINE, _SCHEDULER, _REPO, _GVARS, _POINTS
    if _ENGINE is not None:
        return _ENGINE

    eng_cfg = dict(ENGINE_DEFAULTS)
    eng_cfg.update(cfg.get("engine", {}) or {})

    # живые хранилища: точки и глобальные переменные из конфига
    points = point_store
    points.reset_from_cfg(cfg)
    gvars = GlobalVariableRegistry()
    gvars.reset_from_cfg(cfg)

    evaluator = DefaultConditionEvaluator()

    # определения + журнал
    memories: IfMemoryStorage
    if memories_path is not None:
        b = backups or {}
        memories = YamlIfMemoryStorage(
            memories_path,
            backups_dir=Path(b["dir"]) if b.get("dir") else None,
            backups_keep=int(b.get("keep", 10)),
        )
        # битая запись → ConfigurationError, сервис не стартует
        memories.load(_memory_check(evaluator, points, gvars))
    else:
        memories = InMemoryIfMemoryStorage()

    cycle_log: CycleLogStorage
    if session_factory is not None and bool(eng_cfg.get("persist_journal", True)):
        cycle_log = SqlCycleLogStorage(session_factory)
    else:
        cycle_log = InMemoryCycleLogStorage(int(eng_cfg["journal_max_entries"]))
    repo = MemoriesRepository(memories, cycle_log)

    resolver = SourceResolver(points=points, global_vars=gvars, timeout_s=float(eng_cfg["resolve_timeout_s"]))
    committer = OutputCommitter(points=points, global_vars=gvars, timeout_s=float(eng_cfg["commit_timeout_s"]))
    engine = IfMemoryEngine(
        resolver=resolver,
        committer=committer,
        evaluator=evaluator,
        write_cycle_log=repo.append_cycle_log,
    )

    scheduler = Scheduler(engine, interval_unit_s=float(eng_cfg["interval_unit_s"]))
    items = repo.list()
    if start_runners:
        scheduler.start(items)
    else:
        engine.load_all(items)

    _ENGINE = engine
    _SCHEDULER = scheduler
    _REPO = repo
    _GVARS = gvars
    _POINTS = points

    log.info("if-memory engine started: %d definitions", len(items))
    return engine


def stop_if_running() -> None:
    """Остановить таймеры и забыть синглтоны (shutdown / тесты)."""
    global _ENGINE, _SCHEDULER, _REPO, _GVARS, _POINTS
    if _SCHEDULER is not None:
        _SCHEDULER.stop()
    _ENGINE = None
    _SCHEDULER = None
    _REPO = None
    _GVARS = None
    _POINTS = None


def reload_memories() -> List[IfMemory]:
    """Перечитать YAML с определениями и перезапустить таймеры."""
    if _REPO is None or _SCHEDULER is None or _ENGINE is None or _POINTS is None or _GVARS is None:
        raise RuntimeError("if-memory engine is not initialized")
    storage = _REPO.memories
    if isinstance(storage, YamlIfMemoryStorage):
        # ConfigurationError → прежние определения и таймеры не трогаем
        storage.load(_memory_check(_ENGINE.evaluator, _POINTS, _GVARS))
    items = _REPO.list()
    _SCHEDULER.start(items)
    return items


def engine_instance() -> Optional[IfMemoryEngine]:
    """Вернёт текущий движок (или None, если не инициализирован)."""
    return _ENGINE


def scheduler_instance() -> Optional[Scheduler]:
    return _SCHEDULER


def memories_repo() -> Optional[MemoriesRepository]:
    """Вернёт репозиторий определений/журнала, если движок инициализирован."""
    return _REPO


def global_vars() -> Optional[GlobalVariableRegistry]:
    return _GVARS


def points() -> Optional[PointStore]:
    return _POINTS
