# memories/repositories.py
from __future__ import annotations

import copy
import logging
import shutil
import time
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Callable, Deque, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session

from app.db.models import IfMemoryEvent

from .codec import memories_from_doc, memories_to_doc
from .errors import ConfigurationError
from .storage import CycleLogStorage, IfMemoryStorage
from .types import CycleLogEntry, CycleStatus, IfMemory

log = logging.getLogger("memories")


# ======================================================================
# 1. IN-MEMORY ХРАНИЛИЩЕ КОНФИГУРАЦИЙ
# ======================================================================

class InMemoryIfMemoryStorage(IfMemoryStorage):
    """
    Хранилище в памяти: для тестов и запуска без файла.
    Наружу отдаём копии, чтобы правки шли только через save().
    """

    def __init__(self) -> None:
        self._items: Dict[str, IfMemory] = {}
        self._lock = RLock()

    def get(self, memory_id: str) -> Optional[IfMemory]:
        with self._lock:
            m = self._items.get(memory_id)
            return copy.deepcopy(m) if m else None

    def list(self) -> List[IfMemory]:
        with self._lock:
            return [copy.deepcopy(m) for m in self._items.values()]

    def save(self, memory: IfMemory) -> None:
        with self._lock:
            self._items[memory.id] = copy.deepcopy(memory)

    def delete(self, memory_id: str) -> None:
        with self._lock:
            self._items.pop(memory_id, None)

    def replace_all(self, memories: List[IfMemory]) -> None:
        with self._lock:
            self._items = {m.id: copy.deepcopy(m) for m in memories}


# ======================================================================
# 2. YAML-ФАЙЛ (data/if_memories.yaml)
# ======================================================================

class YamlIfMemoryStorage(InMemoryIfMemoryStorage):
    """
    То же in-memory хранилище, но каждое изменение сбрасывается в YAML:
      - перед записью кладём бэкап текущего файла в backups_dir
        и оставляем последние backups_keep;
      - пишем во временный файл и атомарно подменяем.
    """

    def __init__(self, path: Path, *, backups_dir: Optional[Path] = None, backups_keep: int = 10) -> None:
        super().__init__()
        self.path = Path(path)
        self.backups_dir = Path(backups_dir) if backups_dir else None
        self.backups_keep = backups_keep

    def load(self, check: Optional[Callable[[IfMemory], None]] = None) -> List[IfMemory]:
        """
        Перечитать файл. Нет файла → пустой список. Битый файл → ConfigurationError.
        check(memory) вызывается для каждой записи до подмены; если он бросил
        ConfigurationError, в хранилище остаются прежние определения.
        """
        if not self.path.exists():
            self.replace_all([])
            return []
        raw = self.path.read_text(encoding="utf-8")
        doc = yaml.safe_load(raw) if raw.strip() else None
        items = memories_from_doc(doc)
        if check is not None:
            for idx, m in enumerate(items):
                try:
                    check(m)
                except ConfigurationError as exc:
                    raise ConfigurationError(str(exc), f"if_memories[{idx}]") from exc
        self.replace_all(items)
        return items

    def save(self, memory: IfMemory) -> None:
        with self._lock:
            super().save(memory)
            self._flush()

    def delete(self, memory_id: str) -> None:
        with self._lock:
            super().delete(memory_id)
            self._flush()

    # --- запись на диск ---

    def _flush(self) -> str:
        """Вернёт имя бэкапа (без пути) либо ''."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        backup_name = self._backup()

        doc = memories_to_doc(list(self._items.values()))
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(yaml.safe_dump(doc, allow_unicode=True, sort_keys=False), encoding="utf-8")
        tmp.replace(self.path)
        return backup_name

    def _backup(self) -> str:
        if self.backups_dir is None or not self.path.exists():
            return ""
        self.backups_dir.mkdir(parents=True, exist_ok=True)

        # пример: if_memories-20250918-153012.yaml.bak
        ts = time.strftime("%Y%m%d-%H%M%S")
        backup_name = f"{self.path.stem}-{ts}{self.path.suffix}.bak"
        shutil.copy2(self.path, self.backups_dir / backup_name)

        if self.backups_keep > 0:
            patt = f"{self.path.stem}-*{self.path.suffix}.bak"
            files = sorted(self.backups_dir.glob(patt))
            extra = len(files) - self.backups_keep
            for old in files[:max(0, extra)]:
                try:
                    old.unlink()
                except OSError as e:
                    log.warning("can't remove old backup %s: %s", old, e)
        return backup_name


# ======================================================================
# 3. IN-MEMORY ЖУРНАЛ ЦИКЛОВ
# ======================================================================

class InMemoryCycleLogStorage(CycleLogStorage):
    """
    Журнал циклов в памяти.
    Хранит последние N записей (по умолчанию 2000) в deque.
    """

    def __init__(self, max_entries: int = 2000) -> None:
        self._max_entries = max_entries
        self._entries: Deque[CycleLogEntry] = deque(maxlen=max_entries)
        self._lock = RLock()

    def append(self, entry: CycleLogEntry) -> None:
        with self._lock:
            self._entries.appendleft(entry)  # новые - в начало

    def list_recent(
        self,
        limit: int = 100,
        memory_id: Optional[str] = None,
        status: Optional[CycleStatus] = None,
        since: Optional[datetime] = None,
    ) -> List[CycleLogEntry]:
        with self._lock:
            out: List[CycleLogEntry] = []
            for e in self._entries:
                if memory_id is not None and e.memory_id != memory_id:
                    continue
                if status is not None and e.status != status:
                    continue
                if since is not None and e.ts < since:
                    continue
                out.append(e)
                if len(out) >= limit:
                    break
            return out


# ======================================================================
# 4. ЖУРНАЛ ЦИКЛОВ В БД (SQLAlchemy)
# ======================================================================

class SqlCycleLogStorage(CycleLogStorage):
    """
    Журнал в таблице if_memory_events.
    session_factory - sessionmaker из app.db.session (или тестовый).
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, entry: CycleLogEntry) -> None:
        db = self._session_factory()
        try:
            db.add(IfMemoryEvent(
                memory_id=entry.memory_id,
                memory_name=entry.memory_name,
                status=entry.status.value,
                branch_order=entry.branch_order,
                branch_name=entry.branch_name,
                value=entry.value,
                committed=entry.committed,
                error=entry.error,
                ts=entry.ts,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_recent(
        self,
        limit: int = 100,
        memory_id: Optional[str] = None,
        status: Optional[CycleStatus] = None,
        since: Optional[datetime] = None,
    ) -> List[CycleLogEntry]:
        db = self._session_factory()
        try:
            q = db.query(IfMemoryEvent)
            if memory_id:
                q = q.filter(IfMemoryEvent.memory_id == memory_id)
            if status is not None:
                q = q.filter(IfMemoryEvent.status == status.value)
            if since is not None:
                q = q.filter(IfMemoryEvent.ts >= since)
            rows = q.order_by(IfMemoryEvent.id.desc()).limit(limit).all()
            return [_row_to_entry(r) for r in rows]
        finally:
            db.close()


def _row_to_entry(r: IfMemoryEvent) -> CycleLogEntry:
    # ts из sqlite приходит naive - считаем его UTC
    ts = r.ts
    if isinstance(ts, datetime) and ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return CycleLogEntry(
        ts=ts,
        memory_id=r.memory_id,
        memory_name=r.memory_name or r.memory_id,
        status=CycleStatus(r.status),
        branch_order=r.branch_order,
        branch_name=r.branch_name,
        value=r.value,
        committed=bool(r.committed),
        error=r.error,
    )
