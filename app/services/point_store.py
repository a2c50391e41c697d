# app/services/point_store.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.memories.types import PointItemType

# Сколько по умолчанию ждём блокировку хранилища, если вызывающий не задал своё
DEFAULT_LOCK_TIMEOUT_S = 0.5


@dataclass
class PointState:
    id: str
    name: str
    item_type: PointItemType

    # None = ещё ни разу не опрашивалась
    value: Optional[Any] = None
    # время последней записи значения (опрос / выход IF-памяти / ручная правка)
    last_ts: Optional[datetime] = None
    # кто писал последним: "config" | "memory" | "api"
    writer: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class PointStore:
    """
    Живые значения точек (MonitoringItem) в памяти процесса.

    Все обращения ограничены по времени: если блокировку не удалось взять
    за timeout_s, поднимаем TimeoutError - вызывающий сам решает,
    что это значит (resolver → ResolutionTimeout, committer → CommitError).
    """

    def __init__(self, lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S) -> None:
        self._lock = threading.RLock()
        self._items: Dict[str, PointState] = {}
        self.lock_timeout_s = lock_timeout_s

    # ----- блокировка с таймаутом ----- #
    def _acquire(self, timeout_s: Optional[float]) -> None:
        t = self.lock_timeout_s if timeout_s is None else timeout_s
        if not self._lock.acquire(timeout=t):
            raise TimeoutError(f"point store lock not acquired in {t:.3f}s")

    def reset_from_cfg(self, cfg: Dict[str, Any]) -> None:
        """
        Пересобрать список точек из секции points основного YAML.
        Значения уже известных точек бережно переносим.
        """
        with self._lock:
            new_items: Dict[str, PointState] = {}
            for p in cfg.get("points", []) or []:
                pid = str(p.get("id", "")).strip()
                if not pid:
                    continue
                item_type = PointItemType(str(p.get("item_type", "analog_input")))
                prev = self._items.get(pid)
                if prev:
                    prev.name = str(p.get("name", prev.name))
                    prev.item_type = item_type
                    new_items[pid] = prev
                    continue

                st = PointState(id=pid, name=str(p.get("name", pid)), item_type=item_type)
                if p.get("value") is not None:
                    st.value = p.get("value")
                    st.last_ts = datetime.now(timezone.utc)
                    st.writer = "config"
                new_items[pid] = st
            self._items = new_items

    def add(self, point_id: str, item_type: PointItemType, *, name: Optional[str] = None,
            value: Optional[Any] = None) -> PointState:
        with self._lock:
            st = PointState(id=point_id, name=name or point_id, item_type=item_type)
            if value is not None:
                st.value = value
                st.last_ts = datetime.now(timezone.utc)
                st.writer = "config"
            self._items[point_id] = st
            return st

    def get(self, point_id: str, *, timeout_s: Optional[float] = None) -> Optional[PointState]:
        """Копия состояния точки или None, если такой точки нет."""
        self._acquire(timeout_s)
        try:
            st = self._items.get(point_id)
            if st is None:
                return None
            return PointState(
                id=st.id, name=st.name, item_type=st.item_type,
                value=st.value, last_ts=st.last_ts, writer=st.writer, meta=dict(st.meta),
            )
        finally:
            self._lock.release()

    def set_value(self, point_id: str, value: Any, *, writer: str = "api",
                  timeout_s: Optional[float] = None) -> PointState:
        """
        Записать значение в существующую точку.
        Неизвестная точка → KeyError (точки создаются только из конфига).
        """
        self._acquire(timeout_s)
        try:
            st = self._items.get(point_id)
            if st is None:
                raise KeyError(f"point '{point_id}' not found")
            st.value = value
            st.last_ts = datetime.now(timezone.utc)
            st.writer = writer
            return st
        finally:
            self._lock.release()

    def exists(self, point_id: str) -> bool:
        with self._lock:
            return point_id in self._items

    def item_type(self, point_id: str) -> Optional[PointItemType]:
        with self._lock:
            st = self._items.get(point_id)
            return st.item_type if st else None

    def list(self) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        with self._lock:
            out: List[Dict[str, Any]] = []
            for st in self._items.values():
                since = None
                if st.last_ts is not None:
                    since = max(0, int((now - st.last_ts).total_seconds()))
                out.append({
                    "id": st.id,
                    "name": st.name,
                    "item_type": st.item_type.value,
                    "value": st.value,
                    "writer": st.writer,
                    "last_ts": st.last_ts.isoformat() if st.last_ts else None,
                    "since_last_s": since,
                })
            return out

    def clear(self) -> None:
        with self._lock:
            self._items = {}


point_store = PointStore()
