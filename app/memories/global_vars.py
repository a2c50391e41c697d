# memories/global_vars.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .types import GlobalVariableType, Scalar

DEFAULT_LOCK_TIMEOUT_S = 0.5

ChangeFunc = Callable[[str, Scalar, Dict[str, Any]], None]
# сигнатура: on_change(name, value, meta)


@dataclass
class GlobalVariable:
    """
    Глобальная переменная - именованное значение, общее для всех IF-памятей.
    value=None означает «ещё не задавали».
    """
    name: str
    type: GlobalVariableType = GlobalVariableType.FLOAT
    value: Optional[Scalar] = None
    disabled: bool = False
    ts: Optional[datetime] = None
    description: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def update(self, value: Scalar, ts: Optional[datetime] = None,
               meta: Optional[Dict[str, Any]] = None) -> None:
        self.value = value
        self.ts = ts or datetime.now(timezone.utc)
        if meta:
            # не перезатираем, а дополняем
            self.meta.update(meta)

    def copy(self) -> "GlobalVariable":
        return GlobalVariable(
            name=self.name, type=self.type, value=self.value, disabled=self.disabled,
            ts=self.ts, description=self.description, meta=dict(self.meta),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "value": self.value,
            "disabled": self.disabled,
            "ts": self.ts.isoformat() if self.ts else None,
            "description": self.description,
        }


class GlobalVariableRegistry:
    """
    Реестр глобальных переменных в памяти процесса.

    Если передать on_change, он будет вызван после каждой записи значения
    (вне блокировки) - например, чтобы отзеркалить значение наружу.
    """

    def __init__(self, on_change: Optional[ChangeFunc] = None,
                 lock_timeout_s: float = DEFAULT_LOCK_TIMEOUT_S) -> None:
        self._vars: Dict[str, GlobalVariable] = {}
        self._lock = threading.RLock()
        self._on_change = on_change
        self.lock_timeout_s = lock_timeout_s

    def _acquire(self, timeout_s: Optional[float]) -> None:
        t = self.lock_timeout_s if timeout_s is None else timeout_s
        if not self._lock.acquire(timeout=t):
            raise TimeoutError(f"global variable registry lock not acquired in {t:.3f}s")

    # --- базовые операции -------------------------------------------------

    def create(
        self,
        name: str,
        *,
        type: GlobalVariableType = GlobalVariableType.FLOAT,
        initial_value: Optional[Scalar] = None,
        disabled: bool = False,
        description: Optional[str] = None,
    ) -> GlobalVariable:
        """
        Создать переменную, если её нет.
        Если есть - вернём существующую.
        """
        with self._lock:
            if name in self._vars:
                return self._vars[name]
            gv = GlobalVariable(name=name, type=type, disabled=disabled, description=description)
            if initial_value is not None:
                gv.update(_coerce(type, initial_value))
            self._vars[name] = gv
            return gv

    def get(self, name: str, *, timeout_s: Optional[float] = None) -> Optional[GlobalVariable]:
        """Копия переменной (или None)."""
        self._acquire(timeout_s)
        try:
            gv = self._vars.get(name)
            return gv.copy() if gv else None
        finally:
            self._lock.release()

    def all(self) -> Dict[str, GlobalVariable]:
        """
        Вернём копию словаря, чтобы снаружи не трогали оригинал.
        """
        with self._lock:
            return {k: v.copy() for k, v in self._vars.items()}

    # --- обновление -------------------------------------------------------

    def set_value(
        self,
        name: str,
        value: Scalar,
        *,
        meta: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> GlobalVariable:
        """
        Записать значение в существующую переменную.
        Значение приводится к типу переменной (boolean → bool, float → float).
        Нет такой переменной → KeyError.
        """
        self._acquire(timeout_s)
        try:
            gv = self._vars.get(name)
            if gv is None:
                raise KeyError(f"global variable '{name}' not found")
            gv.update(_coerce(gv.type, value), meta=meta)
            snapshot = gv.copy()
        finally:
            self._lock.release()

        # вне lock - уведомляем
        if self._on_change is not None:
            self._on_change(snapshot.name, snapshot.value, dict(snapshot.meta))
        return snapshot

    def rename(self, old: str, new: str) -> GlobalVariable:
        with self._lock:
            if old not in self._vars:
                raise KeyError(f"global variable '{old}' not found")
            if new in self._vars:
                raise ValueError(f"global variable '{new}' already exists")
            gv = self._vars.pop(old)
            gv.name = new
            self._vars[new] = gv
            return gv.copy()

    # --- служебное --------------------------------------------------------

    def reset_from_cfg(self, cfg: Dict[str, Any]) -> None:
        """Пересобрать реестр из секции global_variables основного YAML."""
        with self._lock:
            self._vars = {}
            for item in cfg.get("global_variables", []) or []:
                name = str(item.get("name", "")).strip()
                if not name:
                    continue
                gtype = GlobalVariableType(str(item.get("type", "float")))
                self.create(
                    name,
                    type=gtype,
                    initial_value=item.get("value"),
                    disabled=bool(item.get("disabled", False)),
                    description=item.get("description"),
                )

    def set_on_change(self, on_change: Optional[ChangeFunc]) -> None:
        with self._lock:
            self._on_change = on_change

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._vars


def _coerce(gtype: GlobalVariableType, value: Any) -> Scalar:
    if gtype == GlobalVariableType.BOOLEAN:
        if isinstance(value, str):
            s = value.strip().lower()
            if s in ("true", "1"):
                return True
            if s in ("false", "0"):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if isinstance(value, bool):
            return value
        return abs(float(value)) > 1e-10
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str):
        return float(value.strip().replace(",", "."))
    return float(value)
