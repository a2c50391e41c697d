# memories/resolver.py
from __future__ import annotations

import logging
from typing import Any, Optional

from app.services.point_store import PointStore

from .errors import NotFound, ResolutionTimeout, StaleOrUnavailable
from .global_vars import GlobalVariableRegistry
from .types import GlobalVariableType, Scalar, SourceKind, SourceReference

log = logging.getLogger("memories")


def coerce_point_value(raw: Any) -> Optional[Scalar]:
    """
    Сырое значение точки → bool/float.
    Строки с числом (запятая тоже годится) → float, "true"/"false" → bool.
    Всё остальное → None (значит, значение непригодно).
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        s = raw.strip()
        low = s.lower()
        if low == "true":
            return True
        if low == "false":
            return False
        try:
            return float(s.replace(",", "."))
        except ValueError:
            return None
    return None


class SourceResolver:
    """
    Превращает ссылку (P:/GV:) в текущее значение.

    Ошибки:
      NotFound            - точки/переменной нет (или переменная выключена)
      StaleOrUnavailable  - значения ещё нет или оно непригодно
      ResolutionTimeout   - хранилище не ответило за resolve_timeout_s
    """

    def __init__(
        self,
        *,
        points: PointStore,
        global_vars: GlobalVariableRegistry,
        timeout_s: float = 0.5,
    ) -> None:
        self._points = points
        self._gvars = global_vars
        self._timeout_s = timeout_s

    def resolve(self, ref: SourceReference) -> Scalar:
        if ref.kind == SourceKind.POINT:
            return self._resolve_point(ref.locator)
        return self._resolve_global_variable(ref.locator)

    # ------------------------------------------------------------------ #
    def _resolve_point(self, point_id: str) -> Scalar:
        try:
            st = self._points.get(point_id, timeout_s=self._timeout_s)
        except TimeoutError:
            raise ResolutionTimeout(f"P:{point_id}", self._timeout_s)

        if st is None:
            raise NotFound(f"P:{point_id}", "point")
        if st.value is None:
            raise StaleOrUnavailable(f"P:{point_id}")

        value = coerce_point_value(st.value)
        if value is None:
            raise StaleOrUnavailable(f"P:{point_id}", f"value {st.value!r} is not a number or boolean")
        return value

    def _resolve_global_variable(self, name: str) -> Scalar:
        try:
            gv = self._gvars.get(name, timeout_s=self._timeout_s)
        except TimeoutError:
            raise ResolutionTimeout(f"GV:{name}", self._timeout_s)

        if gv is None:
            raise NotFound(f"GV:{name}", "global variable")
        if gv.disabled:
            raise NotFound(f"GV:{name}", "enabled global variable")
        if gv.value is None:
            raise StaleOrUnavailable(f"GV:{name}")

        if gv.type == GlobalVariableType.BOOLEAN:
            return bool(gv.value)
        return float(gv.value)
