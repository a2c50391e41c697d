# memories/validator.py
from __future__ import annotations

import math
from typing import List, Optional

from app.services.point_store import PointStore

from .errors import ConfigurationError, EvalError
from .evaluator import MAX_CONDITION_LENGTH, ConditionEvaluator
from .global_vars import GlobalVariableRegistry
from .types import (
    MAX_BRANCHES,
    Branch,
    GlobalVariableType,
    IfMemory,
    OutputType,
    PointItemType,
    SourceKind,
    SourceReference,
)


def _finite(v, name: str) -> float:
    try:
        fv = float(v)
    except (TypeError, ValueError):
        raise ConfigurationError(f"ожидается число, получено {v!r}", name)
    if not math.isfinite(fv):
        raise ConfigurationError(f"должно быть конечным числом (получено {fv})", name)
    return fv


def _check_reference(ref: Optional[SourceReference], name: str) -> None:
    if ref is None or not ref.locator or not ref.locator.strip():
        raise ConfigurationError("ссылка обязательна", name)


def validate_if_memory(
    memory: IfMemory,
    *,
    evaluator: ConditionEvaluator,
    points: Optional[PointStore] = None,
    global_vars: Optional[GlobalVariableRegistry] = None,
) -> None:
    """
    Бросает ConfigurationError на первой же проблеме.
    Без points/global_vars проверяется только сама конфигурация,
    с ними - ещё и существование/типы источников и выхода.
    """
    if not str(memory.id or "").strip():
        raise ConfigurationError("не должен быть пустым", "id")

    # ─── interval / default ───
    if isinstance(memory.interval, bool) or not isinstance(memory.interval, int):
        raise ConfigurationError(f"ожидается целое, получено {memory.interval!r}", "interval")
    if memory.interval < 1:
        raise ConfigurationError(f"должно быть ≥ 1 (получено {memory.interval})", "interval")
    _finite(memory.default_value, "default_value")

    # ─── bindings ───
    seen = set()
    for i, vb in enumerate(memory.variable_bindings):
        path = f"variable_bindings[{i}]"
        alias = vb.alias or ""
        if not alias.strip():
            raise ConfigurationError("псевдоним не должен быть пустым", f"{path}.alias")
        if "[" in alias or "]" in alias:
            raise ConfigurationError(f"псевдоним не может содержать скобки: {alias!r}", f"{path}.alias")
        if alias in seen:
            raise ConfigurationError(f"псевдоним {alias!r} уже используется", f"{path}.alias")
        seen.add(alias)
        _check_reference(vb.source, f"{path}.source")

    # ─── output ───
    _check_reference(memory.output_destination, "output_destination")
    for i, vb in enumerate(memory.variable_bindings):
        if vb.source == memory.output_destination:
            raise ConfigurationError(
                f"выход {memory.output_destination} не может быть входом [{vb.alias}] той же памяти",
                f"variable_bindings[{i}].source",
            )

    # ─── branches ───
    if not memory.branches:
        raise ConfigurationError("нужна хотя бы одна ветка", "branches")
    if len(memory.branches) > MAX_BRANCHES:
        raise ConfigurationError(
            f"не больше {MAX_BRANCHES} веток (получено {len(memory.branches)})", "branches"
        )

    orders = set()
    aliases = [vb.alias for vb in memory.variable_bindings]
    for i, b in enumerate(memory.branches):
        path = f"branches[{i}]"
        if b.order in orders:
            raise ConfigurationError(f"порядок {b.order} повторяется", f"{path}.order")
        orders.add(b.order)

        cond = b.condition or ""
        if not cond.strip():
            raise ConfigurationError("условие не должно быть пустым", f"{path}.condition")
        if len(cond) > MAX_CONDITION_LENGTH:
            raise ConfigurationError(
                f"условие длиннее {MAX_CONDITION_LENGTH} символов", f"{path}.condition"
            )
        try:
            evaluator.check(cond, aliases)
        except EvalError as exc:
            raise ConfigurationError(str(exc), f"{path}.condition") from exc

        h = _finite(b.hysteresis, f"{path}.hysteresis")
        if h < 0:
            raise ConfigurationError(f"должно быть ≥ 0 (получено {h})", f"{path}.hysteresis")
        _finite(b.output_value, f"{path}.output_value")

    # ─── живые источники (если дали хранилища) ───
    if points is not None or global_vars is not None:
        _validate_live(memory, points, global_vars)


def _validate_live(
    memory: IfMemory,
    points: Optional[PointStore],
    global_vars: Optional[GlobalVariableRegistry],
) -> None:
    dest = memory.output_destination

    if dest.kind == SourceKind.POINT and points is not None:
        it = points.item_type(dest.locator)
        if it is None:
            raise ConfigurationError(f"точка {dest.locator!r} не найдена", "output_destination")
        need = PointItemType.DIGITAL_OUTPUT if memory.output_type == OutputType.DIGITAL else PointItemType.ANALOG_OUTPUT
        if it != need:
            raise ConfigurationError(
                f"для выхода {memory.output_type.value} нужна точка {need.value}, а не {it.value}",
                "output_destination",
            )

    if dest.kind == SourceKind.GLOBAL_VARIABLE and global_vars is not None:
        gv = global_vars.get(dest.locator)
        if gv is None:
            raise ConfigurationError(f"глобальная переменная {dest.locator!r} не найдена", "output_destination")
        if gv.disabled:
            raise ConfigurationError(f"глобальная переменная {dest.locator!r} выключена", "output_destination")
        if memory.output_type == OutputType.ANALOG and gv.type != GlobalVariableType.FLOAT:
            raise ConfigurationError(
                f"для аналогового выхода нужна переменная float, а не {gv.type.value}",
                "output_destination",
            )

    for i, vb in enumerate(memory.variable_bindings):
        path = f"variable_bindings[{i}].source"
        src = vb.source
        if src.kind == SourceKind.POINT and points is not None:
            if not points.exists(src.locator):
                raise ConfigurationError(f"точка {src.locator!r} не найдена", path)
        if src.kind == SourceKind.GLOBAL_VARIABLE and global_vars is not None:
            if not global_vars.exists(src.locator):
                raise ConfigurationError(f"глобальная переменная {src.locator!r} не найдена", path)


# ----- редактирование списка веток ----- #

def normalize_branches(branches: List[Branch]) -> List[Branch]:
    """
    Отсортировать по order (стабильно) и перенумеровать 0..n-1.
    Возвращает новый список, сами ветки переиспользуются.
    """
    out = sorted(branches, key=lambda b: b.order)
    for i, b in enumerate(out):
        b.order = i
    return out


def move_branch(branches: List[Branch], index: int, delta: int) -> List[Branch]:
    """
    Сдвинуть ветку вверх (delta=-1) или вниз (delta=+1) и перенумеровать.
    Выход за границы - список не меняется (только нормализуется).
    """
    items = normalize_branches(branches)
    target = index + delta
    if 0 <= index < len(items) and 0 <= target < len(items):
        items[index], items[target] = items[target], items[index]
    for i, b in enumerate(items):
        b.order = i
    return items
