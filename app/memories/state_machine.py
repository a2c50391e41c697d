# memories/state_machine.py
"""
Выбор ветки за один цикл.

Правила:
  1) ветки идут по возрастанию order, побеждает первая истинная;
  2) если ни одна не истинна - default_value (ELSE);
  3) гистерезис: активная ветка с hysteresis > 0, ставшая ложной,
     держится ещё ceil(hysteresis / interval) - 1 циклов и отпускается
     на ceil(hysteresis / interval)-м подряд ложном цикле.
     Пока держится - ветки ниже по приоритету не смотрим.
     Ветка выше по приоритету, ставшая истинной, перехватывает выбор сразу.
  4) ошибка вычисления ветки = «ложь» + предупреждение.
"""
from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Mapping, Optional

from .errors import EvalError
from .types import Branch, EvaluationState, IfMemory, Scalar, Selection

log = logging.getLogger("memories.engine")

EvaluateFunc = Callable[[str, Mapping[str, Scalar]], bool]


def hold_cycles(hysteresis: float, interval: int) -> int:
    """Сколько подряд ложных циклов нужно, чтобы отпустить ветку."""
    if hysteresis <= 0:
        return 0
    return int(math.ceil(hysteresis / max(1, interval)))


class _BranchCheck:
    """Ленивое вычисление условий: каждая ветка - не больше одного раза за цикл."""

    def __init__(self, memory: IfMemory, snapshot: Mapping[str, Scalar], evaluate: EvaluateFunc) -> None:
        self._memory = memory
        self._snapshot = snapshot
        self._evaluate = evaluate
        self._results: Dict[int, bool] = {}
        self.warnings: List[str] = []

    def __call__(self, branch: Branch) -> bool:
        if branch.order in self._results:
            return self._results[branch.order]
        try:
            ok = bool(self._evaluate(branch.condition, self._snapshot))
        except EvalError as exc:
            label = branch.name or f"#{branch.order}"
            self.warnings.append(f"branch {label}: {exc}")
            log.warning("if-memory %s: branch %s failed to evaluate: %s", self._memory.id, label, exc)
            ok = False
        self._results[branch.order] = ok
        return ok


def _select(state: EvaluationState, branch: Branch, check: _BranchCheck, *, held: bool = False) -> Selection:
    if not held:
        state.false_streak = 0
    state.active_branch_order = branch.order
    return Selection(
        branch_order=branch.order,
        value=branch.output_value,
        branch_name=branch.name,
        held=held,
        warnings=check.warnings,
    )


def _scan(memory: IfMemory, state: EvaluationState, branches: List[Branch], check: _BranchCheck) -> Selection:
    for b in branches:
        if check(b):
            return _select(state, b, check)
    state.active_branch_order = None
    state.false_streak = 0
    return Selection(branch_order=None, value=memory.default_value, warnings=check.warnings)


def select_branch(
    memory: IfMemory,
    state: EvaluationState,
    snapshot: Mapping[str, Scalar],
    evaluate: EvaluateFunc,
) -> Selection:
    """
    Один проход по веткам. Меняет state (active_branch_order, false_streak).
    Снимок должен быть полным: неудачные привязки сюда не доходят.
    """
    branches = memory.sorted_branches()
    check = _BranchCheck(memory, snapshot, evaluate)

    active: Optional[Branch] = None
    if state.active_branch_order is not None:
        active = memory.branch_by_order(state.active_branch_order)

    if active is None:
        return _scan(memory, state, branches, check)

    # ветки выше активной (меньший order) перехватывают выбор
    for b in branches:
        if b.order >= active.order:
            break
        if check(b):
            return _select(state, b, check)

    if check(active):
        return _select(state, active, check)

    state.false_streak += 1
    need = hold_cycles(active.hysteresis, memory.interval)
    if state.false_streak < need:
        log.debug(
            "if-memory %s: holding branch %s (%d/%d false cycles)",
            memory.id, active.order, state.false_streak, need,
        )
        return _select(state, active, check, held=True)

    # отпускаем: обычный проход по оставшимся веткам ниже активной
    state.false_streak = 0
    state.active_branch_order = None
    lower = [b for b in branches if b.order > active.order]
    return _scan(memory, state, lower, check)
