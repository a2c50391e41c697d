# memories/engine.py
from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .bindings import build_snapshot
from .committer import OutputCommitter
from .errors import CommitError, EvalError, ResolutionError
from .evaluator import ConditionEvaluator, DefaultConditionEvaluator
from .resolver import SourceResolver, coerce_point_value
from .state_machine import select_branch
from .types import (
    ConditionTestResult,
    CycleLogEntry,
    CycleOutcome,
    CycleStatus,
    EvaluationPhase,
    EvaluationState,
    IfMemory,
    InstanceStatus,
    Scalar,
    SourceKind,
    SourceReference,
    VariableBinding,
    to_number,
)

log = logging.getLogger("memories.engine")

CycleLogWriter = Callable[[CycleLogEntry], None]


def structure_key(memory: IfMemory) -> tuple:
    """
    Отпечаток того, от чего зависит состояние гистерезиса.
    Изменилось что-то из этого → состояние сбрасываем.
    Имя, описание, output_value и default_value сюда не входят.
    """
    return (
        tuple((b.order, b.condition, b.hysteresis) for b in memory.sorted_branches()),
        tuple((vb.alias, str(vb.source)) for vb in memory.variable_bindings),
        memory.interval,
    )


def _fresh_state(memory: IfMemory) -> EvaluationState:
    st = EvaluationState(structure_key=structure_key(memory))
    if memory.is_disabled:
        st.status = InstanceStatus.DISABLED
    return st


class IfMemoryEngine:
    """
    Движок IF-памяти:
      - держит актуальные определения (копии) и состояние по каждой памяти
      - гоняет один цикл: снимок входов → выбор ветки → запись выхода
      - пишет журнал циклов
      - даёт «пробное» вычисление условия для редактора

    Циклы одной памяти строго последовательны (свой lock на экземпляр),
    разные памяти крутятся независимо.
    """

    def __init__(
        self,
        *,
        resolver: SourceResolver,
        committer: OutputCommitter,
        evaluator: Optional[ConditionEvaluator] = None,
        write_cycle_log: Optional[CycleLogWriter] = None,
    ) -> None:
        self._resolver = resolver
        self._committer = committer
        self._evaluator = evaluator or DefaultConditionEvaluator()
        self._write_cycle_log = write_cycle_log

        self._lock = threading.RLock()
        self._definitions: Dict[str, IfMemory] = {}
        self._states: Dict[str, EvaluationState] = {}
        self._instance_locks: Dict[str, threading.Lock] = {}

    @property
    def evaluator(self) -> ConditionEvaluator:
        return self._evaluator

    # ------------------------------------------------------------------ #
    # ОПРЕДЕЛЕНИЯ
    # ------------------------------------------------------------------ #
    def load(self, memory: IfMemory) -> bool:
        """
        Подменить определение целиком (копия берётся здесь).
        Вернёт True, если состояние было сброшено.
        """
        new_def = copy.deepcopy(memory)
        key = structure_key(new_def)

        with self._lock:
            prev_state = self._states.get(new_def.id)
            prev_def = self._definitions.get(new_def.id)
            self._definitions[new_def.id] = new_def
            self._instance_locks.setdefault(new_def.id, threading.Lock())

            reset = (
                prev_state is None
                or prev_def is None
                or new_def.is_disabled
                or prev_def.is_disabled
                or prev_state.structure_key != key
            )
            if reset:
                self._states[new_def.id] = _fresh_state(new_def)

        if reset and prev_state is not None:
            log.info("if-memory %s: definition changed, evaluation state reset", new_def.id)
        return reset

    def load_all(self, memories: Iterable[IfMemory]) -> None:
        for m in memories:
            self.load(m)

    def unload(self, memory_id: str) -> None:
        with self._lock:
            self._definitions.pop(memory_id, None)
            self._states.pop(memory_id, None)
            self._instance_locks.pop(memory_id, None)

    def clear(self) -> None:
        with self._lock:
            self._definitions.clear()
            self._states.clear()
            self._instance_locks.clear()

    def get(self, memory_id: str) -> Optional[IfMemory]:
        with self._lock:
            m = self._definitions.get(memory_id)
            return copy.deepcopy(m) if m else None

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._definitions.keys())

    # ------------------------------------------------------------------ #
    # ОДИН ЦИКЛ
    # ------------------------------------------------------------------ #
    def run_cycle(self, memory_id: str) -> CycleOutcome:
        with self._lock:
            memory = self._definitions.get(memory_id)
            state = self._states.get(memory_id)
            ilock = self._instance_locks.get(memory_id)

        if memory is None or state is None or ilock is None:
            return CycleOutcome(
                memory_id=memory_id,
                status=CycleStatus.SKIPPED_MISSING,
                ts=datetime.now(timezone.utc),
                error="if-memory is not loaded",
            )

        with ilock:
            outcome = self._run_locked(memory, state)

        self._journal(memory, outcome)
        return outcome

    def _run_locked(self, memory: IfMemory, state: EvaluationState) -> CycleOutcome:
        now = datetime.now(timezone.utc)

        if memory.is_disabled:
            state.status = InstanceStatus.DISABLED
            state.phase = EvaluationPhase.IDLE
            return CycleOutcome(memory_id=memory.id, status=CycleStatus.SKIPPED_DISABLED, ts=now)

        # 1) снимок входов: всё или ничего
        try:
            snapshot = build_snapshot(memory.variable_bindings, self._resolver)
        except ResolutionError as exc:
            state.status = InstanceStatus.DEGRADED
            state.last_error = str(exc)
            state.last_cycle_at = now
            state.consecutive_failures += 1
            log.warning("if-memory %s: cycle skipped, inputs unavailable: %s", memory.id, exc)
            return CycleOutcome(
                memory_id=memory.id,
                status=CycleStatus.SKIPPED_RESOLUTION,
                ts=now,
                error=str(exc),
            )

        # 2) выбор ветки
        state.phase = EvaluationPhase.EVALUATING
        selection = select_branch(memory, state, snapshot, self._evaluator.evaluate)
        state.warnings = list(selection.warnings)
        state.last_branch_order = selection.branch_order
        state.last_cycle_at = now

        outcome = CycleOutcome(
            memory_id=memory.id,
            status=CycleStatus.OUTPUT,
            ts=now,
            value=selection.value,
            branch_order=selection.branch_order,
            branch_name=selection.branch_name,
            held=selection.held,
            warnings=list(selection.warnings),
        )

        # 3) запись выхода
        try:
            written = self._committer.commit(memory.output_destination, memory.output_type, selection.value)
        except CommitError as exc:
            state.status = InstanceStatus.DEGRADED
            state.last_error = str(exc)
            state.consecutive_failures += 1
            outcome.error = str(exc)
            log.warning("if-memory %s: output not written: %s", memory.id, exc)
            return outcome

        outcome.committed = True
        outcome.value = to_number(written)
        state.last_output = outcome.value
        state.status = InstanceStatus.OK
        state.last_error = None
        state.consecutive_failures = 0

        log.debug(
            "if-memory %s: branch=%s value=%r held=%s",
            memory.id,
            "ELSE" if selection.branch_order is None else selection.branch_order,
            outcome.value,
            selection.held,
        )
        return outcome

    def _journal(self, memory: IfMemory, outcome: CycleOutcome) -> None:
        if self._write_cycle_log is None:
            return
        entry = CycleLogEntry(
            ts=outcome.ts,
            memory_id=memory.id,
            memory_name=memory.name or memory.id,
            status=outcome.status,
            branch_order=outcome.branch_order,
            branch_name=outcome.branch_name,
            value=outcome.value,
            committed=outcome.committed,
            error=outcome.error,
        )
        try:
            self._write_cycle_log(entry)
        except Exception:
            # журнал не должен ронять цикл
            log.exception("if-memory %s: cycle journal append failed", memory.id)

    # ------------------------------------------------------------------ #
    # ПРОБНОЕ ВЫЧИСЛЕНИЕ (редактор)
    # ------------------------------------------------------------------ #
    def test_condition(
        self,
        text: str,
        variables: Optional[Mapping[str, Any]] = None,
        bindings: Optional[Iterable[VariableBinding]] = None,
    ) -> ConditionTestResult:
        """
        Тот же вычислитель, что и в цикле, но без записи выхода
        и без изменения состояния гистерезиса.
          variables - значения, подставленные руками;
          bindings  - живые привязки (значения читаются сейчас).
        Ручные значения перекрывают живые.
        """
        bindings = list(bindings or [])
        manual: Dict[str, Scalar] = {}
        for alias, raw in (variables or {}).items():
            val = coerce_point_value(raw)
            if val is None:
                return ConditionTestResult(valid=False, error=f"[{alias}]: value {raw!r} is not a number or boolean")
            manual[str(alias)] = val

        aliases = [vb.alias for vb in bindings] + list(manual.keys())
        try:
            self._evaluator.check(text, aliases)
        except EvalError as exc:
            return ConditionTestResult(valid=False, error=str(exc))

        live: Dict[str, Scalar] = {}
        pending = [vb for vb in bindings if vb.alias not in manual]
        if pending:
            try:
                live = dict(build_snapshot(pending, self._resolver))
            except ResolutionError as exc:
                return ConditionTestResult(valid=True, result=None, error=str(exc))

        live.update(manual)
        try:
            result = self._evaluator.evaluate(text, live)
        except EvalError as exc:
            return ConditionTestResult(valid=False, error=str(exc))
        return ConditionTestResult(valid=True, result=result)

    # ------------------------------------------------------------------ #
    # СОСТОЯНИЕ ДЛЯ API
    # ------------------------------------------------------------------ #
    def status(self, memory_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            memory = self._definitions.get(memory_id)
            state = self._states.get(memory_id)
            if memory is None or state is None:
                return None
            return _state_to_dict(memory, state)

    def statuses(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                _state_to_dict(m, self._states[mid])
                for mid, m in self._definitions.items()
                if mid in self._states
            ]


def _state_to_dict(memory: IfMemory, st: EvaluationState) -> Dict[str, Any]:
    return {
        "memory_id": memory.id,
        "name": memory.name,
        "status": st.status.value,
        "phase": st.phase.value,
        "active_branch_order": st.active_branch_order,
        "false_streak": st.false_streak,
        "last_output": st.last_output,
        "last_branch_order": st.last_branch_order,
        "last_cycle_at": st.last_cycle_at.isoformat() if st.last_cycle_at else None,
        "last_error": st.last_error,
        "consecutive_failures": st.consecutive_failures,
        "warnings": list(st.warnings),
    }


# ---------------------------------------------------------------------- #
# Глобальные переменные: где используются и переименование
# ---------------------------------------------------------------------- #

def global_variable_usage(memories: Iterable[IfMemory], name: str) -> List[Dict[str, Any]]:
    """Какие IF-памяти читают или пишут переменную name."""
    out: List[Dict[str, Any]] = []
    for m in memories:
        reads = [
            vb.alias for vb in m.variable_bindings
            if vb.source.kind == SourceKind.GLOBAL_VARIABLE and vb.source.locator == name
        ]
        writes = (
            m.output_destination.kind == SourceKind.GLOBAL_VARIABLE
            and m.output_destination.locator == name
        )
        if reads or writes:
            out.append({"memory_id": m.id, "name": m.name, "reads": reads, "writes": writes})
    return out


def rename_global_variable(memory: IfMemory, old: str, new: str) -> bool:
    """Заменить GV:old на GV:new во входах и выходе. Вернёт True, если что-то поменялось."""
    changed = False
    for vb in memory.variable_bindings:
        if vb.source.kind == SourceKind.GLOBAL_VARIABLE and vb.source.locator == old:
            vb.source = SourceReference(SourceKind.GLOBAL_VARIABLE, new)
            changed = True
    dest = memory.output_destination
    if dest.kind == SourceKind.GLOBAL_VARIABLE and dest.locator == old:
        memory.output_destination = SourceReference(SourceKind.GLOBAL_VARIABLE, new)
        changed = True
    return changed
