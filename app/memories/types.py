# memories/types.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# Максимум веток в одной IF-памяти (жёсткий лимит, проверяется при сохранении)
MAX_BRANCHES = 20

# Порог «ноль / не ноль» для цифровых выходов и числовых результатов условий
DIGITAL_EPSILON = 1e-10


# === 1. БАЗОВЫЕ ENUM'Ы =======================================================

class SourceKind(Enum):
    """Куда указывает ссылка на источник данных."""
    POINT = "point"                      # точка (MonitoringItem), локатор = GUID
    GLOBAL_VARIABLE = "global_variable"  # глобальная переменная, локатор = имя


class OutputType(Enum):
    """Как трактовать выход IF-памяти."""
    DIGITAL = "digital"  # 0/1 (вкл/выкл)
    ANALOG = "analog"    # число как есть


class PointItemType(Enum):
    """Тип точки - нужен, чтобы проверять совместимость выхода."""
    DIGITAL_INPUT = "digital_input"
    DIGITAL_OUTPUT = "digital_output"
    ANALOG_INPUT = "analog_input"
    ANALOG_OUTPUT = "analog_output"


class GlobalVariableType(Enum):
    BOOLEAN = "boolean"
    FLOAT = "float"


class EvaluationPhase(Enum):
    IDLE = "idle"              # выключена или ещё не было удачного снимка
    EVALUATING = "evaluating"  # крутится по таймеру


class InstanceStatus(Enum):
    """Состояние экземпляра для UI / диагностики."""
    IDLE = "idle"
    OK = "ok"
    DEGRADED = "degraded"  # последний цикл не смог прочитать входы или записать выход
    DISABLED = "disabled"


class CycleStatus(Enum):
    """Чем закончился один цикл."""
    OUTPUT = "output"                          # значение выбрано (и, возможно, записано)
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_RESOLUTION = "skipped_resolution"  # не прочитали входы - выход не трогаем
    SKIPPED_MISSING = "skipped_missing"        # такой памяти нет в движке


# === 2. ЗНАЧЕНИЯ ============================================================

# Живое значение: либо bool, либо float. Других типов в ядре нет -
# всё приводится на границе (resolver / committer).
Scalar = Union[bool, float]


def to_number(value: Scalar) -> float:
    """bool -> 1.0/0.0, число -> float."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    return float(value)


def to_bool(value: Scalar) -> bool:
    """Число считается «истиной», если заметно отличается от нуля."""
    if isinstance(value, bool):
        return value
    return abs(float(value)) > DIGITAL_EPSILON


# === 3. ССЫЛКИ И ПРИВЯЗКИ ====================================================

@dataclass(frozen=True)
class SourceReference:
    """
    Типизированная ссылка на живые данные.
    Строковый вид - "P:<guid>" или "GV:<имя>" (см. source_ref.py).
    """
    kind: SourceKind
    locator: str

    def __str__(self) -> str:
        prefix = "P:" if self.kind == SourceKind.POINT else "GV:"
        return f"{prefix}{self.locator}"


@dataclass
class VariableBinding:
    """Псевдоним из условия ([v1]) -> источник значения."""
    alias: str
    source: SourceReference


# === 4. ВЕТКИ И IF-ПАМЯТЬ ====================================================

@dataclass
class Branch:
    """
    Одна ветка IF / ELSE IF.
    Пример: order=0, condition="[v1] >= 50", output_value=1, hysteresis=0
    """
    order: int
    condition: str
    output_value: float = 1.0
    hysteresis: float = 0.0
    name: Optional[str] = None
    # id нужен только UI (стабилен при перестановке), логика смотрит на order
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class IfMemory:
    """IF-память: упорядоченные ветки + ELSE (default_value)."""
    id: str
    output_destination: SourceReference
    branches: List[Branch] = field(default_factory=list)
    variable_bindings: List[VariableBinding] = field(default_factory=list)
    default_value: float = 0.0
    output_type: OutputType = OutputType.DIGITAL
    interval: int = 1
    is_disabled: bool = False
    name: Optional[str] = None
    description: Optional[str] = None

    def sorted_branches(self) -> List[Branch]:
        return sorted(self.branches, key=lambda b: b.order)

    def branch_by_order(self, order: int) -> Optional[Branch]:
        for b in self.branches:
            if b.order == order:
                return b
        return None

    def aliases(self) -> List[str]:
        return [vb.alias for vb in self.variable_bindings]


# === 5. СОСТОЯНИЕ ВЫЧИСЛЕНИЯ (только runtime) ================================

@dataclass
class EvaluationState:
    """
    Состояние одного экземпляра между циклами.
    Не сохраняется: сбрасывается при структурных правках и при выключении.
    """
    active_branch_order: Optional[int] = None
    # сколько циклов подряд условие активной ветки ложно (для гистерезиса)
    false_streak: int = 0
    phase: EvaluationPhase = EvaluationPhase.IDLE
    status: InstanceStatus = InstanceStatus.IDLE

    last_output: Optional[float] = None
    last_branch_order: Optional[int] = None
    last_cycle_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    warnings: List[str] = field(default_factory=list)

    # отпечаток структуры (ветки + привязки + интервал), с которым строилось состояние
    structure_key: Optional[tuple] = None


@dataclass
class Selection:
    """Результат прохода по веткам."""
    branch_order: Optional[int]
    value: float
    branch_name: Optional[str] = None
    held: bool = False  # ветка удержана гистерезисом, хотя её условие ложно
    warnings: List[str] = field(default_factory=list)


@dataclass
class CycleOutcome:
    """Что получилось за один цикл - уходит в журнал и в API."""
    memory_id: str
    status: CycleStatus
    ts: datetime
    value: Optional[float] = None
    branch_order: Optional[int] = None
    branch_name: Optional[str] = None
    held: bool = False
    committed: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class ConditionTestResult:
    """Ответ «пробного» вычисления условия из редактора."""
    valid: bool
    result: Optional[bool] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "result": self.result, "error": self.error}


# === 6. ЖУРНАЛ ЦИКЛОВ ========================================================

@dataclass
class CycleLogEntry:
    """
    Запись журнала: какая память, когда, что выбрала и чем закончилась запись.
    """
    ts: datetime
    memory_id: str
    memory_name: str
    status: CycleStatus
    branch_order: Optional[int] = None
    branch_name: Optional[str] = None
    value: Optional[float] = None
    committed: bool = False
    error: Optional[str] = None
