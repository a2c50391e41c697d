"""Shared fixtures for the IF-memory tests."""

from __future__ import annotations

from typing import List, Optional

import pytest

from app.memories import source_ref
from app.memories.committer import OutputCommitter
from app.memories.engine import IfMemoryEngine
from app.memories.evaluator import DefaultConditionEvaluator
from app.memories.global_vars import GlobalVariableRegistry
from app.memories.repositories import InMemoryCycleLogStorage
from app.memories.resolver import SourceResolver
from app.memories.types import (
    Branch,
    GlobalVariableType,
    IfMemory,
    OutputType,
    PointItemType,
    VariableBinding,
)
from app.services.point_store import PointStore


@pytest.fixture
def points() -> PointStore:
    store = PointStore()
    store.add("t1", PointItemType.ANALOG_INPUT, name="Т подачи", value=60.0)
    store.add("t2", PointItemType.ANALOG_INPUT, name="Т обратки")  # ещё не опрашивалась
    store.add("flag", PointItemType.DIGITAL_INPUT, value=True)
    store.add("out_d", PointItemType.DIGITAL_OUTPUT, value=False)
    store.add("out_a", PointItemType.ANALOG_OUTPUT)
    return store


@pytest.fixture
def gvars() -> GlobalVariableRegistry:
    reg = GlobalVariableRegistry()
    reg.create("mode", type=GlobalVariableType.FLOAT, initial_value=1.0)
    reg.create("night", type=GlobalVariableType.BOOLEAN, initial_value=False)
    reg.create("gv_b", type=GlobalVariableType.BOOLEAN)
    reg.create("gv_f", type=GlobalVariableType.FLOAT)
    reg.create("off", type=GlobalVariableType.FLOAT, initial_value=5.0, disabled=True)
    return reg


@pytest.fixture
def evaluator() -> DefaultConditionEvaluator:
    return DefaultConditionEvaluator()


@pytest.fixture
def resolver(points, gvars) -> SourceResolver:
    return SourceResolver(points=points, global_vars=gvars, timeout_s=0.2)


@pytest.fixture
def committer(points, gvars) -> OutputCommitter:
    return OutputCommitter(points=points, global_vars=gvars, timeout_s=0.2)


@pytest.fixture
def journal() -> InMemoryCycleLogStorage:
    return InMemoryCycleLogStorage(max_entries=100)


@pytest.fixture
def engine(resolver, committer, evaluator, journal) -> IfMemoryEngine:
    return IfMemoryEngine(
        resolver=resolver,
        committer=committer,
        evaluator=evaluator,
        write_cycle_log=journal.append,
    )


def make_memory(
    branches: List[Branch],
    *,
    memory_id: str = "m1",
    bindings: Optional[dict] = None,
    output: str = "P:out_d",
    output_type: OutputType = OutputType.DIGITAL,
    interval: int = 1,
    default_value: float = 0.0,
    is_disabled: bool = False,
) -> IfMemory:
    """Собрать IfMemory из коротких аргументов: bindings = {alias: "P:..."}."""
    bindings = {"v1": "P:t1"} if bindings is None else bindings
    return IfMemory(
        id=memory_id,
        name=f"memory {memory_id}",
        output_destination=source_ref.decode(output),
        output_type=output_type,
        interval=interval,
        default_value=default_value,
        is_disabled=is_disabled,
        variable_bindings=[VariableBinding(alias=a, source=source_ref.decode(s)) for a, s in bindings.items()],
        branches=branches,
    )


@pytest.fixture
def memory_factory():
    return make_memory
