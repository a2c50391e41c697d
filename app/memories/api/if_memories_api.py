# app/memories/api/if_memories_api.py
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.memories import runtime
from app.memories.codec import memory_from_dict, memory_to_dict
from app.memories.errors import ConfigurationError
from app.memories.source_ref import decode
from app.memories.types import IfMemory, VariableBinding
from app.memories.validator import move_branch, normalize_branches, validate_if_memory

router = APIRouter(prefix="/api/if-memories", tags=["if-memories"])


# ---------- DTO -------------------------------------------------------------

class BindingDTO(BaseModel):
    alias: str
    source: str             # "P:<guid>" | "GV:<имя>" | голый GUID (старый формат)


class BranchDTO(BaseModel):
    id: Optional[str] = None
    order: Optional[int] = None
    name: Optional[str] = None
    condition: str = ""
    output_value: float = 1.0
    hysteresis: float = 0.0


class IfMemorySaveDTO(BaseModel):
    """
    Одна IF-память из редактора.
    Выход: output_reference ("P:..."/"GV:...") или старое output_item_id (GUID точки).
    """
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    output_reference: Optional[str] = None
    output_item_id: Optional[str] = None
    output_type: str = "digital"
    interval: int = 1
    default_value: float = 0.0
    is_disabled: bool = False
    variable_bindings: List[BindingDTO] = []
    branches: List[BranchDTO] = []


class TestConditionDTO(BaseModel):
    condition: str
    # значения «руками»: {"v1": 60, "flag": true}
    variables: Dict[str, Any] = {}
    # живые привязки: значения читаются в момент проверки
    bindings: List[BindingDTO] = []


# ---------- helpers ---------------------------------------------------------

def _ctx():
    engine = runtime.engine_instance()
    repo = runtime.memories_repo()
    scheduler = runtime.scheduler_instance()
    if engine is None or repo is None or scheduler is None:
        raise HTTPException(500, "IF-memory engine is not initialized")
    return engine, repo, scheduler


def _memory_out(m: IfMemory) -> Dict[str, Any]:
    engine = runtime.engine_instance()
    out = memory_to_dict(m)
    out["state"] = engine.status(m.id) if engine is not None else None
    return out


def _validated(memory: IfMemory) -> IfMemory:
    engine, _, _ = _ctx()
    try:
        validate_if_memory(
            memory,
            evaluator=engine.evaluator,
            points=runtime.points(),
            global_vars=runtime.global_vars(),
        )
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    # порядок веток всегда 0..n-1
    memory.branches = normalize_branches(memory.branches)
    return memory


def _from_dto(body: IfMemorySaveDTO, memory_id: str) -> IfMemory:
    data = body.model_dump()
    data["id"] = memory_id
    try:
        return memory_from_dict(data)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))


def _get_or_404(memory_id: str) -> IfMemory:
    _, repo, _ = _ctx()
    m = repo.get(memory_id)
    if m is None:
        raise HTTPException(404, f"IF-memory '{memory_id}' not found")
    return m


def _store(memory: IfMemory) -> Dict[str, Any]:
    _, repo, scheduler = _ctx()
    repo.save(memory)
    scheduler.apply(memory)
    return _memory_out(memory)


# ---------- CRUD ------------------------------------------------------------

@router.get("")
def list_memories() -> List[Dict[str, Any]]:
    _, repo, _ = _ctx()
    return [_memory_out(m) for m in repo.list()]


@router.post("/test-condition")
def test_condition(body: TestConditionDTO):
    """Кнопка «Проверить» в редакторе: тот же вычислитель, без записи выхода."""
    engine, _, _ = _ctx()
    bindings = [VariableBinding(alias=b.alias, source=decode(b.source)) for b in body.bindings]
    res = engine.test_condition(body.condition, variables=body.variables, bindings=bindings)
    return res.to_dict()


@router.post("/reload")
def reload_memories():
    _ctx()
    try:
        loaded = runtime.reload_memories()
    except ConfigurationError as e:
        raise HTTPException(400, f"if_memories load failed: {e}")
    return {"ok": True, "count": len(loaded)}


@router.get("/{memory_id}")
def get_memory(memory_id: str):
    return _memory_out(_get_or_404(memory_id))


@router.post("")
def create_memory(body: IfMemorySaveDTO):
    _, repo, _ = _ctx()
    memory_id = (body.id or "").strip() or str(uuid.uuid4())
    if repo.get(memory_id) is not None:
        raise HTTPException(400, f"IF-memory '{memory_id}' already exists")
    memory = _validated(_from_dto(body, memory_id))
    return _store(memory)


@router.put("/{memory_id}")
def update_memory(memory_id: str, body: IfMemorySaveDTO):
    _get_or_404(memory_id)
    memory = _validated(_from_dto(body, memory_id))
    return _store(memory)


@router.delete("/{memory_id}")
def delete_memory(memory_id: str):
    _, repo, scheduler = _ctx()
    _get_or_404(memory_id)
    scheduler.remove(memory_id)
    repo.delete(memory_id)
    return {"ok": True}


# ---------- включение / выключение -----------------------------------------

@router.post("/{memory_id}/enable")
def enable_memory(memory_id: str):
    memory = _get_or_404(memory_id)
    memory.is_disabled = False
    # включаем только валидную память (источники могли пропасть)
    return _store(_validated(memory))


@router.post("/{memory_id}/disable")
def disable_memory(memory_id: str):
    memory = _get_or_404(memory_id)
    memory.is_disabled = True
    return _store(memory)


@router.post("/{memory_id}/branches/{index}/move")
def move_memory_branch(memory_id: str, index: int, delta: int = -1):
    """Кнопки ▲/▼ в редакторе: delta=-1 вверх, delta=+1 вниз."""
    memory = _get_or_404(memory_id)
    if not 0 <= index < len(memory.branches):
        raise HTTPException(404, f"branch #{index} not found")
    memory.branches = move_branch(memory.branches, index, delta)
    return _store(_validated(memory))


# ---------- выполнение / состояние ----------------------------------------

@router.post("/{memory_id}/run")
def run_now(memory_id: str):
    """Прогнать один цикл прямо сейчас (вне таймера)."""
    engine, _, _ = _ctx()
    _get_or_404(memory_id)
    o = engine.run_cycle(memory_id)
    return {
        "memory_id": o.memory_id,
        "status": o.status.value,
        "ts": o.ts.isoformat(),
        "value": o.value,
        "branch_order": o.branch_order,
        "branch_name": o.branch_name,
        "held": o.held,
        "committed": o.committed,
        "error": o.error,
        "warnings": o.warnings,
    }


@router.get("/{memory_id}/status")
def memory_status(memory_id: str):
    engine, _, scheduler = _ctx()
    _get_or_404(memory_id)
    st = engine.status(memory_id)
    if st is None:
        raise HTTPException(404, f"IF-memory '{memory_id}' is not loaded")
    st["running"] = scheduler.is_running(memory_id)
    return st
