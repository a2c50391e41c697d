# app/api/routes/global_variables.py
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.memories import runtime
from app.memories.engine import global_variable_usage, rename_global_variable

router = APIRouter(prefix="/api/global-variables", tags=["global-variables"])
log = logging.getLogger("web")


class GlobalValueDTO(BaseModel):
    value: Any


class RenameDTO(BaseModel):
    new_name: str


def _registry():
    reg = runtime.global_vars()
    if reg is None:
        raise HTTPException(500, "IF-memory engine is not initialized")
    return reg


@router.get("")
def list_global_variables():
    return [gv.to_dict() for gv in _registry().all().values()]


@router.put("/{name}")
def set_global_variable(name: str, dto: GlobalValueDTO):
    reg = _registry()
    try:
        gv = reg.set_value(name, dto.value, meta={"writer": "api"})
    except KeyError:
        raise HTTPException(404, f"global variable '{name}' not found")
    except ValueError as e:
        raise HTTPException(400, f"{name}: {e}")
    except TimeoutError as e:
        raise HTTPException(503, str(e))
    return gv.to_dict()


@router.get("/{name}/usage")
def global_variable_usages(name: str):
    """Какие IF-памяти читают/пишут переменную (перед удалением/переименованием)."""
    if not _registry().exists(name):
        raise HTTPException(404, f"global variable '{name}' not found")
    repo = runtime.memories_repo()
    memories = repo.list() if repo is not None else []
    return {"name": name, "used_by": global_variable_usage(memories, name)}


@router.post("/{name}/rename")
def rename(name: str, dto: RenameDTO):
    """
    Переименовать переменную и переписать GV:<старое> → GV:<новое>
    во всех IF-памятях.
    """
    new_name = (dto.new_name or "").strip()
    if not new_name:
        raise HTTPException(400, "new_name: не должно быть пустым")

    reg = _registry()
    try:
        reg.rename(name, new_name)
    except KeyError:
        raise HTTPException(404, f"global variable '{name}' not found")
    except ValueError as e:
        raise HTTPException(400, str(e))

    repo = runtime.memories_repo()
    scheduler = runtime.scheduler_instance()
    updated = []
    if repo is not None:
        for m in repo.list():
            if rename_global_variable(m, name, new_name):
                repo.save(m)
                if scheduler is not None:
                    scheduler.apply(m)
                updated.append(m.id)

    log.info("global variable %s renamed to %s, if-memories updated: %s", name, new_name, updated)
    return {"ok": True, "name": new_name, "updated": updated}
