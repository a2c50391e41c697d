# app/api/routes/points.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.core.config import settings
from app.memories import runtime

router = APIRouter()


class PointValueDTO(BaseModel):
    value: Any  # число / true|false / строка с числом


def _store():
    store = runtime.points()
    if store is None:
        raise HTTPException(500, "IF-memory engine is not initialized")
    return store


@router.get("/api/points")
def list_points():
    return _store().list()


@router.put("/api/points/{point_id}")
def set_point_value(point_id: str, dto: PointValueDTO):
    """
    Подставить значение точки руками (вместо опроса).
    Защита: доступно только при debug.enabled=true.
    """
    if not (getattr(settings, "debug", {}) or {}).get("enabled", False):
        raise HTTPException(403, "Ручная запись доступна только при debug.enabled=true")

    store = _store()
    try:
        st = store.set_value(point_id, dto.value, writer="api")
    except KeyError:
        raise HTTPException(404, f"point '{point_id}' not found")
    except TimeoutError as e:
        raise HTTPException(503, str(e))

    return {
        "ok": True,
        "id": st.id,
        "value": st.value,
        "last_ts": st.last_ts.isoformat() if st.last_ts else None,
    }
