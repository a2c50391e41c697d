# app/core/validate_cfg.py
from __future__ import annotations
from typing import Dict, Any, Optional

ALLOWED_ITEM_TYPES = {"digital_input", "digital_output", "analog_input", "analog_output"}
ALLOWED_GV_TYPES = {"boolean", "float"}

def _as_int(v, name, min_: Optional[int] = None, max_: Optional[int] = None) -> int:
    try:
        iv = int(v)
    except Exception:
        raise ValueError(f"{name}: ожидается целое, получено {v!r}")
    if min_ is not None and iv < min_:
        raise ValueError(f"{name}: должно быть ≥ {min_} (получено {iv})")
    if max_ is not None and iv > max_:
        raise ValueError(f"{name}: должно быть ≤ {max_} (получено {iv})")
    return iv

def _as_float(v, name, min_: Optional[float] = None) -> float:
    try:
        fv = float(v)
    except Exception:
        raise ValueError(f"{name}: ожидается число, получено {v!r}")
    if min_ is not None and fv < min_:
        raise ValueError(f"{name}: должно быть ≥ {min_} (получено {fv})")
    return fv

def _as_bool(v, name) -> bool:
    if isinstance(v, bool):
        return v
    # допускаем 'true'/'false'/1/0 из yaml
    if isinstance(v, (int, float)) and v in (0, 1):
        return bool(v)
    if isinstance(v, str) and v.lower() in ("true", "false"):
        return v.lower() == "true"
    raise ValueError(f"{name}: должен быть true/false")

def validate_cfg(cfg: Dict[str, Any]) -> None:
    """Бросает ValueError с понятным текстом, если конфиг некорректен."""
    if not isinstance(cfg, dict):
        raise ValueError("корневой YAML должен быть объектом")

    # ─── db ───
    db = cfg.get("db", {})
    if not isinstance(db, dict):
        raise ValueError("db: должен быть объектом")
    if "url" in db and not str(db.get("url", "")).strip():
        raise ValueError("db.url: не должен быть пустым (например sqlite:///./data/data.db)")

    # ─── backups ───
    bkp = cfg.get("backups", {})
    if bkp:
        if not isinstance(bkp, dict):
            raise ValueError("backups: должен быть объектом")
        if "dir" in bkp and not isinstance(bkp["dir"], str):
            raise ValueError("backups.dir: должен быть строкой")
        if "keep" in bkp:
            _as_int(bkp["keep"], "backups.keep", 0)

    # ─── engine ───
    eng = cfg.get("engine", {})
    if eng:
        if not isinstance(eng, dict):
            raise ValueError("engine: должен быть объектом")
        if "resolve_timeout_s" in eng:
            _as_float(eng["resolve_timeout_s"], "engine.resolve_timeout_s", 0.001)
        if "commit_timeout_s" in eng:
            _as_float(eng["commit_timeout_s"], "engine.commit_timeout_s", 0.001)
        if "interval_unit_s" in eng:
            _as_float(eng["interval_unit_s"], "engine.interval_unit_s", 0.01)
        if "journal_max_entries" in eng:
            _as_int(eng["journal_max_entries"], "engine.journal_max_entries", 1)
        if "persist_journal" in eng:
            _as_bool(eng["persist_journal"], "engine.persist_journal")

    # ─── debug ───
    dbg = cfg.get("debug", {})
    if not isinstance(dbg, dict):
        raise ValueError("debug: должен быть объектом")
    if "enabled" in dbg:
        _as_bool(dbg["enabled"], "debug.enabled")

    # ─── points ───
    points = cfg.get("points", [])
    if not isinstance(points, list):
        raise ValueError("points: должен быть массивом")

    seen_points: set[str] = set()
    for i, p in enumerate(points, start=1):
        if not isinstance(p, dict):
            raise ValueError(f"points[{i}]: должен быть объектом")
        pid = str(p.get("id", "")).strip()
        if not pid:
            raise ValueError(f"points[{i}].id: обязателен")
        if pid in seen_points:
            raise ValueError(f"points: id '{pid}' дублируется")
        seen_points.add(pid)

        it = str(p.get("item_type", "analog_input")).strip()
        if it not in ALLOWED_ITEM_TYPES:
            raise ValueError(f"points[{pid}].item_type: должен быть {sorted(ALLOWED_ITEM_TYPES)}")
        if p.get("value") is not None:
            if it.startswith("digital"):
                _as_bool(p["value"], f"points[{pid}].value")
            else:
                _as_float(p["value"], f"points[{pid}].value")

    # ─── global_variables ───
    gvars = cfg.get("global_variables", [])
    if not isinstance(gvars, list):
        raise ValueError("global_variables: должен быть массивом")

    seen_names: set[str] = set()
    for i, g in enumerate(gvars, start=1):
        if not isinstance(g, dict):
            raise ValueError(f"global_variables[{i}]: должен быть объектом")
        name = str(g.get("name", "")).strip()
        if not name:
            raise ValueError(f"global_variables[{i}].name: обязателен")
        if name in seen_names:
            raise ValueError(f"global_variables: имя '{name}' дублируется")
        seen_names.add(name)

        gt = str(g.get("type", "float")).strip()
        if gt not in ALLOWED_GV_TYPES:
            raise ValueError(f"global_variables[{name}].type: должен быть {sorted(ALLOWED_GV_TYPES)}")
        if "disabled" in g:
            _as_bool(g["disabled"], f"global_variables[{name}].disabled")
        if g.get("value") is not None:
            if gt == "boolean":
                _as_bool(g["value"], f"global_variables[{name}].value")
            else:
                _as_float(g["value"], f"global_variables[{name}].value")
