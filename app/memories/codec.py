# memories/codec.py
"""
Запись IF-памяти ↔ словарь (то, что лежит в YAML и ходит через API).

Формат записи:

  - id: "boiler_pump"
    name: "Насос котла"
    output_reference: "P:6f1c..."     # или старое поле output_item_id (голый GUID точки)
    output_type: "digital"            # digital | analog
    interval: 10
    default_value: 0
    is_disabled: false
    variable_bindings:                # псевдоним → ссылка
      t_supply: "P:0b7e..."
      mode: "GV:boiler_mode"
    branches:
      - id: "..."                     # необязательно, генерируется
        order: 0
        name: "Перегрев"
        condition: "[t_supply] >= 85"
        output_value: 1
        hysteresis: 30
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from . import source_ref
from .errors import ConfigurationError
from .types import Branch, IfMemory, OutputType, VariableBinding


def _num(v: Any, path: str, default: float) -> float:
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        return 1.0 if v else 0.0
    try:
        return float(str(v).replace(",", ".")) if isinstance(v, str) else float(v)
    except (TypeError, ValueError):
        raise ConfigurationError(f"ожидается число, получено {v!r}", path)


def _bindings_from(raw: Any) -> List[VariableBinding]:
    """
    Привязки принимаем в двух видах:
      {alias: "P:..."}                     - как хранится в файле
      [{"alias": ..., "source": ...}, ...] - как присылает редактор
    """
    out: List[VariableBinding] = []
    if raw is None:
        return out
    if isinstance(raw, dict):
        for alias, src in raw.items():
            out.append(VariableBinding(alias=str(alias), source=source_ref.decode(src)))
        return out
    if isinstance(raw, list):
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                raise ConfigurationError("ожидается объект {alias, source}", f"variable_bindings[{i}]")
            out.append(VariableBinding(
                alias=str(item.get("alias", "")),
                source=source_ref.decode(item.get("source")),
            ))
        return out
    raise ConfigurationError("ожидается объект или список", "variable_bindings")


def _branch_from(d: Dict[str, Any], idx: int) -> Branch:
    path = f"branches[{idx}]"
    if not isinstance(d, dict):
        raise ConfigurationError("ожидается объект", path)
    raw_order = d.get("order")
    try:
        order = idx if raw_order is None else int(raw_order)
    except (TypeError, ValueError):
        raise ConfigurationError(f"ожидается целое, получено {raw_order!r}", f"{path}.order")

    kwargs: Dict[str, Any] = {}
    if d.get("id"):
        kwargs["id"] = str(d["id"])
    return Branch(
        order=order,
        condition=str(d.get("condition") or ""),
        output_value=_num(d.get("output_value"), f"{path}.output_value", 1.0),
        hysteresis=_num(d.get("hysteresis"), f"{path}.hysteresis", 0.0),
        name=d.get("name") or None,
        **kwargs,
    )


def memory_from_dict(d: Dict[str, Any], *, default_id: Optional[str] = None) -> IfMemory:
    if not isinstance(d, dict):
        raise ConfigurationError("запись IF-памяти должна быть объектом")

    mid = str(d.get("id") or default_id or "").strip()

    # выход: новый формат с префиксом или старый output_item_id (= точка)
    out_raw = d.get("output_reference")
    if not out_raw:
        out_raw = d.get("output_item_id")
    output = source_ref.decode(out_raw)

    ot_raw = str(d.get("output_type") or "digital").lower()
    try:
        output_type = OutputType(ot_raw)
    except ValueError:
        raise ConfigurationError(f"ожидается digital или analog, получено {ot_raw!r}", "output_type")

    interval_raw = d.get("interval", 1)
    try:
        interval = int(interval_raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"ожидается целое, получено {interval_raw!r}", "interval")
    if isinstance(interval_raw, float) and interval_raw != interval:
        raise ConfigurationError(f"ожидается целое, получено {interval_raw!r}", "interval")

    branches_raw = d.get("branches") or []
    if not isinstance(branches_raw, list):
        raise ConfigurationError("ожидается список", "branches")

    return IfMemory(
        id=mid,
        name=d.get("name") or None,
        description=d.get("description") or None,
        output_destination=output,
        output_type=output_type,
        interval=interval,
        default_value=_num(d.get("default_value"), "default_value", 0.0),
        is_disabled=bool(d.get("is_disabled", False)),
        variable_bindings=_bindings_from(d.get("variable_bindings")),
        branches=[_branch_from(b, i) for i, b in enumerate(branches_raw)],
    )


def memory_to_dict(m: IfMemory) -> Dict[str, Any]:
    return {
        "id": m.id,
        "name": m.name,
        "description": m.description,
        "output_reference": source_ref.encode(m.output_destination),
        "output_type": m.output_type.value,
        "interval": m.interval,
        "default_value": m.default_value,
        "is_disabled": m.is_disabled,
        "variable_bindings": {vb.alias: source_ref.encode(vb.source) for vb in m.variable_bindings},
        "branches": [
            {
                "id": b.id,
                "order": b.order,
                "name": b.name,
                "condition": b.condition,
                "output_value": b.output_value,
                "hysteresis": b.hysteresis,
            }
            for b in m.sorted_branches()
        ],
    }


def memories_from_doc(doc: Any) -> List[IfMemory]:
    """Разобрать весь YAML-документ ({if_memories: [...]})."""
    if doc is None:
        return []
    if not isinstance(doc, dict):
        raise ConfigurationError("корневой YAML должен быть объектом")
    items = doc.get("if_memories") or []
    if not isinstance(items, list):
        raise ConfigurationError("ожидается список", "if_memories")

    out: List[IfMemory] = []
    for idx, item in enumerate(items):
        try:
            out.append(memory_from_dict(item, default_id=f"m{idx + 1}"))
        except ConfigurationError as exc:
            raise ConfigurationError(str(exc), f"if_memories[{idx}]") from exc
    return out


def memories_to_doc(memories: List[IfMemory]) -> Dict[str, Any]:
    return {"if_memories": [memory_to_dict(m) for m in memories]}
