# memories/source_ref.py
"""
Строковый формат ссылок на источники:
  "P:<guid>"  → точка
  "GV:<имя>"  → глобальная переменная

Старые записи хранили голый GUID без префикса - такие строки всегда
читаем как точку. Новые записи всегда пишем с префиксом.
"""
from __future__ import annotations

from .types import SourceKind, SourceReference

POINT_PREFIX = "P:"
GLOBAL_VARIABLE_PREFIX = "GV:"


def decode(source: str) -> SourceReference:
    if source is None or not str(source).strip():
        return SourceReference(SourceKind.POINT, "")

    source = str(source)
    if source.startswith(POINT_PREFIX):
        return SourceReference(SourceKind.POINT, source[len(POINT_PREFIX):])
    if source.startswith(GLOBAL_VARIABLE_PREFIX):
        return SourceReference(SourceKind.GLOBAL_VARIABLE, source[len(GLOBAL_VARIABLE_PREFIX):])

    # наследие: без префикса = GUID точки
    return SourceReference(SourceKind.POINT, source)


def encode(ref: SourceReference) -> str:
    if not ref.locator or not ref.locator.strip():
        return ""
    if ref.kind == SourceKind.POINT:
        return f"{POINT_PREFIX}{ref.locator}"
    return f"{GLOBAL_VARIABLE_PREFIX}{ref.locator}"


def point(locator: str) -> SourceReference:
    return SourceReference(SourceKind.POINT, locator)


def global_variable(name: str) -> SourceReference:
    return SourceReference(SourceKind.GLOBAL_VARIABLE, name)


def is_global_variable(source: str) -> bool:
    return bool(source and source.strip()) and source.startswith(GLOBAL_VARIABLE_PREFIX)


def is_point(source: str) -> bool:
    if not source or not source.strip():
        return False
    return not source.startswith(GLOBAL_VARIABLE_PREFIX)
