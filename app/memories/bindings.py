# memories/bindings.py
from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, Mapping

from .errors import BindingError, ResolutionError
from .resolver import SourceResolver
from .types import Scalar, VariableBinding


def build_snapshot(
    bindings: Iterable[VariableBinding],
    resolver: SourceResolver,
) -> Mapping[str, Scalar]:
    """
    Собрать снимок {псевдоним → значение} на один цикл.
    Снимок либо полный, либо его нет: первая же неудачная привязка
    прерывает сборку с BindingError.
    """
    values: Dict[str, Scalar] = {}
    for vb in bindings:
        try:
            values[vb.alias] = resolver.resolve(vb.source)
        except ResolutionError as exc:
            raise BindingError(vb.alias, exc) from exc
    return MappingProxyType(values)
