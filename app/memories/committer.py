# memories/committer.py
from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from app.services.point_store import PointStore

from .errors import CommitError
from .global_vars import GlobalVariableRegistry
from .types import (
    DIGITAL_EPSILON,
    GlobalVariableType,
    OutputType,
    PointItemType,
    Scalar,
    SourceKind,
    SourceReference,
)

log = logging.getLogger("memories")

# Доп. наблюдатель за записью: (destination, value)
CommitListener = Callable[[SourceReference, Scalar], None]


class OutputCommitter:
    """
    Пишет выбранное значение в выход IF-памяти.

    Digital: значение сводится к вкл/выкл (|x| > 1e-10).
      - точка должна быть digital_output → пишем True/False
      - переменная boolean → True/False, float → 1.0/0.0
    Analog: пишем число как есть.
      - точка должна быть analog_output
      - переменная должна быть float

    Любая проблема (нет выхода, не тот тип, таймаут хранилища) → CommitError.
    """

    def __init__(
        self,
        *,
        points: PointStore,
        global_vars: GlobalVariableRegistry,
        timeout_s: float = 0.5,
        on_commit: Optional[CommitListener] = None,
    ) -> None:
        self._points = points
        self._gvars = global_vars
        self._timeout_s = timeout_s
        self._on_commit = on_commit

    # --------------------------------------------------------------------- #
    def commit(self, destination: SourceReference, output_type: OutputType, value: float) -> Scalar:
        """Записать значение; вернёт то, что реально записано."""
        dest = str(destination)
        if not destination.locator:
            raise CommitError(dest, "output destination is not set")
        if value is None or (isinstance(value, float) and not math.isfinite(value)):
            raise CommitError(dest, f"value {value!r} is not a finite number")

        if destination.kind == SourceKind.POINT:
            written = self._commit_point(destination, output_type, value)
        else:
            written = self._commit_global_variable(destination, output_type, value)

        log.debug("commit %s <- %r (%s)", dest, written, output_type.value)
        if self._on_commit is not None:
            self._on_commit(destination, written)
        return written

    # --------------------------------------------------------------------- #
    def _commit_point(self, destination: SourceReference, output_type: OutputType, value: float) -> Scalar:
        dest = str(destination)
        try:
            st = self._points.get(destination.locator, timeout_s=self._timeout_s)
        except TimeoutError:
            raise CommitError(dest, f"store access timed out after {self._timeout_s:.3f}s")
        if st is None:
            raise CommitError(dest, "point not found")

        if output_type == OutputType.DIGITAL:
            if st.item_type != PointItemType.DIGITAL_OUTPUT:
                raise CommitError(dest, f"digital output requires a digital_output point, got {st.item_type.value}")
            written: Scalar = abs(value) > DIGITAL_EPSILON
        else:
            if st.item_type != PointItemType.ANALOG_OUTPUT:
                raise CommitError(dest, f"analog output requires an analog_output point, got {st.item_type.value}")
            written = float(value)

        try:
            self._points.set_value(destination.locator, written, writer="memory", timeout_s=self._timeout_s)
        except TimeoutError:
            raise CommitError(dest, f"store access timed out after {self._timeout_s:.3f}s")
        except KeyError:
            raise CommitError(dest, "point not found")
        return written

    def _commit_global_variable(self, destination: SourceReference, output_type: OutputType, value: float) -> Scalar:
        dest = str(destination)
        try:
            gv = self._gvars.get(destination.locator, timeout_s=self._timeout_s)
        except TimeoutError:
            raise CommitError(dest, f"store access timed out after {self._timeout_s:.3f}s")
        if gv is None:
            raise CommitError(dest, "global variable not found")
        if gv.disabled:
            raise CommitError(dest, "global variable is disabled")

        if output_type == OutputType.DIGITAL:
            on = abs(value) > DIGITAL_EPSILON
            written: Scalar = on if gv.type == GlobalVariableType.BOOLEAN else (1.0 if on else 0.0)
        else:
            if gv.type != GlobalVariableType.FLOAT:
                raise CommitError(dest, f"analog output requires a float variable, got {gv.type.value}")
            written = float(value)

        try:
            self._gvars.set_value(
                destination.locator, written, meta={"writer": "memory"}, timeout_s=self._timeout_s
            )
        except TimeoutError:
            raise CommitError(dest, f"store access timed out after {self._timeout_s:.3f}s")
        except KeyError:
            raise CommitError(dest, "global variable not found")
        return written
