# memories/errors.py
"""
Ошибки ядра IF-памяти.

  - ConfigurationError - отказ при сохранении, до движка не доходит
  - ResolutionError    - не прочитали вход; цикл пропускаем, выход не трогаем
  - EvalError          - ветку не смогли вычислить; считаем её ложной
  - CommitError        - значение посчитали, но записать не смогли
"""
from __future__ import annotations

from typing import Optional


class IfMemoryError(Exception):
    """Базовая ошибка ядра."""


class ConfigurationError(IfMemoryError, ValueError):
    """Некорректная конфигурация IF-памяти (валидация при сохранении)."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


# --- чтение источников -------------------------------------------------------

class ResolutionError(IfMemoryError):
    """Не удалось получить значение источника."""

    def __init__(self, locator: str, message: str) -> None:
        self.locator = locator
        super().__init__(message)


class NotFound(ResolutionError):
    def __init__(self, locator: str, what: str = "source") -> None:
        super().__init__(locator, f"{what} not found: {locator}")


class StaleOrUnavailable(ResolutionError):
    def __init__(self, locator: str, reason: str = "no value sampled yet") -> None:
        super().__init__(locator, f"{locator}: {reason}")


class ResolutionTimeout(ResolutionError):
    def __init__(self, locator: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(locator, f"{locator}: store access timed out after {timeout_s:.3f}s")


class BindingError(ResolutionError):
    """Одна из привязок не разрешилась - весь снимок отменяется."""

    def __init__(self, alias: str, cause: ResolutionError) -> None:
        self.alias = alias
        self.cause = cause
        super().__init__(cause.locator, f"[{alias}] {cause}")


# --- вычисление условий -------------------------------------------------------

class EvalError(IfMemoryError):
    """Синтаксис, неизвестный псевдоним, несовместимые типы и т.п."""


# --- запись выхода -------------------------------------------------------------

class CommitError(IfMemoryError):
    def __init__(self, destination: str, message: str) -> None:
        self.destination = destination
        super().__init__(f"{destination}: {message}")
