# memories/storage.py
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .types import CycleLogEntry, CycleStatus, IfMemory


# ======================================================================
# 1. ХРАНИЛИЩЕ КОНФИГУРАЦИЙ IF-ПАМЯТИ
# ======================================================================

class IfMemoryStorage(ABC):
    """
    Абстрактное хранилище определений IF-памяти.
    Реализации:
      - in-memory (для тестов)
      - YAML-файл (data/if_memories.yaml)
    """

    @abstractmethod
    def get(self, memory_id: str) -> Optional[IfMemory]:
        """Вернёт память по id или None."""
        raise NotImplementedError

    @abstractmethod
    def list(self) -> List[IfMemory]:
        """Вернёт все памяти (включая выключенные)."""
        raise NotImplementedError

    @abstractmethod
    def save(self, memory: IfMemory) -> None:
        """Создать или обновить."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, memory_id: str) -> None:
        """Удалить по id (если нет - молча)."""
        raise NotImplementedError

    def list_enabled(self) -> List[IfMemory]:
        return [m for m in self.list() if not m.is_disabled]


# ======================================================================
# 2. ЖУРНАЛ ЦИКЛОВ
# ======================================================================

class CycleLogStorage(ABC):
    """
    Журнал циклов вычисления. Движок только дописывает, API читает.
    """

    @abstractmethod
    def append(self, entry: CycleLogEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_recent(
        self,
        limit: int = 100,
        memory_id: Optional[str] = None,
        status: Optional[CycleStatus] = None,
        since: Optional[datetime] = None,
    ) -> List[CycleLogEntry]:
        """Последние записи, новые первыми."""
        raise NotImplementedError


# ======================================================================
# 3. КОМПОЗИТ ДЛЯ ДВИЖКА
# ======================================================================

class MemoriesRepository:
    """
    Обёртка, чтобы движок и API получили
    и конфигурации, и журнал в одном объекте.
    """

    def __init__(self, memories: IfMemoryStorage, cycle_log: CycleLogStorage) -> None:
        self._memories = memories
        self._cycle_log = cycle_log

    # --- конфигурации --------------------------------------------------

    def get(self, memory_id: str) -> Optional[IfMemory]:
        return self._memories.get(memory_id)

    def list(self) -> List[IfMemory]:
        return self._memories.list()

    def list_enabled(self) -> List[IfMemory]:
        return self._memories.list_enabled()

    def save(self, memory: IfMemory) -> None:
        self._memories.save(memory)

    def delete(self, memory_id: str) -> None:
        self._memories.delete(memory_id)

    @property
    def memories(self) -> IfMemoryStorage:
        return self._memories

    # --- журнал --------------------------------------------------------

    def append_cycle_log(self, entry: CycleLogEntry) -> None:
        self._cycle_log.append(entry)

    def list_recent_cycle_logs(
        self,
        limit: int = 100,
        memory_id: Optional[str] = None,
        status: Optional[CycleStatus] = None,
        since: Optional[datetime] = None,
    ) -> List[CycleLogEntry]:
        return self._cycle_log.list_recent(limit=limit, memory_id=memory_id, status=status, since=since)
