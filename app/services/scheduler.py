# app/services/scheduler.py
"""
Таймеры IF-памяти (старт/стоп/горячее применение правок).

Использование:
  scheduler = Scheduler(engine, interval_unit_s=1.0)
  scheduler.start(repo.list())      # при старте приложения
  scheduler.apply(memory)           # после сохранения через API
  scheduler.remove(memory_id)       # после удаления
  scheduler.stop()                  # при shutdown

Примечания:
- На каждую включённую память - свой поток (IfMemoryRunner),
  период = interval * interval_unit_s.
- Потоки останавливаются через Event и join с таймаутом.
- Все операции атомарны относительно одного lock.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

from app.memories.engine import IfMemoryEngine
from app.memories.types import IfMemory

_log = logging.getLogger("scheduler")


class IfMemoryRunner(threading.Thread):
    """
    Один экземпляр IF-памяти - один поток.
    Первый цикл сразу, дальше раз в period_s. Исключения не убивают поток.
    """

    def __init__(self, engine: IfMemoryEngine, memory_id: str, period_s: float):
        super().__init__(daemon=True, name=f"if-memory:{memory_id}")
        self.engine = engine
        self.memory_id = memory_id
        self.period_s = max(0.01, float(period_s))
        self.cycles = 0
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        _log.info("runner %s started (period %.3fs)", self.memory_id, self.period_s)
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.engine.run_cycle(self.memory_id)
            except Exception:
                _log.exception("runner %s: unexpected error in cycle", self.memory_id)
            self.cycles += 1

            # ждём остаток периода; stop() будит сразу
            left = self.period_s - (time.monotonic() - started)
            if left > 0:
                self._stop_event.wait(left)
        _log.info("runner %s stopped after %d cycles", self.memory_id, self.cycles)


class Scheduler:
    def __init__(self, engine: IfMemoryEngine, *, interval_unit_s: float = 1.0, join_timeout_s: float = 2.0):
        self.engine = engine
        self.interval_unit_s = float(interval_unit_s)
        self.join_timeout_s = float(join_timeout_s)
        self._runners: Dict[str, IfMemoryRunner] = {}
        self._lock = threading.Lock()

    # --- внутреннее (lock уже взят) ---

    def _stop_runner_unlocked(self, memory_id: str) -> None:
        runner = self._runners.pop(memory_id, None)
        if runner is None:
            return
        runner.stop()
        if runner is not threading.current_thread():
            runner.join(timeout=self.join_timeout_s)
            if runner.is_alive():
                _log.warning("runner %s did not stop in %.1fs", memory_id, self.join_timeout_s)

    def _stop_all_unlocked(self) -> None:
        for mid in list(self._runners):
            self._stop_runner_unlocked(mid)

    def _start_runner_unlocked(self, memory: IfMemory) -> None:
        runner = IfMemoryRunner(self.engine, memory.id, memory.interval * self.interval_unit_s)
        runner.start()
        self._runners[memory.id] = runner

    # --- публичное ---

    def start(self, memories: Iterable[IfMemory]) -> None:
        """
        Полный старт. Если таймеры уже были - останавливаем и запускаем заново.
        """
        memories = list(memories)
        with self._lock:
            self._stop_all_unlocked()
            self.engine.clear()
            started = 0
            for m in memories:
                self.engine.load(m)
                if m.is_disabled:
                    continue
                self._start_runner_unlocked(m)
                started += 1
        _log.info("if-memory runners started: %d/%d", started, len(memories))

    def stop(self) -> None:
        """Полная остановка (shutdown приложения)."""
        with self._lock:
            self._stop_all_unlocked()
        _log.info("all if-memory runners stopped")

    def apply(self, memory: IfMemory) -> None:
        """
        Создание/правка: определение подменяется в движке,
        поток перезапускается с новым периодом.
        Выключенная память - поток останавливается, состояние сброшено.
        """
        with self._lock:
            self._stop_runner_unlocked(memory.id)
            self.engine.load(memory)
            if not memory.is_disabled:
                self._start_runner_unlocked(memory)
        _log.info("if-memory %s applied (%s)", memory.id, "disabled" if memory.is_disabled else "running")

    def remove(self, memory_id: str) -> None:
        with self._lock:
            self._stop_runner_unlocked(memory_id)
            self.engine.unload(memory_id)
        _log.info("if-memory %s removed", memory_id)

    def is_running(self, memory_id: str) -> bool:
        with self._lock:
            r = self._runners.get(memory_id)
            return bool(r and r.is_alive() and not r.stopping)

    def running_ids(self) -> List[str]:
        with self._lock:
            return [mid for mid, r in self._runners.items() if r.is_alive()]

    def get_status(self) -> Dict[str, Any]:
        """Сервисный хелпер: какие потоки есть и живы ли они."""
        with self._lock:
            return {
                "count": len(self._runners),
                "runners": [
                    {
                        "memory_id": mid,
                        "alive": r.is_alive(),
                        "period_s": r.period_s,
                        "cycles": r.cycles,
                    }
                    for mid, r in self._runners.items()
                ],
            }

    def runner(self, memory_id: str) -> Optional[IfMemoryRunner]:
        with self._lock:
            return self._runners.get(memory_id)
