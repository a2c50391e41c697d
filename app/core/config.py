# app/core/config.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings

from app.core.validate_cfg import validate_cfg

# значения секции engine по умолчанию
ENGINE_DEFAULTS: Dict[str, Any] = {
    "resolve_timeout_s": 0.5,
    "commit_timeout_s": 0.5,
    "interval_unit_s": 1.0,
    "journal_max_entries": 2000,
    "persist_journal": True,
}


class Settings(BaseSettings):
    # путь к основному YAML (можно переопределить переменной окружения CONFIG_FILE)
    config_file: str = Field(default="config.yaml", validation_alias="CONFIG_FILE")

    # где лежат определения IF-памяти (переменная окружения MEMORIES_FILE)
    memories_file: str = Field(default="data/if_memories.yaml", validation_alias="MEMORIES_FILE")

    # внутреннее хранилище загруженного YAML
    _cfg: Dict[str, Any] = PrivateAttr(default_factory=dict)
    _config_path: Path | None = PrivateAttr(default=None)
    _memories_path: Path | None = PrivateAttr(default=None)

    # куда и сколько бэкапов хранить (можно переопределить в YAML через секцию backups)
    backups_dir: str = "./data/backups"
    backups_keep: int = 10

    # ───────── пути ─────────
    @property
    def config_path(self) -> Path:
        if self._config_path is None:
            p = Path(self.config_file)
            if not p.is_absolute():
                p = Path.cwd() / p
            self._config_path = p
        return self._config_path

    @property
    def memories_path(self) -> Path:
        """Абсолютный путь к YAML с IF-памятью; гарантируем наличие директории."""
        if self._memories_path is None:
            p = Path(self.memories_file)
            if not p.is_absolute():
                p = Path.cwd() / p
            p.parent.mkdir(parents=True, exist_ok=True)
            self._memories_path = p
        return self._memories_path

    # ───────── YAML cfg ─────────
    @property
    def cfg(self) -> Dict[str, Any]:
        return self._cfg

    def get_cfg(self) -> Dict[str, Any]:
        return self._cfg

    def set_cfg(self, data: Dict[str, Any]) -> None:
        validate_cfg(data or {})
        self._cfg = data or {}

    def load_yaml_config(self) -> None:
        p = self.config_path
        if p.exists():
            with open(p, "r", encoding="utf-8") as f:
                self._cfg = yaml.safe_load(f) or {}
                validate_cfg(self._cfg)  # выбросит ValueError, если что-то не так
        else:
            self._cfg = {}

    # ───────── удобные секции ─────────
    @property
    def engine(self) -> Dict[str, Any]:
        out = dict(ENGINE_DEFAULTS)
        out.update(self._cfg.get("engine", {}) or {})
        return out

    @property
    def points(self) -> List[Dict[str, Any]]:
        return self._cfg.get("points", []) or []

    @property
    def global_variables(self) -> List[Dict[str, Any]]:
        return self._cfg.get("global_variables", []) or []

    @property
    def debug(self) -> Dict[str, Any]:
        return self._cfg.get("debug", {})

    @property
    def backups(self) -> Dict[str, Any]:
        bsec = self._cfg.get("backups", {}) or {}
        return {
            "dir": str(bsec.get("dir", self.backups_dir)),
            "keep": int(bsec.get("keep", self.backups_keep) or 0),
        }

    @property
    def db_url(self) -> str:
        # дефолт «как раньше»
        return self._cfg.get("db", {}).get("url", "sqlite:///./data/data.db")


settings = Settings()
