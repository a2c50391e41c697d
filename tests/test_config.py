"""config.yaml validation, Settings sections and stores seeded from config."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from app.core.config import ENGINE_DEFAULTS, Settings
from app.core.validate_cfg import validate_cfg
from app.memories.global_vars import GlobalVariableRegistry
from app.memories.types import GlobalVariableType, PointItemType
from app.services.point_store import PointStore

SAMPLE = Path(__file__).resolve().parents[1] / "config.yaml"


def _sample():
    return yaml.safe_load(SAMPLE.read_text(encoding="utf-8"))


class TestValidateCfg:

    def test_sample_config_is_valid(self):
        validate_cfg(_sample())

    def test_empty_config_is_valid(self):
        validate_cfg({})

    @pytest.mark.parametrize("cfg,match", [
        ([], "объектом"),
        ({"db": {"url": " "}}, "db.url"),
        ({"backups": {"keep": -1}}, "backups.keep"),
        ({"engine": {"interval_unit_s": 0}}, "engine.interval_unit_s"),
        ({"engine": {"resolve_timeout_s": "fast"}}, "engine.resolve_timeout_s"),
        ({"engine": {"persist_journal": "yes"}}, "engine.persist_journal"),
        ({"debug": []}, "debug"),
        ({"points": {}}, "points"),
        ({"points": [{"name": "x"}]}, "points\\[1\\].id"),
        ({"points": [{"id": "a"}, {"id": "a"}]}, "дублируется"),
        ({"points": [{"id": "a", "item_type": "relay"}]}, "item_type"),
        ({"points": [{"id": "a", "item_type": "digital_input", "value": 5}]}, "points\\[a\\].value"),
        ({"points": [{"id": "a", "value": "warm"}]}, "points\\[a\\].value"),
        ({"global_variables": [{"name": "g", "type": "string"}]}, "type"),
        ({"global_variables": [{"name": "g"}, {"name": "g"}]}, "дублируется"),
        ({"global_variables": [{"name": "g", "type": "boolean", "value": 2}]}, "global_variables\\[g\\].value"),
    ])
    def test_rejected(self, cfg, match):
        with pytest.raises(ValueError, match=match):
            validate_cfg(cfg)


class TestSettings:

    def test_load_yaml_config(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(SAMPLE.read_text(encoding="utf-8"), encoding="utf-8")
        monkeypatch.setenv("CONFIG_FILE", str(path))

        s = Settings()
        s.load_yaml_config()
        assert s.config_path == path
        assert len(s.points) == 3
        assert [g["name"] for g in s.global_variables] == ["boiler_mode", "night"]
        assert s.db_url == "sqlite:///./data/data.db"
        assert s.backups == {"dir": "./data/backups", "keep": 10}

    def test_missing_file_gives_empty_cfg(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "nope.yaml"))
        s = Settings()
        s.load_yaml_config()
        assert s.get_cfg() == {}
        assert s.engine == ENGINE_DEFAULTS
        assert s.debug == {}

    def test_engine_section_merges_defaults(self):
        s = Settings()
        s.set_cfg({"engine": {"interval_unit_s": 0.5}})
        assert s.engine["interval_unit_s"] == 0.5
        assert s.engine["resolve_timeout_s"] == ENGINE_DEFAULTS["resolve_timeout_s"]

    def test_set_cfg_validates(self):
        s = Settings()
        with pytest.raises(ValueError):
            s.set_cfg({"points": [{"id": "a", "item_type": "relay"}]})
        assert s.get_cfg() == {}

    def test_memories_path_creates_parent(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORIES_FILE", str(tmp_path / "sub" / "if_memories.yaml"))
        s = Settings()
        assert s.memories_path.parent.is_dir()


class TestStoresFromConfig:

    def test_point_store(self):
        store = PointStore()
        store.reset_from_cfg(_sample())
        items = {p["id"]: p for p in store.list()}
        assert len(items) == 3
        pump = items["6f1c9a7e-41b2-4c0f-8d2e-1f5a7b3c9e02"]
        assert pump["item_type"] == "digital_output"
        assert pump["value"] is False
        assert pump["writer"] == "config"
        assert items["a3d4e5f6-0718-4293-a4b5-c6d7e8f90a03"]["value"] is None

    def test_point_values_survive_reload(self):
        store = PointStore()
        store.reset_from_cfg({"points": [{"id": "a", "item_type": "analog_input"}]})
        store.set_value("a", 12.0)
        store.reset_from_cfg({"points": [{"id": "a", "name": "renamed", "item_type": "analog_input"}]})
        st = store.get("a")
        assert st.value == 12.0
        assert st.name == "renamed"

    def test_unknown_point_write(self):
        with pytest.raises(KeyError):
            PointStore().set_value("nope", 1.0)

    def test_item_type(self):
        store = PointStore()
        store.add("o", PointItemType.ANALOG_OUTPUT)
        assert store.item_type("o") == PointItemType.ANALOG_OUTPUT
        assert store.item_type("x") is None

    def test_global_variables(self):
        reg = GlobalVariableRegistry()
        reg.reset_from_cfg(_sample())
        assert set(reg.all()) == {"boiler_mode", "night"}
        assert reg.get("boiler_mode").value == 1.0
        assert reg.get("night").type == GlobalVariableType.BOOLEAN
        assert reg.get("night").value is False


class TestGlobalVariableRegistry:

    def test_set_value_coerces(self, gvars):
        assert gvars.set_value("night", "true").value is True
        assert gvars.set_value("mode", "2,5").value == 2.5
        assert gvars.set_value("mode", True).value == 1.0

    def test_set_value_errors(self, gvars):
        with pytest.raises(KeyError):
            gvars.set_value("nope", 1)
        with pytest.raises(ValueError):
            gvars.set_value("night", "maybe")

    def test_on_change_called_outside_lock(self, gvars):
        seen = []
        gvars.set_on_change(lambda name, value, meta: seen.append((name, value, meta.get("writer"))))
        gvars.set_value("mode", 3, meta={"writer": "api"})
        assert seen == [("mode", 3.0, "api")]

    def test_rename(self, gvars):
        gvars.rename("mode", "regime")
        assert not gvars.exists("mode")
        assert gvars.get("regime").value == 1.0
        with pytest.raises(ValueError):
            gvars.rename("regime", "night")
        with pytest.raises(KeyError):
            gvars.rename("mode", "x")

    def test_copies_are_detached(self, gvars):
        gv = gvars.get("mode")
        gv.value = 99.0
        assert gvars.get("mode").value == 1.0

    def test_timestamp_is_timezone_aware(self, gvars):
        gv = gvars.set_value("mode", 2)
        assert gv.ts.tzinfo is not None
        assert gv.ts.utcoffset().total_seconds() == 0
