"""Record codec, YAML definitions file and cycle journal storages."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db.models import Base
from app.memories.codec import memories_from_doc, memory_from_dict, memory_to_dict
from app.memories.errors import ConfigurationError
from app.memories.repositories import (
    InMemoryCycleLogStorage,
    InMemoryIfMemoryStorage,
    SqlCycleLogStorage,
    YamlIfMemoryStorage,
)
from app.memories.storage import MemoriesRepository
from app.memories.types import Branch, CycleLogEntry, CycleStatus, OutputType, SourceKind

from .conftest import make_memory

RECORD = {
    "id": "boiler_pump",
    "name": "Насос котла",
    "output_reference": "P:out_d",
    "output_type": "digital",
    "interval": 10,
    "default_value": 0,
    "variable_bindings": {"t": "P:t1", "mode": "GV:mode"},
    "branches": [
        {"order": 1, "condition": "[t] >= 40", "output_value": 1},
        {"order": 0, "name": "Перегрев", "condition": "[t] >= 85 && [mode] == 1", "output_value": 1, "hysteresis": 30},
    ],
}


# =========================================================================
# codec
# =========================================================================


class TestCodec:

    def test_from_dict(self):
        m = memory_from_dict(RECORD)
        assert m.id == "boiler_pump"
        assert m.output_destination.kind == SourceKind.POINT
        assert m.output_destination.locator == "out_d"
        assert m.output_type == OutputType.DIGITAL
        assert m.interval == 10
        assert [vb.alias for vb in m.variable_bindings] == ["t", "mode"]
        assert m.variable_bindings[1].source.kind == SourceKind.GLOBAL_VARIABLE
        assert [b.order for b in m.sorted_branches()] == [0, 1]
        assert m.sorted_branches()[0].hysteresis == 30.0

    def test_to_dict_sorts_branches_and_prefixes_refs(self):
        d = memory_to_dict(memory_from_dict(RECORD))
        assert d["output_reference"] == "P:out_d"
        assert d["variable_bindings"] == {"t": "P:t1", "mode": "GV:mode"}
        assert [b["order"] for b in d["branches"]] == [0, 1]
        assert d["branches"][0]["name"] == "Перегрев"

    def test_legacy_output_item_id(self):
        rec = dict(RECORD)
        del rec["output_reference"]
        rec["output_item_id"] = "6f1c9a7e"
        m = memory_from_dict(rec)
        assert m.output_destination.kind == SourceKind.POINT
        assert memory_to_dict(m)["output_reference"] == "P:6f1c9a7e"

    def test_bindings_as_list(self):
        rec = dict(RECORD, variable_bindings=[{"alias": "t", "source": "P:t1"}])
        m = memory_from_dict(rec)
        assert m.aliases() == ["t"]

    def test_missing_order_uses_position(self):
        rec = dict(RECORD, branches=[{"condition": "[t] > 1"}, {"order": None, "condition": "[t] > 2"}])
        m = memory_from_dict(rec)
        assert [b.order for b in m.branches] == [0, 1]
        assert m.branches[0].output_value == 1.0

    def test_comma_decimal(self):
        rec = dict(RECORD, default_value="2,5")
        assert memory_from_dict(rec).default_value == 2.5

    def test_branch_ids_survive(self):
        rec = dict(RECORD, branches=[{"id": "b-1", "order": 0, "condition": "[t] > 1"}])
        assert memory_from_dict(rec).branches[0].id == "b-1"

    @pytest.mark.parametrize("patch,path", [
        ({"output_type": "pwm"}, "output_type"),
        ({"interval": "often"}, "interval"),
        ({"interval": 2.5}, "interval"),
        ({"branches": "x"}, "branches"),
        ({"variable_bindings": 5}, "variable_bindings"),
        ({"default_value": "abc"}, "default_value"),
    ])
    def test_bad_fields(self, patch, path):
        with pytest.raises(ConfigurationError) as exc:
            memory_from_dict(dict(RECORD, **patch))
        assert exc.value.path == path

    def test_doc_errors_are_prefixed_with_index(self):
        doc = {"if_memories": [RECORD, dict(RECORD, id="x", output_type="pwm")]}
        with pytest.raises(ConfigurationError, match=r"if_memories\[1\]"):
            memories_from_doc(doc)

    def test_doc_default_ids(self):
        rec = dict(RECORD)
        del rec["id"]
        items = memories_from_doc({"if_memories": [rec]})
        assert items[0].id == "m1"

    def test_empty_doc(self):
        assert memories_from_doc(None) == []
        assert memories_from_doc({}) == []


# =========================================================================
# Definitions storage
# =========================================================================


class TestInMemoryStorage:

    def test_copies_in_and_out(self):
        s = InMemoryIfMemoryStorage()
        m = make_memory([Branch(order=0, condition="[v1] > 0")])
        s.save(m)
        m.name = "changed"
        got = s.get("m1")
        assert got.name == "memory m1"
        got.name = "changed again"
        assert s.get("m1").name == "memory m1"

    def test_list_enabled(self):
        s = InMemoryIfMemoryStorage()
        s.save(make_memory([Branch(order=0, condition="[v1] > 0")]))
        s.save(make_memory([Branch(order=0, condition="[v1] > 0")], memory_id="m2", is_disabled=True))
        assert [m.id for m in s.list_enabled()] == ["m1"]
        s.delete("m2")
        s.delete("nope")
        assert [m.id for m in s.list()] == ["m1"]


class TestYamlStorage:

    def test_missing_file_is_empty(self, tmp_path):
        s = YamlIfMemoryStorage(tmp_path / "if_memories.yaml")
        assert s.load() == []

    def test_save_writes_file_and_reloads(self, tmp_path):
        path = tmp_path / "data" / "if_memories.yaml"
        s = YamlIfMemoryStorage(path)
        s.save(memory_from_dict(RECORD))

        doc = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert doc["if_memories"][0]["id"] == "boiler_pump"
        assert doc["if_memories"][0]["output_reference"] == "P:out_d"

        again = YamlIfMemoryStorage(path).load()
        assert [m.id for m in again] == ["boiler_pump"]
        assert again[0].branches[0].name == "Перегрев"
        assert not path.with_suffix(".yaml.tmp").exists()

    def test_backups_rotated(self, tmp_path):
        path = tmp_path / "if_memories.yaml"
        backups = tmp_path / "backups"
        s = YamlIfMemoryStorage(path, backups_dir=backups, backups_keep=2)

        s.save(memory_from_dict(RECORD))
        assert not backups.exists() or list(backups.iterdir()) == []

        for i in range(3):
            s.save(memory_from_dict(dict(RECORD, id=f"x{i}")))
        files = list(backups.glob("if_memories-*.yaml.bak"))
        assert 1 <= len(files) <= 2

    def test_delete_flushes(self, tmp_path):
        path = tmp_path / "if_memories.yaml"
        s = YamlIfMemoryStorage(path)
        s.save(memory_from_dict(RECORD))
        s.delete("boiler_pump")
        assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"if_memories": []}

    def test_broken_file(self, tmp_path):
        path = tmp_path / "if_memories.yaml"
        path.write_text("if_memories: 5\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            YamlIfMemoryStorage(path).load()

    def test_check_rejects_whole_file_and_keeps_previous(self, tmp_path):
        path = tmp_path / "if_memories.yaml"
        s = YamlIfMemoryStorage(path)
        s.save(memory_from_dict(RECORD))
        path.write_text(
            yaml.safe_dump({"if_memories": [RECORD, dict(RECORD, id="second")]}, allow_unicode=True),
            encoding="utf-8",
        )

        def _check(memory):
            if memory.id == "second":
                raise ConfigurationError("не годится", "interval")

        with pytest.raises(ConfigurationError, match="if_memories\\[1\\]: interval"):
            s.load(_check)
        assert [m.id for m in s.list()] == ["boiler_pump"]

        assert [m.id for m in s.load()] == ["boiler_pump", "second"]


# =========================================================================
# Cycle journal
# =========================================================================


def _entry(memory_id="m1", status=CycleStatus.OUTPUT, ts=None, value=1.0, **kw):
    return CycleLogEntry(
        ts=ts or datetime.now(timezone.utc),
        memory_id=memory_id,
        memory_name=f"memory {memory_id}",
        status=status,
        value=value,
        **kw,
    )


class TestInMemoryJournal:

    def test_newest_first_and_capped(self):
        j = InMemoryCycleLogStorage(max_entries=3)
        for i in range(5):
            j.append(_entry(value=float(i)))
        assert [e.value for e in j.list_recent(10)] == [4.0, 3.0, 2.0]

    def test_filters(self):
        j = InMemoryCycleLogStorage()
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        j.append(_entry("m1", ts=old))
        j.append(_entry("m2", status=CycleStatus.SKIPPED_RESOLUTION, value=None, error="t2 missing"))
        j.append(_entry("m1"))

        assert len(j.list_recent(10, memory_id="m1")) == 2
        assert [e.memory_id for e in j.list_recent(10, status=CycleStatus.SKIPPED_RESOLUTION)] == ["m2"]
        since = datetime.now(timezone.utc) - timedelta(minutes=1)
        assert len(j.list_recent(10, since=since)) == 2
        assert len(j.list_recent(1)) == 1


class TestSqlJournal:

    @pytest.fixture
    def sql_journal(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'journal.db'}", future=True)
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
        yield SqlCycleLogStorage(factory)
        engine.dispose()

    def test_append_and_read(self, sql_journal):
        sql_journal.append(_entry("m1", branch_order=0, branch_name="hot", committed=True))
        sql_journal.append(_entry("m1", status=CycleStatus.SKIPPED_RESOLUTION, value=None, error="[v1] gone"))

        rows = sql_journal.list_recent(10)
        assert [r.status for r in rows] == [CycleStatus.SKIPPED_RESOLUTION, CycleStatus.OUTPUT]
        assert rows[0].value is None
        assert rows[0].error == "[v1] gone"
        assert rows[1].branch_name == "hot"
        assert rows[1].committed is True
        assert rows[1].ts.tzinfo is not None

    def test_filters(self, sql_journal):
        sql_journal.append(_entry("m1"))
        sql_journal.append(_entry("m2"))
        sql_journal.append(_entry("m2", status=CycleStatus.SKIPPED_DISABLED, value=None))

        assert [r.memory_id for r in sql_journal.list_recent(10, memory_id="m2")] == ["m2", "m2"]
        assert len(sql_journal.list_recent(10, status=CycleStatus.OUTPUT)) == 2
        assert len(sql_journal.list_recent(1)) == 1

    def test_repository_forwards_to_journal(self, sql_journal):
        repo = MemoriesRepository(InMemoryIfMemoryStorage(), sql_journal)
        repo.append_cycle_log(_entry("m9"))
        assert repo.list_recent_cycle_logs(limit=5, memory_id="m9")[0].memory_name == "memory m9"
