"""Source resolution and per-cycle binding snapshots."""

from __future__ import annotations

import threading

import pytest

from app.memories import source_ref
from app.memories.bindings import build_snapshot
from app.memories.errors import BindingError, NotFound, ResolutionTimeout, StaleOrUnavailable
from app.memories.resolver import SourceResolver, coerce_point_value
from app.memories.types import VariableBinding


class TestCoercePointValue:

    @pytest.mark.parametrize("raw,expected", [
        (True, True),
        (False, False),
        (3, 3.0),
        (2.5, 2.5),
        ("12,5", 12.5),
        (" 7 ", 7.0),
        ("TRUE", True),
        ("false", False),
    ])
    def test_accepted(self, raw, expected):
        got = coerce_point_value(raw)
        assert got == expected
        assert type(got) is type(expected)

    @pytest.mark.parametrize("raw", [None, "", "abc", [1], {"v": 1}])
    def test_rejected(self, raw):
        assert coerce_point_value(raw) is None


class TestResolvePoints:

    def test_value(self, resolver):
        assert resolver.resolve(source_ref.point("t1")) == 60.0
        assert resolver.resolve(source_ref.point("flag")) is True

    def test_unknown_point(self, resolver):
        with pytest.raises(NotFound):
            resolver.resolve(source_ref.point("nope"))

    def test_point_without_value(self, resolver):
        with pytest.raises(StaleOrUnavailable):
            resolver.resolve(source_ref.point("t2"))

    def test_point_with_garbage_value(self, resolver, points):
        points.set_value("t2", "n/a")
        with pytest.raises(StaleOrUnavailable, match="n/a"):
            resolver.resolve(source_ref.point("t2"))

    def test_timeout_when_store_is_locked(self, points, gvars):
        resolver = SourceResolver(points=points, global_vars=gvars, timeout_s=0.05)
        held = threading.Event()
        release = threading.Event()

        def _hold():
            with points._lock:
                held.set()
                release.wait(2)

        t = threading.Thread(target=_hold)
        t.start()
        try:
            held.wait(2)
            with pytest.raises(ResolutionTimeout):
                resolver.resolve(source_ref.point("t1"))
        finally:
            release.set()
            t.join()


class TestResolveGlobalVariables:

    def test_typed_values(self, resolver):
        assert resolver.resolve(source_ref.global_variable("mode")) == 1.0
        assert resolver.resolve(source_ref.global_variable("night")) is False

    def test_unknown(self, resolver):
        with pytest.raises(NotFound):
            resolver.resolve(source_ref.global_variable("nope"))

    def test_disabled_counts_as_not_found(self, resolver):
        with pytest.raises(NotFound):
            resolver.resolve(source_ref.global_variable("off"))

    def test_never_set(self, resolver):
        with pytest.raises(StaleOrUnavailable):
            resolver.resolve(source_ref.global_variable("gv_b"))


class TestBuildSnapshot:

    def _bindings(self, **pairs):
        return [VariableBinding(alias=a, source=source_ref.decode(s)) for a, s in pairs.items()]

    def test_full_snapshot(self, resolver):
        snap = build_snapshot(self._bindings(v1="P:t1", m="GV:mode", f="P:flag"), resolver)
        assert dict(snap) == {"v1": 60.0, "m": 1.0, "f": True}

    def test_snapshot_is_read_only(self, resolver):
        snap = build_snapshot(self._bindings(v1="P:t1"), resolver)
        with pytest.raises(TypeError):
            snap["v1"] = 0.0

    def test_all_or_nothing(self, resolver):
        with pytest.raises(BindingError) as exc:
            build_snapshot(self._bindings(v1="P:t1", v2="P:t2"), resolver)
        assert exc.value.alias == "v2"
        assert isinstance(exc.value.cause, StaleOrUnavailable)
        assert "[v2]" in str(exc.value)

    def test_empty_bindings(self, resolver):
        assert dict(build_snapshot([], resolver)) == {}
