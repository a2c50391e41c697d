"""Writing the selected value to a point or a global variable."""

from __future__ import annotations

import pytest

from app.memories import source_ref
from app.memories.committer import OutputCommitter
from app.memories.errors import CommitError
from app.memories.types import OutputType, SourceKind, SourceReference


class TestDigital:

    def test_point_gets_boolean(self, committer, points):
        assert committer.commit(source_ref.point("out_d"), OutputType.DIGITAL, 1.0) is True
        st = points.get("out_d")
        assert st.value is True
        assert st.writer == "memory"

        assert committer.commit(source_ref.point("out_d"), OutputType.DIGITAL, 1e-12) is False
        assert points.get("out_d").value is False

    def test_negative_value_is_on(self, committer):
        assert committer.commit(source_ref.point("out_d"), OutputType.DIGITAL, -3.0) is True

    def test_wrong_point_type(self, committer):
        with pytest.raises(CommitError, match="digital_output"):
            committer.commit(source_ref.point("t1"), OutputType.DIGITAL, 1.0)

    def test_boolean_variable(self, committer, gvars):
        assert committer.commit(source_ref.global_variable("gv_b"), OutputType.DIGITAL, 5.0) is True
        assert gvars.get("gv_b").value is True

    def test_float_variable_gets_one_or_zero(self, committer, gvars):
        assert committer.commit(source_ref.global_variable("gv_f"), OutputType.DIGITAL, 7.0) == 1.0
        assert gvars.get("gv_f").value == 1.0
        assert committer.commit(source_ref.global_variable("gv_f"), OutputType.DIGITAL, 0.0) == 0.0


class TestAnalog:

    def test_point_gets_raw_number(self, committer, points):
        assert committer.commit(source_ref.point("out_a"), OutputType.ANALOG, 42.5) == 42.5
        assert points.get("out_a").value == 42.5

    def test_wrong_point_type(self, committer):
        with pytest.raises(CommitError, match="analog_output"):
            committer.commit(source_ref.point("out_d"), OutputType.ANALOG, 1.0)

    def test_float_variable(self, committer, gvars):
        committer.commit(source_ref.global_variable("gv_f"), OutputType.ANALOG, -2.25)
        assert gvars.get("gv_f").value == -2.25

    def test_boolean_variable_rejected(self, committer):
        with pytest.raises(CommitError, match="float"):
            committer.commit(source_ref.global_variable("gv_b"), OutputType.ANALOG, 1.0)


class TestFailures:

    def test_missing_point(self, committer):
        with pytest.raises(CommitError, match="not found"):
            committer.commit(source_ref.point("nope"), OutputType.DIGITAL, 1.0)

    def test_missing_variable(self, committer):
        with pytest.raises(CommitError, match="not found"):
            committer.commit(source_ref.global_variable("nope"), OutputType.ANALOG, 1.0)

    def test_disabled_variable(self, committer):
        with pytest.raises(CommitError, match="disabled"):
            committer.commit(source_ref.global_variable("off"), OutputType.ANALOG, 1.0)

    def test_empty_destination(self, committer):
        with pytest.raises(CommitError):
            committer.commit(SourceReference(SourceKind.POINT, ""), OutputType.DIGITAL, 1.0)

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_non_finite_value(self, committer, value):
        with pytest.raises(CommitError):
            committer.commit(source_ref.point("out_a"), OutputType.ANALOG, value)

    def test_error_carries_destination(self, committer):
        with pytest.raises(CommitError) as exc:
            committer.commit(source_ref.point("nope"), OutputType.DIGITAL, 1.0)
        assert exc.value.destination == "P:nope"


class TestListener:

    def test_on_commit_called_with_written_value(self, points, gvars):
        seen = []
        c = OutputCommitter(points=points, global_vars=gvars, on_commit=lambda d, v: seen.append((str(d), v)))
        c.commit(source_ref.point("out_d"), OutputType.DIGITAL, 1.0)
        assert seen == [("P:out_d", True)]

    def test_listener_not_called_on_failure(self, points, gvars):
        seen = []
        c = OutputCommitter(points=points, global_vars=gvars, on_commit=lambda d, v: seen.append(v))
        with pytest.raises(CommitError):
            c.commit(source_ref.point("t1"), OutputType.DIGITAL, 1.0)
        assert seen == []
