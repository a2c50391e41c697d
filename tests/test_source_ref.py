"""Tests for the P:/GV: source reference format."""

from __future__ import annotations

from app.memories import source_ref
from app.memories.types import SourceKind, SourceReference


class TestDecode:

    def test_point_prefix(self):
        ref = source_ref.decode("P:0b7e2f0c")
        assert ref == SourceReference(SourceKind.POINT, "0b7e2f0c")

    def test_global_variable_prefix(self):
        ref = source_ref.decode("GV:boiler_mode")
        assert ref.kind == SourceKind.GLOBAL_VARIABLE
        assert ref.locator == "boiler_mode"

    def test_unprefixed_is_legacy_point(self):
        ref = source_ref.decode("6f1c9a7e-41b2-4c0f-8d2e-1f5a7b3c9e02")
        assert ref.kind == SourceKind.POINT
        assert ref.locator == "6f1c9a7e-41b2-4c0f-8d2e-1f5a7b3c9e02"

    def test_empty_decodes_to_empty_point(self):
        assert source_ref.decode("") == SourceReference(SourceKind.POINT, "")
        assert source_ref.decode("   ") == SourceReference(SourceKind.POINT, "")
        assert source_ref.decode(None) == SourceReference(SourceKind.POINT, "")


class TestEncode:

    def test_always_prefixed(self):
        assert source_ref.encode(source_ref.point("abc")) == "P:abc"
        assert source_ref.encode(source_ref.global_variable("x")) == "GV:x"

    def test_empty_locator_encodes_to_empty(self):
        assert source_ref.encode(SourceReference(SourceKind.POINT, "")) == ""

    def test_decode_of_encode_is_identity(self):
        for ref in (source_ref.point("a-b-c"), source_ref.global_variable("Режим котла")):
            assert source_ref.decode(source_ref.encode(ref)) == ref

    def test_legacy_reference_is_upgraded_on_encode(self):
        assert source_ref.encode(source_ref.decode("guid-1")) == "P:guid-1"


class TestPredicates:

    def test_is_global_variable(self):
        assert source_ref.is_global_variable("GV:x")
        assert not source_ref.is_global_variable("P:x")
        assert not source_ref.is_global_variable("")

    def test_is_point(self):
        assert source_ref.is_point("P:x")
        assert source_ref.is_point("legacy-guid")
        assert not source_ref.is_point("GV:x")
        assert not source_ref.is_point("  ")
