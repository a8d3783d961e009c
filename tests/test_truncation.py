"""Tests for recursive value truncation."""

from __future__ import annotations

from sandbox_bridge.core.truncation import (
    DEPTH_MARKER,
    MORE_PROPERTIES_KEY,
    TRUNCATION_MARKER,
    truncate_string,
    truncate_value,
)
from sandbox_bridge.types import TruncationConfig


def _depth(value) -> int:
    if isinstance(value, dict):
        return 1 + max((_depth(v) for v in value.values()), default=0)
    if isinstance(value, list):
        return 1 + max((_depth(v) for v in value), default=0)
    return 0


class TestTruncateString:
    def test_short_string_unchanged(self):
        assert truncate_string("hello", 10) == "hello"

    def test_exact_length_unchanged(self):
        assert truncate_string("x" * 10, 10) == "x" * 10

    def test_long_string_fits_with_marker(self):
        result = truncate_string("a" * 1000, 500)
        assert len(result) == 500
        assert result.endswith(TRUNCATION_MARKER)

    def test_max_smaller_than_marker(self):
        result = truncate_string("abcdefghijklmnopqrstuvwxyz", 5)
        assert result == "abcde"


class TestTruncateValue:
    def test_primitives_pass_through(self):
        cfg = TruncationConfig()
        for value in (None, True, 0, 3.5):
            assert truncate_value(value, cfg) == value

    def test_list_capped_with_marker(self):
        cfg = TruncationConfig(max_array_length=10)
        result = truncate_value(list(range(25)), cfg)
        assert len(result) == 11
        assert result[:10] == list(range(10))
        assert result[-1] == "... (15 more items)"

    def test_short_list_has_no_marker(self):
        cfg = TruncationConfig(max_array_length=10)
        assert truncate_value([1, 2, 3], cfg) == [1, 2, 3]

    def test_dict_keys_capped(self):
        cfg = TruncationConfig(max_object_keys=3)
        result = truncate_value({f"k{i}": i for i in range(8)}, cfg)
        assert list(result)[:3] == ["k0", "k1", "k2"]
        assert result[MORE_PROPERTIES_KEY] == "(more properties)"
        assert len(result) == 4

    def test_depth_marker(self):
        cfg = TruncationConfig(max_object_depth=3)
        nested = {"a": {"b": {"c": {"d": 1}}}}
        result = truncate_value(nested, cfg)
        assert result["a"]["b"]["c"] == DEPTH_MARKER

    def test_nested_string_truncated(self):
        cfg = TruncationConfig(max_string_length=20)
        result = truncate_value({"msg": "z" * 100}, cfg)
        assert len(result["msg"]) == 20

    def test_unknown_object_stringified(self):
        class Widget:
            def __str__(self):
                return "Widget<" + "w" * 600 + ">"

        cfg = TruncationConfig(max_string_length=50)
        result = truncate_value(Widget(), cfg)
        assert isinstance(result, str)
        assert len(result) == 50

    def test_bounds_hold_for_mixed_value(self):
        cfg = TruncationConfig(max_string_length=30, max_array_length=4, max_object_depth=3, max_object_keys=4)
        value = {
            "list": [{"deep": [[["x" * 100] * 9] * 9]}] * 12,
            "text": "y" * 300,
            **{f"extra{i}": i for i in range(10)},
        }
        result = truncate_value(value, cfg)

        def check(v):
            if isinstance(v, str):
                assert len(v) <= 30
            elif isinstance(v, list):
                assert len(v) <= 5
                for item in v:
                    check(item)
            elif isinstance(v, dict):
                assert len(v) <= 5
                for item in v.values():
                    check(item)

        check(result)
        assert _depth(result) <= cfg.max_object_depth
