"""
Tests for streamed tool-input recovery: bracket repair, parsing, coercion.
"""

from __future__ import annotations

import json
import logging

from coding_agent.core.json_repair import (
    coerce_tool_input, parse_tool_input, repair_json_if_unbalanced,
)


class TestRepairJson:

    def test_closes_open_array_and_object(self):
        repaired = repair_json_if_unbalanced('{"a":1,"b":[1,2')
        assert repaired == '{"a":1,"b":[1,2]}'
        assert json.loads(repaired) == {"a": 1, "b": [1, 2]}

    def test_balanced_input_unchanged(self):
        assert repair_json_if_unbalanced('{"a":[1]}') == '{"a":[1]}'

    def test_brackets_inside_strings_ignored(self):
        assert repair_json_if_unbalanced('{"cmd":"echo [{"') == '{"cmd":"echo [{"}'

    def test_escaped_quote_does_not_end_string(self):
        repaired = repair_json_if_unbalanced('{"a":"say \\"[hi\\"","b":{"c":1')
        assert json.loads(repaired) == {"a": 'say "[hi"', "b": {"c": 1}}

    def test_nested_closers_in_reverse_order(self):
        assert repair_json_if_unbalanced('[{"a":[{') == '[{"a":[{}]}]'

    def test_mismatched_closer_skipped(self):
        # the stray ] does not pop the open {
        assert repair_json_if_unbalanced('{"a":1]') == '{"a":1]}'


class TestParseToolInput:

    def test_valid_json(self):
        assert parse_tool_input('{"path": "a.txt"}') == {"path": "a.txt"}

    def test_truncated_json_is_repaired(self):
        assert parse_tool_input('{"a":1,"b":[1,2') == {"a": 1, "b": [1, 2]}

    def test_not_json_returns_none(self):
        assert parse_tool_input("not json at all") is None

    def test_empty_returns_none(self):
        assert parse_tool_input("   ") is None

    def test_unterminated_string_returns_none(self):
        assert parse_tool_input('{"a":"unterminated') is None


class TestCoerceToolInput:

    def test_empty_input_is_empty_dict_without_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert coerce_tool_input("", "list_files") == {}
        assert caplog.records == []

    def test_garbage_becomes_empty_dict_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert coerce_tool_input("not json at all", "bash") == {}
        assert any("bash" in r.getMessage() for r in caplog.records)

    def test_non_object_json_becomes_empty_dict(self):
        assert coerce_tool_input("[1, 2, 3]", "grep") == {}

    def test_warning_truncates_raw_input(self, caplog):
        raw = "x" * 2000
        with caplog.at_level(logging.WARNING):
            coerce_tool_input(raw, "bash")
        message = caplog.records[-1].getMessage()
        assert "x" * 500 in message
        assert "x" * 501 not in message

    def test_repaired_object_returned(self):
        assert coerce_tool_input('{"command":"ls"', "bash") == {"command": "ls"}
