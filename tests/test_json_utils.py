"""Tests for JSON extraction from model output."""

from __future__ import annotations

import pytest

from memagent.utils.json_utils import JsonExtractionError, extract_json_object, render_json


class TestExtractJsonObject:

    @pytest.mark.parametrize("text", [
        '{"type": "conversation"}',
        '  {"type": "conversation"}\n',
        '```json\n{"type": "conversation"}\n```',
        '```\n{"type": "conversation"}\n```',
        'Here you go: {"type": "conversation"} hope that helps',
    ])
    def test_recovers_object(self, text):
        assert extract_json_object(text) == {"type": "conversation"}

    def test_braces_inside_strings(self):
        text = 'Answer: {"reasoning": "uses {braces} and \\"quotes\\"", "type": "hybrid"} done'
        assert extract_json_object(text)["type"] == "hybrid"

    def test_skips_unbalanced_prefix(self):
        assert extract_json_object('oops { then {"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("text, reason", [
        (None, "empty_output"),
        ("   ", "empty_output"),
        ("no json here", "no_json_object"),
        ("[1, 2, 3]", "no_json_object"),
        ('{"a": 1', "no_json_object"),
    ])
    def test_failures(self, text, reason):
        with pytest.raises(JsonExtractionError) as exc:
            extract_json_object(text)
        assert exc.value.reason == reason


class TestRenderJson:

    def test_plain_data(self):
        assert render_json({"result": 42}) == '{"result": 42}'

    def test_truncated(self):
        text = render_json({"text": "x" * 100}, limit=20)
        assert len(text) == 23
        assert text.endswith("...")

    def test_circular_structure(self):
        data: dict = {}
        data["self"] = data
        assert render_json(data).startswith("<unrenderable dict")

    def test_huge_integer_never_raises(self):
        text = render_json({"n": 10 ** 5000}, limit=50)
        assert len(text) <= 53
