"""Tests for model output parsing and answer cleanup."""

import json

import pytest

from ragdesk.assistant.domain import (
    AnswerParsed,
    AnswerParseError,
    RerankParsed,
    RerankParseError,
    clean_answer_text,
    parse_answer_output,
    parse_rerank_output,
    valid_citation_indices,
)


class TestParseRerankOutput:
    def test_parses_scores(self):
        raw = json.dumps({"scores": [{"id": "a", "score": 90}, {"id": "b", "score": 12.5}]})

        parsed = parse_rerank_output(raw)

        assert isinstance(parsed, RerankParsed)
        assert [(s.document_id, s.score) for s in parsed.scores] == [("a", 90.0), ("b", 12.5)]

    def test_strips_code_fences(self):
        raw = "```json\n" + json.dumps({"scores": [{"id": "a", "score": 70}]}) + "\n```"

        parsed = parse_rerank_output(raw)

        assert isinstance(parsed, RerankParsed)
        assert parsed.scores[0].document_id == "a"

    def test_numeric_ids_and_string_scores_are_accepted(self):
        raw = json.dumps({"scores": [{"id": 7, "score": "55"}]})

        parsed = parse_rerank_output(raw)

        assert isinstance(parsed, RerankParsed)
        assert parsed.scores[0].document_id == "7"
        assert parsed.scores[0].score == 55.0

    def test_drops_invalid_entries(self):
        raw = json.dumps({"scores": [
            {"id": "ok", "score": 40},
            {"score": 80},
            {"id": "neg", "score": -1},
            {"id": "big", "score": 101},
            {"id": "bool", "score": True},
            {"id": "text", "score": "high"},
            "not-an-object",
        ]})

        parsed = parse_rerank_output(raw)

        assert isinstance(parsed, RerankParsed)
        assert [s.document_id for s in parsed.scores] == ["ok"]

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "   ",
        "not json{",
        json.dumps([1, 2, 3]),
        json.dumps({"ranking": []}),
        json.dumps({"scores": []}),
        json.dumps({"scores": [{"id": "x", "score": 500}]}),
    ])
    def test_unusable_output_is_a_parse_error(self, raw):
        assert isinstance(parse_rerank_output(raw), RerankParseError)


class TestParseAnswerOutput:
    def test_parses_text_and_indices(self):
        raw = json.dumps({"text": "Restart it.", "cited_source_indices": [1, 2]})

        parsed = parse_answer_output(raw)

        assert isinstance(parsed, AnswerParsed)
        assert parsed.text == "Restart it."
        assert parsed.indices == [1, 2]

    def test_missing_indices_default_to_empty(self):
        parsed = parse_answer_output(json.dumps({"text": "Hi"}))

        assert isinstance(parsed, AnswerParsed)
        assert parsed.indices == []

    def test_non_list_indices_become_empty(self):
        parsed = parse_answer_output(json.dumps({"text": "Hi", "cited_source_indices": "1"}))

        assert isinstance(parsed, AnswerParsed)
        assert parsed.indices == []

    @pytest.mark.parametrize("raw", ["", "plain prose", json.dumps({"answer": "x"}), json.dumps({"text": 3})])
    def test_unusable_output_is_a_parse_error(self, raw):
        assert isinstance(parse_answer_output(raw), AnswerParseError)


class TestValidCitationIndices:
    def test_keeps_in_range_integers_in_order(self):
        assert valid_citation_indices([2, 1], 3) == [2, 1]

    def test_drops_out_of_range_duplicates_and_non_integers(self):
        assert valid_citation_indices([0, 1, 1, 4, "2", 2.0, None, 3], 3) == [1, 3]

    def test_rejects_booleans(self):
        assert valid_citation_indices([True, False], 3) == []

    def test_empty_source_list_allows_nothing(self):
        assert valid_citation_indices([1], 0) == []


class TestCleanAnswerText:
    def test_removes_markdown(self):
        text = "## Steps\n**Close** the `PDV` and *reopen* it"

        assert clean_answer_text(text) == "Steps Close the PDV and reopen it."

    def test_removes_source_markers(self):
        text = "Close the PDV [1] and reopen it [Source 2]. Then log in [Fonte 1, 2]."

        assert clean_answer_text(text) == "Close the PDV and reopen it. Then log in."

    def test_strips_wrapping_quotes(self):
        assert clean_answer_text('"\'Restart the terminal\'"') == "Restart the terminal."

    def test_keeps_terminal_punctuation(self):
        assert clean_answer_text("Is it plugged in?") == "Is it plugged in?"

    def test_collapses_whitespace(self):
        assert clean_answer_text("Line one\n\n   line two.") == "Line one line two."

    @pytest.mark.parametrize("text", ["", "   ", "**", '""', "[1]"])
    def test_nothing_left_returns_empty(self, text):
        assert clean_answer_text(text) == ""
