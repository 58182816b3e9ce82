"""Tests for OutputParser extraction strategies and shape validation."""

from __future__ import annotations

import json

import pytest

from src.llm_notes.notes.errors import ParseError
from src.llm_notes.notes.parser import (
    iter_json_candidates,
    normalize_assignments,
    normalize_notes,
    parse_assignments,
    parse_notes,
)

NOTES = [
    {"title": "Budget", "answer_1": "Over", "answer_2": "Ten percent", "answer_3": "Cut travel"},
    {"title": "Travel", "answer_1": "Costs", "answer_2": "High", "answer_3": "Reduce"},
]


# ── Wrapping Independence ────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text",
    [
        json.dumps(NOTES),
        json.dumps({"notes": NOTES}),
        "Here are the notes:\n```json\n" + json.dumps(NOTES) + "\n```\nThanks",
        "```JSON\n" + json.dumps({"notes": NOTES}) + "\n```",
        "Sure! " + json.dumps(NOTES) + " Let me know.",
        "Result: " + json.dumps({"notes": NOTES}) + " done",
    ],
)
def test_parse_notes_is_independent_of_wrapping(text):
    notes = parse_notes(text)
    assert [n.title for n in notes] == ["Budget", "Travel"]
    assert notes[0].answer_3 == "Cut travel"


def test_parse_notes_accepts_legacy_answer_keys():
    text = json.dumps([{"title": " Budget ", "q1": "a", "q2": "b", "q3": "c"}])
    notes = parse_notes(text)
    assert notes[0].title == "Budget"
    assert (notes[0].answer_1, notes[0].answer_2, notes[0].answer_3) == ("a", "b", "c")


def test_parse_notes_accepts_empty_array():
    assert parse_notes('{"notes": []}') == []


# ── Invalid Notes ────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "item",
    [
        {"title": "", "answer_1": "a", "answer_2": "b", "answer_3": "c"},
        {"title": "   ", "answer_1": "a", "answer_2": "b", "answer_3": "c"},
        {"title": "T", "answer_1": "a", "answer_2": "b"},
        {"title": "T", "answer_1": "a", "answer_2": 2, "answer_3": "c"},
        "not an object",
    ],
)
def test_one_invalid_note_rejects_the_whole_payload(item):
    text = json.dumps([NOTES[0], item])
    with pytest.raises(ParseError) as exc_info:
        parse_notes(text)
    assert exc_info.value.message == "OpenAI response could not be parsed as notes JSON."


def test_parse_notes_rejects_prose():
    with pytest.raises(ParseError):
        parse_notes("I could not find any notes in this transcript.")


def test_normalize_notes_rejects_object_without_notes_key():
    assert normalize_notes({"items": NOTES}) is None


def test_inner_array_span_is_used_when_outer_object_is_wrong_shape():
    notes = parse_notes(json.dumps({"items": NOTES}))
    assert len(notes) == 2


# ── Assignments ──────────────────────────────────────────────────────────────


def test_parse_assignments_bare_and_wrapped():
    items = [{"line_number": 2, "speaker": "Bob", "utterance": "Hi"}]
    assert parse_assignments(json.dumps(items))[0].line_number == 2
    wrapped = parse_assignments("```\n" + json.dumps({"assignments": items}) + "\n```")
    assert wrapped[0].speaker == "Bob"


def test_parse_assignments_line_alias_digit_strings_and_defaults():
    citations = parse_assignments(json.dumps([{"line": "7"}, {"line_number": 3.0}]))
    assert [c.line_number for c in citations] == [7, 3]
    assert citations[0].speaker == ""
    assert citations[0].utterance == ""


@pytest.mark.parametrize(
    "item",
    [
        {"line_number": 0},
        {"line_number": -4},
        {"line_number": True},
        {"line_number": 2.5},
        {"line_number": "two"},
        {"speaker": "Bob", "utterance": "Hi"},
    ],
)
def test_parse_assignments_rejects_bad_line_numbers(item):
    assert normalize_assignments([item]) is None
    with pytest.raises(ParseError) as exc_info:
        parse_assignments(json.dumps([item]))
    assert "note assignments" in exc_info.value.message


def test_parse_assignments_empty_array():
    assert parse_assignments('{"assignments": []}') == []


# ── Candidate Order ──────────────────────────────────────────────────────────


def test_candidates_follow_strategy_order():
    text = 'Prefix ```json\n[1]\n``` suffix {"a": 1}'
    names = [name for name, _ in iter_json_candidates(text)]
    assert names[0] == "fenced_block"
    assert "whole_text" not in names


def test_blank_fenced_block_is_skipped():
    names = [name for name, _ in iter_json_candidates("```json\n   \n``` [1, 2]")]
    assert "fenced_block" not in names
    assert "array_span" in names
