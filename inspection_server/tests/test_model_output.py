from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from inspection_server.model_output import extract_json_from_text, extract_reply_text  # noqa: E402


def test_extract_json_strips_fences_and_surrounding_prose():
    assert extract_json_from_text('noise ```json {"a":1} ``` trailing') == {"a": 1}


def test_extract_json_returns_none_without_json():
    assert extract_json_from_text("not json at all") is None
    assert extract_json_from_text("") is None
    assert extract_json_from_text(None) is None


def test_extract_json_parses_whole_text_and_uppercase_fence_tag():
    assert extract_json_from_text("```JSON\n[1, 2]\n```") == [1, 2]
    assert extract_json_from_text('  {"name": "x"}  ') == {"name": "x"}


def test_extract_json_uses_first_to_last_brace_span():
    text = 'Here you go:\n{"name": "表", "items": [{"name": "a", "standard": "b"}]}\nThanks!'

    parsed = extract_json_from_text(text)

    assert parsed == {"name": "表", "items": [{"name": "a", "standard": "b"}]}


def test_extract_json_does_not_guess_partial_structure():
    assert extract_json_from_text('{"a": 1} and {"b": 2}') is None
    assert extract_json_from_text('{"items": [1, 2') is None


def test_extract_reply_text_reads_ollama_chat_and_generate_shapes():
    assert extract_reply_text({"message": {"role": "assistant", "content": " hello "}}) == "hello"
    assert extract_reply_text({"response": "generated"}) == "generated"


def test_extract_reply_text_walks_nested_content_parts_in_order():
    reply = {
        "message": {"content": [{"type": "text", "text": "first"}]},
        "output_text": "second",
        "output": [
            {
                "type": "message",
                "content": [
                    {"type": "output_text", "text": "third"},
                    {"type": "output_text", "content": ["fourth"]},
                ],
            }
        ],
        "content": [{"type": "text", "text": "fifth"}],
    }

    assert extract_reply_text(reply) == "first\nsecond\nthird\nfourth\nfifth"


def test_extract_reply_text_never_fails_on_unknown_shapes():
    assert extract_reply_text(None) == ""
    assert extract_reply_text("plain") == ""
    assert extract_reply_text({"message": "not an object", "response": 42}) == ""
    assert extract_reply_text({"content": [None, {}, {"text": ""}, 7]}) == ""
