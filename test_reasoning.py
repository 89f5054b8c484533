"""Tests for splitting answer text from reasoning spans."""

import pytest

from agentrooms.utils.reasoning import remove_reasoning, split_reasoning


def test_text_without_markers_is_all_answer():
    assert split_reasoning("Just the answer.") == ("Just the answer.", "")


def test_empty_text():
    assert split_reasoning("") == ("", "")


def test_complete_span_is_excised_from_answer():
    text = "<think>pondering</think>Final slogan"
    answer, reasoning = split_reasoning(text)

    assert answer == "Final slogan"
    assert reasoning == "<think>pondering</think>"


def test_text_before_and_after_span_is_kept():
    answer, reasoning = split_reasoning("Intro <think>hmm</think> outro")

    assert answer == "Intro  outro"
    assert reasoning == "<think>hmm</think>"


def test_open_span_without_end_marker_is_reasoning_in_progress():
    answer, reasoning = split_reasoning("Lead <think>still thinking")

    assert answer == "Lead "
    assert reasoning == "<think>still thinking"


def test_markers_match_case_insensitively():
    answer, reasoning = split_reasoning("<THINK>loud</Think>done")

    assert answer == "done"
    assert reasoning == "<THINK>loud</Think>"


@pytest.mark.parametrize("text", [
    "plain",
    "<think>a</think>b",
    "x<think>unfinished",
    "before<think>mid</think>after",
])
def test_answer_and_reasoning_partition_the_text(text):
    answer, reasoning = split_reasoning(text)

    assert len(answer) + len(reasoning) == len(text)
    assert "<think>" not in answer.lower()


def test_split_is_stable_when_recomputed_per_chunk():
    chunks = ["<thi", "nk>weighing op", "tions</th", "ink>Buy ", "now"]
    buffer = ""
    for chunk in chunks:
        buffer += chunk
        answer, _ = split_reasoning(buffer)

    assert answer == "Buy now"
    assert split_reasoning(buffer)[1] == "<think>weighing options</think>"


def test_custom_markers():
    answer, reasoning = split_reasoning("[r]why[/r]what", "[r]", "[/r]")

    assert answer == "what"
    assert reasoning == "[r]why[/r]"


def test_remove_reasoning_returns_answer_only():
    assert remove_reasoning("<think>x</think>Hello") == "Hello"
