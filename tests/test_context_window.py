import pytest

from diffagent.services.context_window import (
    chunk_text_for_token_budget,
    estimate_token_count,
    get_context_window_config,
    normalize_positive_int,
    render_chunked_content,
    split_text_into_chunks,
)


@pytest.mark.parametrize(
    "text, expected",
    [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)],
)
def test_estimate_token_count(text, expected):
    assert estimate_token_count(text) == expected


@pytest.mark.parametrize(
    "text",
    [
        "",
        "single line",
        "a\nb\nc\n",
        "ends without newline\nsecond",
        "\n\n\n",
        "windows\r\nline\r\nendings\r\n",
        "x" * 250 + "\nshort\n" + "y" * 99,
    ],
)
@pytest.mark.parametrize("chunk_size", [1, 7, 100, 10_000])
def test_split_round_trip(text, chunk_size):
    chunks = split_text_into_chunks(text, chunk_size)

    assert "".join(chunks) == text
    assert all(len(chunk) <= chunk_size for chunk in chunks)


def test_split_packs_whole_lines():
    assert split_text_into_chunks("aa\nbb\ncc\n", 6) == ["aa\nbb\n", "cc\n"]


def test_split_hard_splits_long_lines():
    assert split_text_into_chunks("abcdefgh\nz", 3) == ["abc", "def", "gh\n", "z"]


def test_budget_truncation_takes_partial_chunk():
    chunked = chunk_text_for_token_budget("a" * 400, chunk_size_chars=100, max_tokens=30, chars_per_token=4)

    assert chunked.truncated
    assert chunked.used_tokens <= 30
    assert chunked.total_chunk_count == 4
    assert chunked.included_chunk_count == 2
    assert chunked.partial_chunk_included
    assert chunked.chunks[1] == "a" * 20
    assert chunked.omitted_chunk_count == 2
    assert chunked.estimated_total_tokens == 100


def test_budget_large_enough_keeps_everything():
    text = "line\n" * 10

    chunked = chunk_text_for_token_budget(text, chunk_size_chars=20, max_tokens=1000)

    assert not chunked.truncated
    assert "".join(chunked.chunks) == text
    assert chunked.omitted_chunk_count == 0


def test_zero_budget_includes_nothing():
    chunked = chunk_text_for_token_budget("hello", chunk_size_chars=100, max_tokens=0)

    assert chunked.chunks == []
    assert chunked.truncated


def test_render_labels_only_split_content():
    whole = chunk_text_for_token_budget("abc", 100, 100)
    split = chunk_text_for_token_budget("aa\nbb\n", 3, 100)

    assert render_chunked_content(whole) == "abc"
    assert render_chunked_content(split) == "[chunk 1/2]\naa\n\n\n[chunk 2/2]\nbb\n"


@pytest.mark.parametrize(
    "value, expected",
    [(10, 10), (10.9, 10), ("10", 5), (None, 5), (True, 5), (0, 5), (float("nan"), 5)],
)
def test_normalize_positive_int(value, expected):
    assert normalize_positive_int(value, 5) == expected


def test_context_window_config_from_defaults():
    window = get_context_window_config({})

    # 32768 - 8192 = 24576 input tokens
    assert window.chunk_size_chars == 25000
    assert window.context_token_budget == 12288
    assert window.read_token_budget == 15974


def test_context_window_config_clamps_small_values():
    window = get_context_window_config({"contextSize": 2000, "maxTokens": 1900, "chunkSize": 10})

    assert window.chunk_size_chars == 25000
    assert window.context_token_budget == 512
    assert window.read_token_budget == 665
