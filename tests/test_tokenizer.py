"""
Tests for tiktoken-backed token counting
"""

import pytest

from sebi_corpus.rag.tokenizer import Tokenizer


@pytest.fixture(scope="module")
def tokenizer() -> Tokenizer:
    try:
        return Tokenizer()
    except Exception as e:
        pytest.skip(f"cl100k_base encoding unavailable: {e}")


def test_empty_text_has_no_tokens(tokenizer):
    assert tokenizer.count("") == 0


def test_counts_subword_tokens(tokenizer):
    assert tokenizer.count("hello world") == 2


def test_special_token_text_is_plain_text(tokenizer):
    assert tokenizer.count("see <|endoftext|> in the annexure") > 0


def test_count_is_deterministic(tokenizer):
    text = "The total expense ratio of equity schemes shall not exceed 2.25 percent."

    assert tokenizer.count(text) == tokenizer.count(text)
