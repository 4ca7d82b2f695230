import pytest

from pangoling.errors import AlignmentError
from pangoling.tokenization import TokenizerAdapter


@pytest.fixture
def adapter(causal_tokenizer):
    return TokenizerAdapter(causal_tokenizer)


def test_tokenize_offsets(adapter):
    tokens = adapter.tokenize("the pear")
    assert [t.text for t in tokens] == ["the", "p", "##e", "##a", "##r"]
    assert (tokens[0].start, tokens[0].end) == (0, 3)
    assert (tokens[1].start, tokens[-1].end) == (4, 8)
    assert not any(t.special for t in tokens)


def test_align_multi_token_word(adapter):
    aligned = adapter.align(["the", "pear", "fell"])
    assert [w.n_tokens for w in aligned.words] == [1, 4, 4]
    assert aligned.words[1].token_start == 1
    assert aligned.words[1].token_end == 5
    assert [t.text for t in aligned.words[1].tokens] == ["p", "##e", "##a", "##r"]


@pytest.mark.parametrize(
    "words",
    [
        ["the", "apple", "doesn't", "fall", "far", "from", "the", "tree."],
        ["a", "b", "c"],
        ["Pear,", "apple"],
    ],
)
def test_align_round_trip(adapter, words):
    aligned = adapter.align(words)
    assert aligned.word_tokens() == adapter.tokenize(" ".join(words))
    assert aligned.text == " ".join(words)


def test_align_without_separator(adapter):
    aligned = adapter.align(["the", "."], separator="")
    assert aligned.text == "the."
    assert [w.n_tokens for w in aligned.words] == [1, 1]


def test_token_straddling_words_fails(adapter):
    with pytest.raises(AlignmentError) as err:
        adapter.align(["ap", "ple"], separator="", item_id=7)
    assert err.value.item_id == 7


def test_empty_words_get_no_tokens(adapter):
    aligned = adapter.align(["", "the", "apple", ""])
    assert aligned.text == "the apple"
    assert [w.n_tokens for w in aligned.words] == [0, 1, 1, 0]


def test_special_tokens_belong_to_no_word(masked_tokenizer):
    adapter = TokenizerAdapter(masked_tokenizer)
    aligned = adapter.align(["the", "apple"], add_special_tokens=True)
    assert aligned.tokens[0].text == "[CLS]"
    assert aligned.tokens[-1].text == "[SEP]"
    assert aligned.words[0].token_start == 1
    assert aligned.word_tokens() == [t for t in aligned.tokens if not t.special]


def test_detokenize(adapter):
    tokens = adapter.tokenize("the apple")
    assert adapter.detokenize(tokens) == "the apple"
    assert adapter.count("the pear") == 5


def test_slow_tokenizer_is_rejected():
    class Slow:
        is_fast = False

    with pytest.raises(ValueError):
        TokenizerAdapter(Slow())
