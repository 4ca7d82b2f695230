"""
Checks against real checkpoints from the Huggingface Model Hub.

These download `gpt2` and `bert-base-uncased` and only run when
PANGOLING_RUN_SLOW=1.
"""

import math
import os

import pytest

import pangoling

pytestmark = pytest.mark.skipif(
    os.getenv("PANGOLING_RUN_SLOW") != "1", reason="set PANGOLING_RUN_SLOW=1 to run"
)


def test_cloze_ranks_tree_first():
    rows = pangoling.masked_full_distribution(
        "The apple doesn't fall far from the [MASK].", model="bert-base-uncased"
    )
    assert rows[0].token == "tree"
    assert rows[0].rank == 1
    assert math.fsum(math.exp(r.log_prob) for r in rows) == pytest.approx(1.0, abs=1e-4)


def test_apple_is_more_predictable_than_pear():
    apple, pear = pangoling.masked_target_log_prob(
        ["The", "The"],
        ["apple", "pear"],
        ["doesn't fall far from the tree.", "doesn't fall far from the tree."],
        model="bert-base-uncased",
    )
    assert apple > pear
    assert apple == pytest.approx(-4.68, abs=0.1)
    assert pear == pytest.approx(-8.60, abs=0.1)


def test_gpt2_words_and_batches():
    words = ["The", "apple", "doesn't", "fall", "far", "from", "the", "tree."] * 3
    keys = [i // 8 for i in range(len(words))]
    small = pangoling.causal_words_pred(words, by=keys, model="gpt2", batch_size=1)
    large = pangoling.causal_words_pred(words, by=keys, model="gpt2", batch_size=3)
    assert [s is None for s in small] == [i % 8 == 0 for i in range(len(words))]
    for a, b in zip(small, large):
        assert (a is None and b is None) or a == pytest.approx(b, abs=1e-4)
