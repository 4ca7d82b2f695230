import string

import pytest
import torch

from tokenizers import Tokenizer, models, normalizers, pre_tokenizers, processors
from transformers import (
    BertConfig,
    BertForMaskedLM,
    GPT2Config,
    GPT2LMHeadModel,
    PreTrainedTokenizerFast,
)

from pangoling import CausalLMScorer, MaskedLMScorer, registry, reset_config

SPECIALS = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]", "[BOS]", "[EOS]"]
WORDS = ["the", "apple", "tree", "fall", "far", "from", "doesn", "'", ".", ","]


def build_vocab():
    vocab = {}
    for piece in (
        SPECIALS
        + WORDS
        + list(string.ascii_lowercase)
        + [f"##{c}" for c in string.ascii_lowercase]
    ):
        vocab.setdefault(piece, len(vocab))
    return vocab


def build_tokenizer(masked: bool) -> PreTrainedTokenizerFast:
    vocab = build_vocab()
    backend = Tokenizer(models.WordPiece(vocab=vocab, unk_token="[UNK]"))
    backend.normalizer = normalizers.BertNormalizer(lowercase=True)
    backend.pre_tokenizer = pre_tokenizers.BertPreTokenizer()
    backend.add_special_tokens(SPECIALS)
    if masked:
        backend.post_processor = processors.TemplateProcessing(
            single="[CLS] $A [SEP]",
            special_tokens=[("[CLS]", vocab["[CLS]"]), ("[SEP]", vocab["[SEP]"])],
        )
    return PreTrainedTokenizerFast(
        tokenizer_object=backend,
        unk_token="[UNK]",
        pad_token="[PAD]",
        cls_token="[CLS]",
        sep_token="[SEP]",
        mask_token="[MASK]",
        bos_token="[BOS]",
        eos_token="[EOS]",
    )


@pytest.fixture(scope="session")
def causal_tokenizer():
    return build_tokenizer(masked=False)


@pytest.fixture(scope="session")
def masked_tokenizer():
    return build_tokenizer(masked=True)


@pytest.fixture(scope="session")
def causal_scorer(causal_tokenizer):
    torch.manual_seed(0)
    config = GPT2Config(
        vocab_size=len(causal_tokenizer),
        n_positions=128,
        n_embd=32,
        n_layer=2,
        n_head=2,
        bos_token_id=causal_tokenizer.bos_token_id,
        eos_token_id=causal_tokenizer.eos_token_id,
    )
    return CausalLMScorer(GPT2LMHeadModel(config), tokenizer=causal_tokenizer)


@pytest.fixture(scope="session")
def masked_scorer(masked_tokenizer):
    torch.manual_seed(0)
    config = BertConfig(
        vocab_size=len(masked_tokenizer),
        hidden_size=32,
        num_hidden_layers=2,
        num_attention_heads=2,
        intermediate_size=64,
        max_position_embeddings=128,
        pad_token_id=masked_tokenizer.pad_token_id,
    )
    return MaskedLMScorer(BertForMaskedLM(config), tokenizer=masked_tokenizer)


@pytest.fixture(autouse=True)
def clean_state():
    yield
    reset_config()
    registry.reset()
