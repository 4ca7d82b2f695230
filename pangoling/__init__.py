from .api import (
    causal_next_tokens_pred,
    causal_targets_pred,
    causal_tokens_pred,
    causal_word_scores,
    causal_words_pred,
    evict_model,
    is_loaded,
    masked_full_distribution,
    masked_target_log_prob,
    model_config,
    ntokens,
    preload_model,
    reset_models,
    tokenize,
    transformer_vocab,
)
from .assemble import MaskedPrediction, NextTokenPrediction, WordScore
from .config import Config, get_config, reset_config, set_config
from .errors import (
    AlignmentError,
    BackendUnavailable,
    GroupLengthMismatch,
    ItemTooLarge,
    MaskCountMismatch,
    PangolingError,
)
from .registry import ModelRegistry, registry
from .scorer import CausalLMScorer, LMScorer, MaskedLMScorer, ModelKind
from .utils import perplexity
