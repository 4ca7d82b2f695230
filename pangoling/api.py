"""
Word-level predictability estimates from causal and masked language models.

Every function accepts either a model identifier (name on the Huggingface
Model Hub or local path), loaded once and cached in
:data:`pangoling.registry.registry`, or an already constructed scorer.
Keyword arguments left as ``None`` take their value from
:func:`pangoling.config.get_config`.
"""

import warnings

from typing import (
    Any,
    Callable,
    Dict,
    Hashable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from tqdm import tqdm
from transformers.utils import logging

from .assemble import (
    MaskedPrediction,
    NextTokenPrediction,
    WordScore,
    assemble,
    missing_word_scores,
    word_scores,
)
from .batching import Batch, TextItem, schedule
from .config import get_config
from .errors import AlignmentError, GroupLengthMismatch, MaskCountMismatch
from .registry import registry
from .scorer import LMScorer, ModelKind
from .utils import check_log_base, convert_log_base, group_positions, validate_lengths

logger = logging.get_logger(__name__)

Model = Union[str, LMScorer]

DEFAULT_CAUSAL = "gpt2"
DEFAULT_MASKED = "bert-base-uncased"


def _option(value, name: str):
    return getattr(get_config(), name) if value is None else value


def _resolve(model: Model, kind: ModelKind, device: Optional[str] = None) -> LMScorer:
    if isinstance(model, LMScorer):
        if model.kind != kind:
            raise ValueError(
                f"Expected a {kind.value} scorer, got a {model.kind.value} one."
            )
        return model
    return registry.get_or_load(model, kind, device=_option(device, "device"))


def _prepare(
    builders: Sequence[Tuple[Any, Callable[[], TextItem]]], strict: bool
) -> Tuple[List[TextItem], List[Any]]:
    """
    Builds every item up front. In strict mode the first alignment or mask
    error is raised; otherwise the item is reported and skipped.
    """
    items = []
    failed = []
    for item_id, build in builders:
        try:
            items.append(build())
        except (AlignmentError, MaskCountMismatch) as err:
            if strict:
                raise
            warnings.warn(f"Item {item_id!r} could not be scored and is reported as missing: {err}")
            failed.append(item_id)
    return items, failed


def _score(
    items: List[TextItem],
    compute: Callable[[Batch], List[Any]],
    batch_size: int,
    max_tokens: Optional[int],
    progress: bool,
) -> Iterator[Tuple[TextItem, Any]]:
    # all items are checked against max_tokens before the first forward pass
    batches = schedule(items, batch_size, max_tokens)
    for batch in tqdm(batches, disable=not progress):
        logger.debug(f"Scoring {batch.n_items} items ({batch.n_tokens} tokens).")
        for item, result in zip(batch.items, compute(batch)):
            yield item, result


def preload_model(
    model_id: str, kind: Union[str, ModelKind] = ModelKind.CAUSAL, device: Optional[str] = None
) -> None:
    """Loads `model_id` into the model cache; does nothing if already loaded."""
    registry.preload(model_id, kind, device=_option(device, "device"))


def is_loaded(model_id: str, kind: Union[str, ModelKind, None] = None) -> bool:
    return registry.is_loaded(model_id, kind)


def evict_model(model_id: str, kind: Union[str, ModelKind, None] = None) -> bool:
    return registry.evict(model_id, kind)


def reset_models() -> None:
    registry.reset()


def causal_word_scores(
    x: Sequence[str],
    by: Optional[Sequence[Hashable]] = None,
    model: Model = DEFAULT_CAUSAL,
    l_contexts: Union[Mapping[Hashable, str], Sequence[str], None] = None,
    add_bos_token: bool = False,
    log_base: Optional[float] = None,
    separator: Optional[str] = None,
    batch_size: Optional[int] = None,
    max_tokens: Optional[int] = None,
    strict: Optional[bool] = None,
    progress: Optional[bool] = None,
    device: Optional[str] = None,
) -> List[WordScore]:
    """
    Log-probability of each word given the words preceding it in its group,
    as :class:`WordScore` records aligned with `x`.

    :param x: the words, in reading order.
    :param by: grouping key of every word; words sharing a key form one
        context (e.g. a sentence). All words form one group if ``None``.
    :param model: model identifier or a :class:`CausalLMScorer`.
    :param l_contexts: left context of each group, either a mapping from
        key to text or a sequence in order of first appearance of the keys.
    :param add_bos_token: prepend the model's bos_token to every group.
    :param log_base: base of the reported log-probabilities.
    :param separator: string placed between words of a group.
    :param batch_size: maximum number of groups per forward pass.
    :param max_tokens: maximum number of tokens per forward pass.
    :param strict: raise on the first group that cannot be aligned.
    :param progress: show a progress bar over batches.
    :param device: device used if the model has to be loaded.
    :return: one record per word. The first word of a group without left
        context (or bos_token) has ``log_prob=None``.
    """
    log_base = check_log_base(_option(log_base, "log_base"))
    separator = _option(separator, "separator")
    strict = _option(strict, "strict")

    if by is None:
        by = [None] * len(x)
    validate_lengths(x=x, by=by)
    groups = group_positions(by)

    if l_contexts is None:
        contexts: Dict[Hashable, Optional[str]] = {key: None for key in groups}
    elif isinstance(l_contexts, Mapping):
        contexts = {key: l_contexts.get(key) for key in groups}
    else:
        if len(l_contexts) != len(groups):
            raise GroupLengthMismatch(
                f"Got {len(l_contexts)} left contexts for {len(groups)} groups."
            )
        contexts = dict(zip(groups, l_contexts))

    scorer = _resolve(model, ModelKind.CAUSAL, device)

    builders = []
    origin: Dict[int, List[int]] = {}
    for item_id, (key, positions) in enumerate(groups.items()):
        origin[item_id] = positions

        def build(item_id=item_id, key=key, positions=positions):
            return scorer.prepare_words(
                item_id,
                [x[p] for p in positions],
                key=key,
                origin=positions,
                separator=separator,
                l_context=contexts[key],
                add_bos_token=add_bos_token,
            )

        builders.append((item_id, build))

    items, failed = _prepare(builders, strict)

    scored = [
        (item.item_id, word_scores(item, token_log_probs, log_base))
        for item, token_log_probs in _score(
            items,
            scorer.compute_stats,
            _option(batch_size, "batch_size"),
            _option(max_tokens, "max_tokens"),
            _option(progress, "progress"),
        )
    ]
    for item_id in failed:
        positions = origin[item_id]
        keyed = TextItem(item_id, [x[p] for p in positions], by[positions[0]], positions)
        scored.append((item_id, missing_word_scores(keyed, log_base)))

    return assemble(scored, len(x), origin)


def causal_words_pred(
    x: Sequence[str],
    by: Optional[Sequence[Hashable]] = None,
    model: Model = DEFAULT_CAUSAL,
    **kwargs,
) -> List[Optional[float]]:
    """
    Log-probability of each word of `x` given its preceding context, one
    value per word; see :func:`causal_word_scores` for the arguments.
    Missing values are ``None``.
    """
    return [s.log_prob for s in causal_word_scores(x, by=by, model=model, **kwargs)]


def causal_tokens_pred(
    texts: Union[str, Sequence[str]],
    model: Model = DEFAULT_CAUSAL,
    add_bos_token: bool = False,
    log_base: Optional[float] = None,
    batch_size: Optional[int] = None,
    max_tokens: Optional[int] = None,
    strict: Optional[bool] = None,
    progress: Optional[bool] = None,
    device: Optional[str] = None,
) -> List[List[Tuple[str, Optional[float]]]]:
    """
    For every text, the list of `(token, log_prob)` pairs of its tokens; the
    first token has no context and gets ``None``. A text that cannot be
    tokenized gets an empty list unless `strict` is set.
    """
    texts = [texts] if isinstance(texts, str) else list(texts)
    log_base = check_log_base(_option(log_base, "log_base"))
    scorer = _resolve(model, ModelKind.CAUSAL, device)

    items, failed = _prepare(
        [
            (i, lambda i=i, t=t: scorer.prepare_text(i, t, add_bos_token=add_bos_token))
            for i, t in enumerate(texts)
        ],
        _option(strict, "strict"),
    )

    scored = []
    for item, token_log_probs in _score(
        items,
        scorer.compute_stats,
        _option(batch_size, "batch_size"),
        _option(max_tokens, "max_tokens"),
        _option(progress, "progress"),
    ):
        pieces = scorer.tokenizer.convert_ids_to_tokens(item.sequences[0])
        values = [convert_log_base(v, log_base) for v in token_log_probs]
        scored.append((item.item_id, [list(zip(pieces, values))]))
    scored.extend((i, [[]]) for i in failed)

    return assemble(scored, len(texts), {i: [i] for i in range(len(texts))})


def causal_targets_pred(
    contexts: Sequence[str],
    targets: Sequence[str],
    model: Model = DEFAULT_CAUSAL,
    separator: Optional[str] = None,
    add_bos_token: bool = False,
    log_base: Optional[float] = None,
    batch_size: Optional[int] = None,
    max_tokens: Optional[int] = None,
    strict: Optional[bool] = None,
    progress: Optional[bool] = None,
    device: Optional[str] = None,
) -> List[Optional[float]]:
    """
    Log-probability of every target given its context, i.e. the sum of the
    log-probabilities of the target's tokens following the context.
    """
    validate_lengths(contexts=contexts, targets=targets)
    log_base = check_log_base(_option(log_base, "log_base"))
    separator = _option(separator, "separator")
    scorer = _resolve(model, ModelKind.CAUSAL, device)

    items, failed = _prepare(
        [
            (
                i,
                lambda i=i, c=c, t=t: scorer.prepare_words(
                    i, [t], origin=[i], separator=separator, l_context=c,
                    add_bos_token=add_bos_token,
                ),
            )
            for i, (c, t) in enumerate(zip(contexts, targets))
        ],
        _option(strict, "strict"),
    )

    scored = [
        (item.item_id, [word_scores(item, token_log_probs, log_base)[0].log_prob])
        for item, token_log_probs in _score(
            items,
            scorer.compute_stats,
            _option(batch_size, "batch_size"),
            _option(max_tokens, "max_tokens"),
            _option(progress, "progress"),
        )
    ]
    scored.extend((i, [None]) for i in failed)

    return assemble(scored, len(targets), {i: [i] for i in range(len(targets))})


def causal_next_tokens_pred(
    context: str,
    model: Model = DEFAULT_CAUSAL,
    add_bos_token: bool = False,
    top_k: Optional[int] = None,
    log_base: Optional[float] = None,
    device: Optional[str] = None,
) -> List[NextTokenPrediction]:
    """
    Distribution of the token following `context`, ranked by descending
    log-probability; the whole vocabulary unless `top_k` is given.
    """
    log_base = check_log_base(_option(log_base, "log_base"))
    scorer = _resolve(model, ModelKind.CAUSAL, device)
    distribution = scorer.next_word_distribution([context], add_bos_token=add_bos_token)[0]
    tokens, values = scorer.ranked(distribution, top_k)
    return [
        NextTokenPrediction(context, token, convert_log_base(value, log_base), rank)
        for rank, (token, value) in enumerate(zip(tokens, values), start=1)
    ]


def masked_full_distribution(
    sentences: Union[str, Sequence[str]],
    model: Model = DEFAULT_MASKED,
    top_k: Optional[int] = None,
    placeholder: Optional[str] = "[MASK]",
    log_base: Optional[float] = None,
    batch_size: Optional[int] = None,
    max_tokens: Optional[int] = None,
    strict: Optional[bool] = None,
    progress: Optional[bool] = None,
    device: Optional[str] = None,
) -> List[MaskedPrediction]:
    """
    Predictions at every mask placeholder of every sentence. A sentence with
    several placeholders is scored in a single pass with all of them masked.

    :param sentences: one sentence or a list of sentences.
    :param model: model identifier or a :class:`MaskedLMScorer`.
    :param top_k: keep only the `top_k` most probable tokens per mask.
    :param placeholder: string marking a masked slot, replaced by the
        model's own mask token (so ``"[MASK]"`` also works for RoBERTa).
    :return: rows ordered by sentence, then `mask_index` (1-based), then rank.
        A sentence that could not be scored gets a single row with
        ``token``, ``log_prob``, ``rank`` and ``mask_index`` set to ``None``.
    """
    sentences = [sentences] if isinstance(sentences, str) else list(sentences)
    log_base = check_log_base(_option(log_base, "log_base"))
    scorer = _resolve(model, ModelKind.MASKED, device)

    items, failed = _prepare(
        [
            (i, lambda i=i, s=s: scorer.prepare_masked_sentence(i, s, placeholder))
            for i, s in enumerate(sentences)
        ],
        _option(strict, "strict"),
    )

    scored = []
    for item, distributions in _score(
        items,
        scorer.mask_distributions,
        _option(batch_size, "batch_size"),
        _option(max_tokens, "max_tokens"),
        _option(progress, "progress"),
    ):
        rows: List[MaskedPrediction] = []
        for mask_index, distribution in enumerate(distributions, start=1):
            tokens, values = scorer.ranked(distribution, top_k)
            rows.extend(
                MaskedPrediction(
                    masked_sentence=item.words[0],
                    token=token,
                    log_prob=convert_log_base(value, log_base),
                    rank=rank,
                    mask_index=mask_index,
                )
                for rank, (token, value) in enumerate(zip(tokens, values), start=1)
            )
        scored.append((item.item_id, [rows]))
    scored.extend(
        (i, [[MaskedPrediction(sentences[i], None, None, None, None)]]) for i in failed
    )

    by_sentence = assemble(scored, len(sentences), {i: [i] for i in range(len(sentences))})
    return [row for rows in by_sentence for row in rows]


def masked_target_log_prob(
    left_contexts: Sequence[str],
    targets: Sequence[str],
    right_contexts: Sequence[str],
    model: Model = DEFAULT_MASKED,
    method: Optional[str] = None,
    separator: Optional[str] = None,
    log_base: Optional[float] = None,
    batch_size: Optional[int] = None,
    max_tokens: Optional[int] = None,
    strict: Optional[bool] = None,
    progress: Optional[bool] = None,
    device: Optional[str] = None,
) -> List[Optional[float]]:
    """
    Log-probability of each target word between its left and right context.

    :param method: ``"pll"`` masks one target token at a time, keeping the
        other target tokens at their true values, and sums the results
        (pseudo-log-likelihood); ``"joint"`` masks all target tokens at once.
    :return: one value per row; ``None`` for rows that could not be scored.
    """
    validate_lengths(
        left_contexts=left_contexts, targets=targets, right_contexts=right_contexts
    )
    log_base = check_log_base(_option(log_base, "log_base"))
    separator = _option(separator, "separator")
    method = _option(method, "pll_method")
    scorer = _resolve(model, ModelKind.MASKED, device)

    items, failed = _prepare(
        [
            (
                i,
                lambda i=i, lc=lc, t=t, rc=rc: scorer.prepare_target(
                    i, lc, t, rc, separator=separator, method=method
                ),
            )
            for i, (lc, t, rc) in enumerate(zip(left_contexts, targets, right_contexts))
        ],
        _option(strict, "strict"),
    )

    scored = [
        (item.item_id, [convert_log_base(sum(token_log_probs), log_base)])
        for item, token_log_probs in _score(
            items,
            scorer.compute_stats,
            _option(batch_size, "batch_size"),
            _option(max_tokens, "max_tokens"),
            _option(progress, "progress"),
        )
    ]
    scored.extend((i, [None]) for i in failed)

    return assemble(scored, len(targets), {i: [i] for i in range(len(targets))})


def tokenize(
    texts: Union[str, Sequence[str]],
    model: Model = DEFAULT_CAUSAL,
    kind: Union[str, ModelKind] = ModelKind.CAUSAL,
    device: Optional[str] = None,
) -> List[List[str]]:
    texts = [texts] if isinstance(texts, str) else list(texts)
    scorer = _resolve(model, ModelKind.parse(kind), device)
    return [scorer.tokenize(t) for t in texts]


def ntokens(
    texts: Union[str, Sequence[str]],
    model: Model = DEFAULT_CAUSAL,
    kind: Union[str, ModelKind] = ModelKind.CAUSAL,
    device: Optional[str] = None,
) -> List[int]:
    return [len(t) for t in tokenize(texts, model, kind, device)]


def transformer_vocab(
    model: Model = DEFAULT_CAUSAL,
    kind: Union[str, ModelKind] = ModelKind.CAUSAL,
    device: Optional[str] = None,
) -> List[str]:
    return _resolve(model, ModelKind.parse(kind), device).vocab()


def model_config(
    model: Model = DEFAULT_CAUSAL,
    kind: Union[str, ModelKind] = ModelKind.CAUSAL,
    device: Optional[str] = None,
) -> dict:
    return _resolve(model, ModelKind.parse(kind), device).config()
