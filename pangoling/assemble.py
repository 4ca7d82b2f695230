"""Result records and their reassembly into the caller's input order."""

import math

from dataclasses import dataclass
from typing import Any, Hashable, Iterable, List, Optional, Sequence, Tuple

from .batching import TextItem
from .errors import PangolingError
from .utils import convert_log_base


@dataclass(frozen=True)
class WordScore:
    """
    Aggregated score of one word.

    :param word: the word as supplied by the caller.
    :param position: index of the word in the caller's input.
    :param key: grouping key of the word.
    :param n_tokens: number of tokens realizing the word.
    :param log_prob: sum of the tokens' log-probabilities, ``None`` when undefined.
    :param log_base: base `log_prob` is expressed in.
    """

    word: str
    position: int
    key: Optional[Hashable]
    n_tokens: int
    log_prob: Optional[float]
    log_base: float = math.e

    @property
    def surprisal(self) -> Optional[float]:
        return None if self.log_prob is None else -self.log_prob


@dataclass(frozen=True)
class MaskedPrediction:
    """
    One vocabulary entry predicted at one mask slot. A sentence that could
    not be scored is reported by one row with every other field ``None``.
    """

    masked_sentence: str
    token: Optional[str]
    log_prob: Optional[float]
    rank: Optional[int]
    mask_index: Optional[int]


@dataclass(frozen=True)
class NextTokenPrediction:
    context: str
    token: str
    log_prob: float
    rank: int


def word_scores(
    item: TextItem,
    token_log_probs: Sequence[Optional[float]],
    log_base: float = math.e,
) -> List[WordScore]:
    """
    Sums natural-log token scores into word scores for one item and
    converts the sums to `log_base`. A word containing a token without
    a score (the first token of a sequence) is reported as ``None``.
    """
    scores = []
    for word, position, span in zip(item.words, item.origin, item.word_spans):
        if span is None or span[0] == span[1]:
            scores.append(WordScore(word, position, item.key, 0, None, log_base))
            continue
        values = token_log_probs[span[0] : span[1]]
        if any(v is None for v in values):
            log_prob = None
        else:
            log_prob = convert_log_base(sum(values), log_base)
        scores.append(
            WordScore(word, position, item.key, span[1] - span[0], log_prob, log_base)
        )
    return scores


def missing_word_scores(item: TextItem, log_base: float = math.e) -> List[WordScore]:
    return [
        WordScore(word, position, item.key, 0, None, log_base)
        for word, position in zip(item.words, item.origin)
    ]


def assemble(
    scored: Iterable[Tuple[Any, List[Any]]],
    n_inputs: int,
    positions_of: dict,
) -> List[Any]:
    """
    Places per-item results at the input positions the items came from.

    :param scored: ``(item_id, results)`` pairs, in the order batches were
        processed; the i-th result of an item goes to the i-th position
        of that item.
    :param n_inputs: number of entries expected in the output.
    :param positions_of: maps an item id to its input positions.
    :return: results aligned with the input.
    """
    output: List[Any] = [None] * n_inputs
    filled = [False] * n_inputs
    for item_id, results in scored:
        positions = positions_of[item_id]
        if len(results) != len(positions):
            raise PangolingError(
                f"Item {item_id!r} produced {len(results)} results for {len(positions)} inputs."
            )
        for position, result in zip(positions, results):
            if filled[position]:
                raise PangolingError(f"Input {position} was scored more than once.")
            output[position] = result
            filled[position] = True

    if not all(filled):
        missing = [i for i, f in enumerate(filled) if not f]
        raise PangolingError(f"Inputs {missing} did not receive a score.")
    return output
