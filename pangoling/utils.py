import math

from collections import OrderedDict
from itertools import groupby
from typing import Hashable, List, Optional, Sequence, Tuple

from .errors import GroupLengthMismatch


def all_equal(iterable):
    g = groupby(iterable)
    return next(g, True) and not next(g, False)


def between(num, tup):
    if num >= tup[0] and num < tup[1]:
        return True
    else:
        return False


def check_log_base(log_base: float) -> float:
    if log_base is None or log_base <= 0 or log_base == 1:
        raise ValueError(f"log_base must be positive and different from 1, got {log_base}.")
    return float(log_base)


def convert_log_base(value: Optional[float], log_base: float = math.e) -> Optional[float]:
    """
    Converts a natural-log value to base `log_base`, keeping missing
    values (``None``) as they are.

    Log_b(X) = log_e(X)/log_e(b)
    """
    if value is None:
        return None
    if log_base == math.e:
        return value
    return value / math.log(log_base)


def perplexity(
    log_probs: Sequence[Optional[float]],
    log_base: float = math.e,
    skip_missing: bool = False,
) -> float:
    """
    Perplexity of a sequence of log-probabilities expressed in base `log_base`.

    :param log_probs: per-word or per-token log-probabilities.
    :param log_base: base the log-probabilities are expressed in.
    :param skip_missing: ignore missing (``None``) values instead of raising.
    :return: ``log_base ** (-mean(log_probs))``
    """
    log_base = check_log_base(log_base)
    values = []
    for lp in log_probs:
        if lp is None or (isinstance(lp, float) and math.isnan(lp)):
            if not skip_missing:
                raise ValueError("log_probs contains missing values; set skip_missing=True to ignore them.")
            continue
        values.append(lp)
    if not values:
        raise ValueError("Cannot compute the perplexity of an empty sequence.")
    return log_base ** (-math.fsum(values) / len(values))


def validate_lengths(**sequences: Sequence) -> int:
    """Checks that all parallel inputs have the same length and returns it."""
    lengths = {name: len(seq) for name, seq in sequences.items() if seq is not None}
    if not all_equal(lengths.values()):
        detail = ", ".join(f"{name}={n}" for name, n in lengths.items())
        raise GroupLengthMismatch(f"Parallel inputs have different lengths ({detail}).")
    return next(iter(lengths.values()), 0)


def group_positions(keys: Sequence[Hashable]) -> "OrderedDict[Hashable, List[int]]":
    """
    Maps each grouping key to the positions where it occurs, keys in order
    of first appearance and positions in input order.
    """
    groups: "OrderedDict[Hashable, List[int]]" = OrderedDict()
    for i, key in enumerate(keys):
        groups.setdefault(key, []).append(i)
    return groups


def character_spans(pieces: Sequence[str], separator: str) -> List[Tuple[int, int]]:
    """
    Character spans of `pieces` inside ``separator.join(pieces)``; empty
    pieces take no separator and get an empty span.
    """
    spans = []
    cursor = 0
    seen_text = False
    for piece in pieces:
        if piece == "":
            spans.append((cursor, cursor))
            continue
        if seen_text:
            cursor += len(separator)
        spans.append((cursor, cursor + len(piece)))
        cursor += len(piece)
        seen_text = True
    return spans


def join_pieces(pieces: Sequence[str], separator: str) -> str:
    return separator.join(p for p in pieces if p != "")
