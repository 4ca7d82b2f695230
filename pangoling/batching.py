"""Partitioning of text items into batches bounded by item and token budgets."""

from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, List, Optional, Tuple

from transformers.utils import logging

from .errors import ItemTooLarge
from .tokenization import AlignedText

logger = logging.get_logger(__name__)


@dataclass
class TextItem:
    """
    One unit of work: everything that has to be scored in the same
    forward pass.

    :param item_id: identifier used to put results back in input order.
    :param words: the caller's words (or a single text) belonging to the item.
    :param key: grouping key the words share (e.g. a sentence id).
    :param origin: positions of `words` in the caller's input.
    :param sequences: token id rows sent to the model for this item; a
        causal item has one row, a masked item one row per masked variant.
    :param word_spans: ``[start, end)`` token ranges of the reported words in
        the first row; ``None`` for a word whose score is undefined.
    :param targets: ``(row, position, token_id)`` triples whose
        log-probability is read off the model output.
    :param aligned: the alignment the rows were built from.
    """

    item_id: Any
    words: List[str]
    key: Optional[Hashable] = None
    origin: List[int] = field(default_factory=list)
    sequences: List[List[int]] = field(default_factory=list)
    word_spans: List[Optional[Tuple[int, int]]] = field(default_factory=list)
    targets: List[Tuple[int, int, int]] = field(default_factory=list)
    aligned: Optional[AlignedText] = None

    @property
    def n_tokens(self) -> int:
        return sum(len(s) for s in self.sequences)


@dataclass
class Batch:
    items: List[TextItem] = field(default_factory=list)
    n_tokens: int = 0

    @property
    def n_items(self) -> int:
        return len(self.items)

    def add(self, item: TextItem) -> None:
        self.items.append(item)
        self.n_tokens += item.n_tokens


def check_sizes(items: Iterable[TextItem], max_tokens: Optional[int]) -> None:
    """Raises :class:`ItemTooLarge` for the first item that can never fit."""
    if max_tokens is None:
        return
    for item in items:
        if item.n_tokens > max_tokens:
            raise ItemTooLarge(
                f"Item {item.item_id!r} has {item.n_tokens} tokens, more than max_tokens={max_tokens}.",
                item_id=item.item_id,
            )


def schedule(
    items: List[TextItem],
    max_items: int = 1,
    max_tokens: Optional[int] = None,
) -> List[Batch]:
    """
    Greedily packs `items`, in input order, into batches holding at most
    `max_items` items and at most `max_tokens` tokens. Items are never
    reordered or split across batches.

    :param items: the items to score.
    :param max_items: maximum number of items in a batch.
    :param max_tokens: maximum total number of tokens in a batch, or
        ``None`` for no token budget.
    :return: the batches, in order.
    """
    if max_items is None or max_items < 1:
        raise ValueError(f"batch_size must be a positive integer, got {max_items}.")
    if max_tokens is not None and max_tokens < 1:
        raise ValueError(f"max_tokens must be a positive integer, got {max_tokens}.")

    check_sizes(items, max_tokens)

    batches: List[Batch] = []
    current = Batch()
    for item in items:
        fits_tokens = max_tokens is None or current.n_tokens + item.n_tokens <= max_tokens
        if current.items and (not fits_tokens or current.n_items >= max_items):
            batches.append(current)
            current = Batch()
        current.add(item)
    if current.items:
        batches.append(current)

    logger.debug(
        f"Scheduled {len(items)} items into {len(batches)} batches "
        f"(max_items={max_items}, max_tokens={max_tokens})."
    )
    return batches
