"""Alignment between caller-supplied words and a model's subword tokens."""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

from transformers import PreTrainedTokenizerBase

from .errors import AlignmentError
from .utils import between, character_spans, join_pieces


@dataclass(frozen=True)
class Token:
    """
    A subword unit as produced by the tokenizer.

    :param id: index of the token in the vocabulary.
    :param text: the token as it appears in the vocabulary (e.g. ``"Ġapple"``).
    :param start: character offset where the token starts in its source text.
    :param end: character offset where the token ends in its source text.
    :param special: whether the tokenizer inserted the token (``[CLS]``, ``<s>``, ...).
    """

    id: int
    text: str
    start: int
    end: int
    special: bool = False


@dataclass
class Word:
    """A caller-supplied word and the contiguous run of tokens realizing it."""

    text: str
    tokens: List[Token] = field(default_factory=list)
    token_start: int = 0
    token_end: int = 0

    @property
    def n_tokens(self) -> int:
        return len(self.tokens)


@dataclass
class AlignedText:
    """Output of :meth:`TokenizerAdapter.align`."""

    text: str
    tokens: List[Token]
    words: List[Word]

    @property
    def ids(self) -> List[int]:
        return [t.id for t in self.tokens]

    def word_tokens(self) -> List[Token]:
        """Concatenation of the words' token spans, in order."""
        return [t for w in self.words for t in w.tokens]


class TokenizerAdapter:
    """
    Wraps a fast Huggingface tokenizer so that words can be mapped to the
    tokens the model actually sees.

    :param tokenizer: a ``PreTrainedTokenizerFast``; offsets into the
        source text are required for alignment.
    """

    def __init__(self, tokenizer: PreTrainedTokenizerBase) -> None:
        if not getattr(tokenizer, "is_fast", False):
            raise ValueError(
                "Word alignment needs character offsets, load the tokenizer with `use_fast=True`."
            )
        self.tokenizer = tokenizer

    def tokenize(self, text: str, add_special_tokens: bool = False) -> List[Token]:
        encoded = self.tokenizer(
            text,
            add_special_tokens=add_special_tokens,
            return_offsets_mapping=True,
            return_special_tokens_mask=True,
        )
        ids = encoded["input_ids"]
        pieces = self.tokenizer.convert_ids_to_tokens(ids)
        return [
            Token(id=i, text=piece, start=start, end=end, special=bool(special))
            for i, piece, (start, end), special in zip(
                ids,
                pieces,
                encoded["offset_mapping"],
                encoded["special_tokens_mask"],
            )
        ]

    def detokenize(self, tokens: Sequence[Union[Token, int]]) -> str:
        ids = [t.id if isinstance(t, Token) else t for t in tokens]
        return self.tokenizer.decode(ids)

    def count(self, text: str, add_special_tokens: bool = False) -> int:
        return len(
            self.tokenizer(text, add_special_tokens=add_special_tokens)["input_ids"]
        )

    def align(
        self,
        words: Sequence[str],
        separator: str = " ",
        add_special_tokens: bool = False,
        item_id: Optional[Any] = None,
    ) -> AlignedText:
        """
        Tokenizes the words joined by `separator` once, and slices the
        resulting tokens into contiguous runs, one per word.

        A token made only of separator characters is given to the next
        word (e.g. a lone ``"▁"``). A token covering characters of two
        words raises :class:`AlignmentError`, as does a non-empty word that
        ends up with no tokens. Empty words get an empty run.

        :param words: the words, in order.
        :param separator: string placed between consecutive words.
        :param add_special_tokens: keep the tokenizer's special tokens in
            the sequence; they belong to no word.
        :param item_id: identifier reported in errors.
        :return: the aligned text.
        """
        text = join_pieces(words, separator)
        spans = character_spans(words, separator)
        tokens = self.tokenize(text, add_special_tokens=add_special_tokens)

        assigned: List[List[int]] = [[] for _ in words]
        pending: List[int] = []
        pointer = 0
        for index, token in enumerate(tokens):
            if token.special:
                continue
            while pointer < len(words) and (
                spans[pointer][0] == spans[pointer][1] or spans[pointer][1] <= token.start
            ):
                pointer += 1

            hits = self._overlapping(spans, pointer, token)
            if len(hits) > 1:
                covered = " | ".join(words[h] for h in hits)
                raise AlignmentError(
                    f"Token `{token.text}` spans more than one word ({covered}) in `{text}`.",
                    item_id=item_id,
                )
            if not hits:
                pending.append(index)
                continue
            assigned[hits[0]].extend(pending)
            assigned[hits[0]].append(index)
            pending = []

        if pending:
            last = max((i for i, a in enumerate(assigned) if a), default=None)
            if last is None:
                raise AlignmentError(f"No word could be aligned in `{text}`.", item_id=item_id)
            assigned[last].extend(pending)

        aligned_words = []
        for word, span, indices in zip(words, spans, assigned):
            if not indices:
                if span[0] != span[1]:
                    raise AlignmentError(
                        f"Word `{word}` is not realized by any token in `{text}`.",
                        item_id=item_id,
                    )
                aligned_words.append(Word(text=word))
                continue
            if indices != list(range(indices[0], indices[-1] + 1)):
                raise AlignmentError(
                    f"Tokens of word `{word}` are not contiguous in `{text}`.",
                    item_id=item_id,
                )
            aligned_words.append(
                Word(
                    text=word,
                    tokens=[tokens[i] for i in indices],
                    token_start=indices[0],
                    token_end=indices[-1] + 1,
                )
            )

        return AlignedText(text=text, tokens=tokens, words=aligned_words)

    @staticmethod
    def _overlapping(spans: List[Tuple[int, int]], pointer: int, token: Token) -> List[int]:
        hits = []
        j = pointer
        while j < len(spans) and spans[j][0] < max(token.end, token.start + 1):
            start, end = spans[j]
            if start != end and (
                (token.start < end and token.end > start) or between(token.start, (start, end))
            ):
                hits.append(j)
            j += 1
        return hits
