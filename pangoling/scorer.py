"""Utilities for scoring words using Language Models."""

from enum import Enum
from typing import (
    Any,
    Hashable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import torch
import warnings

from transformers import (
    AutoModelForCausalLM,
    AutoModelForMaskedLM,
    AutoTokenizer,
    BatchEncoding,
)
from transformers.utils import logging
from transformers.utils.logging import set_verbosity_error

from .batching import Batch, TextItem
from .errors import AlignmentError, BackendUnavailable, MaskCountMismatch
from .tokenization import TokenizerAdapter

set_verbosity_error()

logger = logging.get_logger(__name__)


class ModelKind(str, Enum):
    """The two families of models a scorer can wrap."""

    CAUSAL = "causal"
    MASKED = "masked"

    @classmethod
    def parse(cls, kind: Union[str, "ModelKind"]) -> "ModelKind":
        try:
            return cls(kind.lower() if isinstance(kind, str) else kind)
        except ValueError:
            raise ValueError(
                f"Unknown model kind `{kind}`, use either `causal` or `masked`."
            ) from None


class LMScorer:
    """
    Base LM scorer class intended to store models and tokenizers along
    with the machinery shared by the causal and masked scorers: padding,
    forward passes and ranking of vocabulary distributions.
    """

    kind: ModelKind

    def __init__(
        self,
        model: Union[str, torch.nn.Module],
        device: Optional[str] = "cpu",
        tokenizer=None,
        **kwargs,
    ) -> None:
        """
        :param model: should be path to a model (.pt or .bin file) stored
            locally, or name of a pretrained model stored on the Huggingface
            Model Hub, or a model (torch.nn.Module) that have the same
            signature as the corresponding Huggingface model (see the subclass
            for details).
        :param device: device type that the model should be loaded on,
            options: `cpu or cuda:{0, 1, ...} or auto`
        :type device: str, optional
        :param tokenizer: if provided, use this tokenizer.
        """
        try:
            if tokenizer is not None:
                if isinstance(tokenizer, str):
                    self.tokenizer = AutoTokenizer.from_pretrained(
                        tokenizer, use_fast=True
                    )
                else:
                    self.tokenizer = tokenizer
            elif isinstance(model, str):
                self.tokenizer = AutoTokenizer.from_pretrained(model, use_fast=True)
            else:
                raise ValueError("Must provide either model name or tokenizer.")
        except (OSError, KeyError) as err:
            raise BackendUnavailable(
                f"Could not load the tokenizer for `{tokenizer or model}`: {err}"
            ) from err

        self.model_name = model if isinstance(model, str) else type(model).__name__
        self.device = device
        self.adapter = TokenizerAdapter(self.tokenizer)

    def _load_model(self, auto_class, model: Union[str, torch.nn.Module], **kwargs):
        if not isinstance(model, str):
            return model
        try:
            if self.device == "auto":
                return auto_class.from_pretrained(
                    model, device_map=self.device, return_dict=True, **kwargs
                )
            return auto_class.from_pretrained(model, return_dict=True, **kwargs)
        except (OSError, ValueError) as err:
            raise BackendUnavailable(f"Could not load model `{model}`: {err}") from err

    def vocab(self) -> List[str]:
        """Tokens of the vocabulary, ordered by id."""
        return self.tokenizer.convert_ids_to_tokens(list(range(len(self.tokenizer))))

    def tokenize(self, text: str) -> List[str]:
        return [t.text for t in self.adapter.tokenize(text, add_special_tokens=False)]

    def config(self) -> dict:
        return self.model.config.to_dict()

    def pad(self, sequences: Sequence[Sequence[int]]) -> BatchEncoding:
        """
        Right-pads rows of token ids into a batch with an attention mask.
        """
        longest = max(len(s) for s in sequences)
        pad_id = self.tokenizer.pad_token_id
        input_ids = [list(s) + [pad_id] * (longest - len(s)) for s in sequences]
        attention_mask = [[1] * len(s) + [0] * (longest - len(s)) for s in sequences]
        return BatchEncoding(
            {
                "input_ids": torch.tensor(input_ids, dtype=torch.long),
                "attention_mask": torch.tensor(attention_mask, dtype=torch.long),
            }
        )

    def distribution(self, sequences: Sequence[Sequence[int]]) -> torch.Tensor:
        """
        Runs the model once over a batch of token id rows.

        :return: Tensor of shape `(rows, longest row, vocab)` consisting of
            natural-log probabilities over vocab items at every position.
        """
        encoded = self.pad(sequences)
        logger.debug(f"Forward pass over a {tuple(encoded['input_ids'].shape)} batch.")
        if self.device != "auto":
            encoded = encoded.to(self.device)
        else:
            encoded = encoded.to(self.model.device)

        with torch.no_grad():
            logits = self.model(**encoded).logits.detach()

        if "cuda" in str(self.device) or "auto" in str(self.device):
            logits = logits.cpu()
        logits = logits.float()

        return logits - logits.logsumexp(-1).unsqueeze(-1)

    def ranked(
        self, logprobs: torch.Tensor, top_k: Optional[int] = None
    ) -> Tuple[List[str], List[float]]:
        """
        Vocabulary entries of one distribution in descending order of
        log-probability, truncated to `top_k` entries if given.
        """
        values, indices = torch.sort(logprobs, descending=True, stable=True)
        if top_k is not None:
            values, indices = values[:top_k], indices[:top_k]
        tokens = self.tokenizer.convert_ids_to_tokens(indices.tolist())
        return tokens, values.tolist()

    def compute_stats(self, batch: Batch) -> List[List[Optional[float]]]:
        raise NotImplementedError


class CausalLMScorer(LMScorer):
    """
    Class for Autoregressive or Incremental (or left-to-right) language models such as GPT2, etc.

    :param model: should be path to a model (.pt or .bin file) stored locally,
        or name of a pretrained model stored on the Huggingface Model Hub, or
        a model (torch.nn.Module) that have the same signature as a
        Huggingface model obtained from `AutoModelForCausalLM`. In the last
        case, a corresponding tokenizer must also be provided.
    :param device: device type that the model should be loaded on,
        options: `cpu or cuda:{0, 1, ...}`
    :type device: str, optional
    :param tokenizer: if provided, use this tokenizer.
    """

    kind = ModelKind.CAUSAL

    def __init__(
        self,
        model: Union[str, torch.nn.Module],
        device: Optional[str] = "cpu",
        tokenizer=None,
        **kwargs,
    ) -> None:
        super(CausalLMScorer, self).__init__(model, device=device, tokenizer=tokenizer)

        self.model = self._load_model(AutoModelForCausalLM, model, **kwargs)

        if self.device != "auto":
            self.model.to(self.device)

        if self.tokenizer.pad_token is None:
            if tokenizer is not None:
                warnings.warn(
                    "tokenizer is changed by adding pad_token_id to the tokenizer."
                )
            if self.tokenizer.eos_token is not None:
                self.tokenizer.pad_token_id = self.tokenizer.eos_token_id
            else:
                self.tokenizer.add_special_tokens(
                    {"additional_special_tokens": ["<pad>"]}
                )
                self.tokenizer.pad_token = "<pad>"
                self.model.resize_token_embeddings(len(self.tokenizer))

        if self.tokenizer.padding_side == "left":
            self.tokenizer.padding_side = "right"

        self.model.eval()

    def _with_bos(self, ids: List[int], add_bos_token: bool) -> Tuple[List[int], int]:
        if not add_bos_token:
            return ids, 0
        if self.tokenizer.bos_token_id is None:
            raise ValueError(f"`{self.model_name}` has no bos_token to prepend.")
        return [self.tokenizer.bos_token_id] + ids, 1

    def prepare_words(
        self,
        item_id: Any,
        words: Sequence[str],
        key: Optional[Hashable] = None,
        origin: Optional[List[int]] = None,
        separator: str = " ",
        l_context: Optional[str] = None,
        add_bos_token: bool = False,
    ) -> TextItem:
        """
        Aligns the words of one context to the tokenizer and builds the
        item scored in a single forward pass.

        :param item_id: identifier of the item.
        :param words: words sharing one left-to-right context.
        :param key: grouping key of the words.
        :param origin: positions of the words in the caller's input.
        :param separator: string placed between words.
        :param l_context: text prepended to the words; it is scored as
            context only and gives the first word a left context.
        :param add_bos_token: prepend the model's bos_token.
        """
        pieces = list(words)
        skip = 0
        if l_context:
            pieces = [l_context] + pieces
            skip = 1

        aligned = self.adapter.align(pieces, separator, item_id=item_id)
        ids, shift = self._with_bos(aligned.ids, add_bos_token)
        if not ids:
            raise AlignmentError(f"Nothing to score for item {item_id!r}.", item_id=item_id)

        spans = [
            (w.token_start + shift, w.token_end + shift) if w.tokens else None
            for w in aligned.words[skip:]
        ]
        return TextItem(
            item_id=item_id,
            words=list(words),
            key=key,
            origin=list(range(len(words))) if origin is None else list(origin),
            sequences=[ids],
            word_spans=spans,
            aligned=aligned,
        )

    def prepare_text(
        self, item_id: Any, text: str, add_bos_token: bool = False
    ) -> TextItem:
        """Builds an item scoring every token of `text`."""
        tokens = self.adapter.tokenize(text, add_special_tokens=False)
        ids, _ = self._with_bos([t.id for t in tokens], add_bos_token)
        if not ids:
            raise AlignmentError(f"`{text}` has no tokens.", item_id=item_id)
        return TextItem(
            item_id=item_id,
            words=[text],
            origin=[item_id],
            sequences=[ids],
            word_spans=[(0, len(ids))],
        )

    def compute_stats(self, batch: Batch) -> List[List[Optional[float]]]:
        """
        Primary computational method: one forward pass over the batch,
        returning for every item the natural-log probability of each token
        given its left context. The first token of a sequence has no
        context and gets ``None``.
        """
        rows = [item.sequences[0] for item in batch.items]
        logprob_distribution = self.distribution(rows)

        scores = []
        for i, ids in enumerate(rows):
            length = len(ids)
            score: List[Optional[float]] = [None]
            if length > 1:
                # the distribution at position j predicts the token at j + 1
                query_ids = torch.tensor(ids[1:], dtype=torch.long)
                score.extend(
                    logprob_distribution[i, torch.arange(length - 1), query_ids].tolist()
                )
            scores.append(score)
        return scores

    def next_word_distribution(
        self, queries: Sequence[str], add_bos_token: bool = False
    ) -> torch.Tensor:
        """
        Returns the log probability distribution of the token following
        each query.
        """
        rows = []
        for query in queries:
            ids, _ = self._with_bos(
                self.tokenizer(query, add_special_tokens=False)["input_ids"],
                add_bos_token,
            )
            if not ids:
                raise ValueError("An empty context needs add_bos_token=True.")
            rows.append(ids)

        logprobs = self.distribution(rows)
        last = [len(r) - 1 for r in rows]
        return logprobs[torch.arange(len(rows)), last]


class MaskedLMScorer(LMScorer):
    """
    Class for Masked Langauge Models such as BERT, RoBERTa, etc.

    :param model: should be path to a model (.pt or .bin file) stored locally,
        or name of a pretrained model stored on the Huggingface Model Hub, or
        a model (torch.nn.Module) that have the same signature as a
        Huggingface model obtained from `AutoModelForMaskedLM`. In the last
        case, a corresponding tokenizer must also be provided.
    :param device: device type that the model should be loaded on,
        options: `cpu or cuda:{0, 1, ...} or auto`
    :type device: str, optional
    :param tokenizer: if provided, use this tokenizer.
    """

    kind = ModelKind.MASKED

    def __init__(
        self,
        model: Union[str, torch.nn.Module],
        device: Optional[str] = "cpu",
        tokenizer=None,
        **kwargs,
    ) -> None:
        super(MaskedLMScorer, self).__init__(model, device=device, tokenizer=tokenizer)

        self.model = self._load_model(AutoModelForMaskedLM, model, **kwargs)

        if self.device != "auto":
            self.model.to(self.device)
        self.model.eval()

        if self.tokenizer.mask_token_id is None:
            raise BackendUnavailable(f"`{self.model_name}` has no mask token.")

        self.cls_token_id = self.tokenizer.cls_token_id
        self.sep_token_id = self.tokenizer.sep_token_id
        self.mask_token_id = self.tokenizer.mask_token_id
        self.pad_token_id = self.tokenizer.pad_token_id

    def prepare_masked_sentence(
        self, item_id: Any, sentence: str, placeholder: Optional[str] = None
    ) -> TextItem:
        """
        Builds an item for a sentence containing one or more mask
        placeholders; all of them are predicted in the same forward pass.

        :param placeholder: string marking a masked slot in `sentence`,
            defaults to the tokenizer's own mask token.
        """
        text = sentence
        if placeholder is not None and placeholder != self.tokenizer.mask_token:
            text = sentence.replace(placeholder, self.tokenizer.mask_token)

        ids = self.tokenizer(text)["input_ids"]
        positions = [i for i, t in enumerate(ids) if t == self.mask_token_id]
        if not positions:
            raise MaskCountMismatch(
                f"`{sentence}` does not contain the mask placeholder "
                f"`{placeholder or self.tokenizer.mask_token}`.",
                item_id=item_id,
            )

        return TextItem(
            item_id=item_id,
            words=[sentence],
            origin=[item_id],
            sequences=[ids],
            targets=[(0, p, self.mask_token_id) for p in positions],
        )

    def prepare_target(
        self,
        item_id: Any,
        left: str,
        target: str,
        right: str,
        separator: str = " ",
        method: str = "pll",
    ) -> TextItem:
        """
        Builds the masked variants needed to score `target` between its
        left and right contexts.

        With ``method="pll"`` there is one variant per target token, where
        only that token is masked and the other target tokens keep their
        true values; the word score is the sum of the token scores, a
        pseudo-log-likelihood. With ``method="joint"`` all target tokens
        are masked in a single variant.
        """
        if method not in ("pll", "joint"):
            raise ValueError(f"Unknown method `{method}`, use either `pll` or `joint`.")
        if not target:
            raise AlignmentError("The target word is empty.", item_id=item_id)

        aligned = self.adapter.align(
            [left, target, right], separator, add_special_tokens=True, item_id=item_id
        )
        ids = aligned.ids
        word = aligned.words[1]
        positions = list(range(word.token_start, word.token_end))

        if method == "joint":
            row = list(ids)
            for p in positions:
                row[p] = self.mask_token_id
            sequences = [row]
            targets = [(0, p, ids[p]) for p in positions]
            expected = len(positions)
        else:
            sequences = []
            targets = []
            for k, p in enumerate(positions):
                row = list(ids)
                row[p] = self.mask_token_id
                sequences.append(row)
                targets.append((k, p, ids[p]))
            expected = 1

        for row in sequences:
            n_masks = sum(1 for t in row if t == self.mask_token_id)
            if n_masks != expected:
                raise MaskCountMismatch(
                    f"Masked input for `{target}` holds {n_masks} mask tokens, "
                    f"expected {expected}: `{aligned.text}`.",
                    item_id=item_id,
                )

        return TextItem(
            item_id=item_id,
            words=[target],
            origin=[item_id],
            sequences=sequences,
            targets=targets,
            aligned=aligned,
        )

    def _rows(self, batch: Batch) -> Tuple[List[List[int]], List[int]]:
        rows = []
        offsets = []
        for item in batch.items:
            offsets.append(len(rows))
            rows.extend(item.sequences)
        return rows, offsets

    def mask_distributions(self, batch: Batch) -> List[torch.Tensor]:
        """
        For every item of the batch, the full log-probability distributions
        at its masked slots, as a tensor of shape `(masks, vocab)`.
        """
        rows, offsets = self._rows(batch)
        logprob_distribution = self.distribution(rows)
        outputs = []
        for item, offset in zip(batch.items, offsets):
            row_idx = torch.tensor([offset + r for r, _, _ in item.targets])
            pos_idx = torch.tensor([p for _, p, _ in item.targets])
            outputs.append(logprob_distribution[row_idx, pos_idx])
        return outputs

    def compute_stats(self, batch: Batch) -> List[List[Optional[float]]]:
        """
        Natural-log probabilities of the true token at every masked slot of
        every item in the batch.
        """
        scores = []
        for item, distributions in zip(batch.items, self.mask_distributions(batch)):
            token_ids = torch.tensor([t for _, _, t in item.targets])
            scores.append(
                distributions[torch.arange(len(item.targets)), token_ids].tolist()
            )
        return scores
