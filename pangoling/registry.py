"""Process-wide cache of loaded scorers, keyed by model identifier and kind."""

import threading

from typing import Callable, Dict, Optional, Tuple, Union

from transformers.utils import logging

from .scorer import CausalLMScorer, LMScorer, MaskedLMScorer, ModelKind

logger = logging.get_logger(__name__)

Key = Tuple[str, ModelKind]


def load_scorer(model_id: str, kind: ModelKind, device: str = "cpu", **kwargs) -> LMScorer:
    if kind == ModelKind.CAUSAL:
        return CausalLMScorer(model_id, device=device, **kwargs)
    return MaskedLMScorer(model_id, device=device, **kwargs)


class ModelRegistry:
    """
    Keeps at most one scorer per ``(model_id, kind)``. The first request for
    a key loads the model while holding a lock specific to that key, so
    concurrent first uses load it once; later requests read the cache
    without locking.

    :param loader: callable ``(model_id, kind, **kwargs) -> LMScorer`` used
        to load missing entries.
    """

    def __init__(self, loader: Optional[Callable[..., LMScorer]] = None) -> None:
        self.loader = loader or load_scorer
        self._models: Dict[Key, LMScorer] = {}
        # kept across evict/reset so a load in progress still excludes new ones
        self._locks: Dict[Key, threading.Lock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def _key(model_id: str, kind: Union[str, ModelKind]) -> Key:
        return (model_id, ModelKind.parse(kind))

    def get_or_load(
        self, model_id: str, kind: Union[str, ModelKind] = ModelKind.CAUSAL, **kwargs
    ) -> LMScorer:
        """
        Returns the cached scorer for `model_id`, loading it first if needed.
        Keyword arguments (e.g. `device`) only apply to the first load.
        """
        key = self._key(model_id, kind)
        scorer = self._models.get(key)
        if scorer is not None:
            return scorer

        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            scorer = self._models.get(key)
            if scorer is None:
                logger.info(f"Loading {key[1].value} model `{model_id}`.")
                scorer = self.loader(model_id, key[1], **kwargs)
                self._models[key] = scorer
        return scorer

    def preload(
        self, model_id: str, kind: Union[str, ModelKind] = ModelKind.CAUSAL, **kwargs
    ) -> None:
        self.get_or_load(model_id, kind, **kwargs)

    def register(self, model_id: str, scorer: LMScorer) -> None:
        """Adds an already constructed scorer under `model_id`."""
        with self._guard:
            self._models[(model_id, scorer.kind)] = scorer

    def is_loaded(self, model_id: str, kind: Union[str, ModelKind, None] = None) -> bool:
        if kind is None:
            return any(k[0] == model_id for k in self._models)
        return self._key(model_id, kind) in self._models

    def evict(self, model_id: str, kind: Union[str, ModelKind, None] = None) -> bool:
        """Drops the cached scorer(s) for `model_id`; returns whether any was cached."""
        with self._guard:
            keys = [
                k
                for k in self._models
                if k[0] == model_id and (kind is None or k[1] == ModelKind.parse(kind))
            ]
            for k in keys:
                del self._models[k]
        if keys:
            logger.info(f"Evicted `{model_id}` from the model cache.")
        return bool(keys)

    def reset(self) -> None:
        with self._guard:
            self._models.clear()

    def __len__(self) -> int:
        return len(self._models)


registry = ModelRegistry()
