import threading
import time

import pytest

import pangoling
from pangoling import BackendUnavailable, ModelKind, ModelRegistry
from pangoling.scorer import CausalLMScorer


class CountingLoader:
    def __init__(self, scorer):
        self.scorer = scorer
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, model_id, kind, **kwargs):
        with self._lock:
            self.calls.append((model_id, kind, kwargs))
        time.sleep(0.05)
        return self.scorer


def test_loads_once_and_caches(causal_scorer):
    loader = CountingLoader(causal_scorer)
    registry = ModelRegistry(loader=loader)
    assert not registry.is_loaded("tiny")

    first = registry.get_or_load("tiny", "causal", device="cpu")
    second = registry.get_or_load("tiny", ModelKind.CAUSAL)
    assert first is second is causal_scorer
    assert len(loader.calls) == 1
    assert loader.calls[0][2] == {"device": "cpu"}
    assert registry.is_loaded("tiny")
    assert registry.is_loaded("tiny", "causal")
    assert not registry.is_loaded("tiny", "masked")


def test_concurrent_first_use_loads_once(causal_scorer):
    loader = CountingLoader(causal_scorer)
    registry = ModelRegistry(loader=loader)
    results = []

    def worker():
        results.append(registry.get_or_load("tiny", "causal"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(loader.calls) == 1
    assert len(results) == 8
    assert all(r is causal_scorer for r in results)


def test_evict_and_reset(causal_scorer, masked_scorer):
    registry = ModelRegistry(loader=CountingLoader(causal_scorer))
    registry.preload("tiny", "causal")
    registry.register("tiny", masked_scorer)
    assert len(registry) == 2

    assert registry.evict("tiny", "masked")
    assert registry.is_loaded("tiny", "causal")
    assert not registry.evict("tiny", "masked")

    registry.reset()
    assert len(registry) == 0


class BlockingLoader(CountingLoader):
    def __init__(self, scorer):
        super().__init__(scorer)
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, model_id, kind, **kwargs):
        with self._lock:
            self.calls.append((model_id, kind, kwargs))
        self.entered.set()
        self.release.wait(5)
        return self.scorer


@pytest.mark.parametrize("clear", ["evict", "reset"])
def test_clearing_during_a_load_does_not_load_twice(causal_scorer, clear):
    loader = BlockingLoader(causal_scorer)
    registry = ModelRegistry(loader=loader)
    results = []

    def worker():
        results.append(registry.get_or_load("tiny", "causal"))

    first = threading.Thread(target=worker)
    first.start()
    assert loader.entered.wait(5)

    if clear == "evict":
        registry.evict("tiny")
    else:
        registry.reset()
    second = threading.Thread(target=worker)
    second.start()
    time.sleep(0.05)
    loader.release.set()
    first.join()
    second.join()

    assert len(loader.calls) == 1
    assert results == [causal_scorer, causal_scorer]


def test_unknown_kind():
    with pytest.raises(ValueError):
        ModelRegistry().get_or_load("tiny", "seq2seq")


def test_api_uses_the_process_registry(causal_scorer):
    pangoling.registry.register("tiny-gpt", causal_scorer)
    assert pangoling.is_loaded("tiny-gpt", "causal")
    scores = pangoling.causal_words_pred(["the", "apple"], model="tiny-gpt")
    assert scores[0] is None and isinstance(scores[1], float)

    assert pangoling.ntokens(["the pear", "apple"], model="tiny-gpt") == [5, 1]
    assert pangoling.tokenize("the pear", model="tiny-gpt") == [["the", "p", "##e", "##a", "##r"]]
    assert pangoling.transformer_vocab(model="tiny-gpt")[:3] == ["[PAD]", "[UNK]", "[CLS]"]
    assert pangoling.model_config(model="tiny-gpt")["model_type"] == "gpt2"

    assert pangoling.evict_model("tiny-gpt")
    assert not pangoling.is_loaded("tiny-gpt")


def test_preload_model_is_idempotent(causal_scorer, monkeypatch):
    loader = CountingLoader(causal_scorer)
    monkeypatch.setattr(pangoling.registry, "loader", loader)
    pangoling.preload_model("tiny", "causal")
    pangoling.preload_model("tiny", "causal")
    assert len(loader.calls) == 1


def test_missing_tokenizer_is_backend_unavailable(monkeypatch):
    def fail(*args, **kwargs):
        raise OSError("not found")

    monkeypatch.setattr("pangoling.scorer.AutoTokenizer.from_pretrained", fail)
    with pytest.raises(BackendUnavailable):
        CausalLMScorer("no-such-model")


def test_module_without_tokenizer():
    with pytest.raises(ValueError):
        CausalLMScorer(object())
