"""Process-wide defaults for scoring calls, overridable from the environment."""

import dataclasses
import math
import os

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Config:
    """
    Default values used by the functions in :mod:`pangoling.api` whenever
    the corresponding keyword argument is left as ``None``.

    :param device: device the models are loaded on, `cpu or cuda:{0, 1, ...} or auto`
    :param batch_size: maximum number of items scored in one forward pass.
    :param max_tokens: maximum number of tokens in one forward pass
        (``None`` disables the token budget).
    :param log_base: base in which log-probabilities are reported.
    :param separator: string placed between words before tokenizing.
    :param strict: if `True`, per-item errors abort the whole call.
    :param progress: show a progress bar over batches.
    :param pll_method: ``"pll"`` or ``"joint"`` scoring of multi-token masked targets.
    """

    device: str = "cpu"
    batch_size: int = 1
    max_tokens: Optional[int] = None
    log_base: float = math.e
    separator: str = " "
    strict: bool = False
    progress: bool = False
    pll_method: str = "pll"


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def load_config() -> Config:
    """
    Builds a :class:`Config` from environment variables.

    - PANGOLING_DEVICE (default: cpu)
    - PANGOLING_BATCH_SIZE (default: 1)
    - PANGOLING_MAX_TOKENS (default: unbounded)
    - PANGOLING_LOG_BASE (default: e)
    - PANGOLING_STRICT (default: 0)
    - PANGOLING_PROGRESS (default: 0)
    """
    return Config(
        device=os.getenv("PANGOLING_DEVICE", "cpu"),
        batch_size=_env_int("PANGOLING_BATCH_SIZE", 1),
        max_tokens=_env_int("PANGOLING_MAX_TOKENS", None),
        log_base=_env_float("PANGOLING_LOG_BASE", math.e),
        strict=_env_bool("PANGOLING_STRICT", False),
        progress=_env_bool("PANGOLING_PROGRESS", False),
    )


_config = load_config()


def get_config() -> Config:
    return _config


def set_config(**changes) -> Config:
    """Replaces the given fields of the process-wide configuration."""
    global _config
    _config = dataclasses.replace(_config, **changes)
    return _config


def reset_config() -> Config:
    global _config
    _config = load_config()
    return _config
