"""
Exceptions raised while aligning, batching and scoring text.

- BackendUnavailable  : model or tokenizer artifacts could not be loaded
- AlignmentError      : a token could not be assigned to exactly one word
- ItemTooLarge        : a single item can never fit in one batch
- MaskCountMismatch   : mask placeholders do not match the target tokens
- GroupLengthMismatch : parallel inputs of unequal length
"""

from typing import Any, Optional


class PangolingError(Exception):
    """Base class of every error raised by pangoling."""

    pass


class BackendUnavailable(PangolingError, OSError):
    """The inference backend or the model artifacts cannot be loaded."""

    pass


class AlignmentError(PangolingError, ValueError):
    """A token straddles a word boundary, or a word realizes no token."""

    def __init__(self, message: str, item_id: Optional[Any] = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class ItemTooLarge(PangolingError, ValueError):
    """An item's token count exceeds ``max_tokens`` on its own."""

    def __init__(self, message: str, item_id: Optional[Any] = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class MaskCountMismatch(PangolingError, ValueError):
    """The masked input holds a different number of masks than expected."""

    def __init__(self, message: str, item_id: Optional[Any] = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class GroupLengthMismatch(PangolingError, ValueError):
    """Parallel input sequences do not have the same length."""

    pass
