from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .summarizers import SummaryErrorKind


class FeedFetchError(Exception):
    """Raised when an RSS/Atom feed cannot be fetched or parsed after all retries."""


class StoreError(Exception):
    """Raised when the article/source store cannot be read or written."""


class DeliveryError(Exception):
    """Raised when a message cannot be sent to the delivery channel."""


class SummarizerError(Exception):
    """Raised by a summarizer capability; `kind` tells callers why."""

    def __init__(self, kind: "SummaryErrorKind", message: str) -> None:
        super().__init__(message)
        self.kind = kind


class ExtractionError(Exception):
    """Raised when no summary could be produced for an article."""

    def __init__(self, kind: "SummaryErrorKind", message: str) -> None:
        super().__init__(message)
        self.kind = kind
