from __future__ import annotations


class FeedTubeError(Exception):
    """Base class for errors surfaced to callers."""


class Conflict(FeedTubeError):
    pass


class NotFound(FeedTubeError):
    pass


class ProviderError(FeedTubeError):
    """An external call failed; the message is the provider's error text."""


class ProviderTimeout(ProviderError):
    """An external call exceeded its time budget."""


class ListFailed(FeedTubeError):
    """The remote catalog could not be listed, even after retries."""


class BatchFailed(FeedTubeError):
    """A metadata batch exhausted its retries.

    Only used inside the priming engine; it is counted, never raised to callers.
    """

    def __init__(self, ids: list[str], reason: str) -> None:
        super().__init__(reason)
        self.ids = ids
