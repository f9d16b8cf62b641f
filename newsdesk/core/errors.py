"""Exception types shared across the pipeline."""

from __future__ import annotations


class NewsdeskError(Exception):
    """Base class for errors raised by newsdesk."""


class UnknownAdapterError(NewsdeskError):
    """A source references an adapter key that is not registered."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Unknown adapter key: {key}")
        self.key = key


class BrokerPublishError(NewsdeskError):
    """Publishing gave up after exhausting every retry."""

    def __init__(self, queue: str, attempts: int) -> None:
        super().__init__(f"Failed to publish message to queue {queue} after {attempts} attempts")
        self.queue = queue
        self.attempts = attempts


class FetchError(NewsdeskError):
    """An upstream page or feed could not be retrieved."""
