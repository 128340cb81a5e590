"""
Exception hierarchy for the download test.
"""

from typing import Optional


class DownloadTestError(Exception):
    """Base class for all download test errors."""


class InvalidConfiguration(DownloadTestError, ValueError):
    """Raised by configure() before any stream is started."""


class InvalidPhaseTransition(DownloadTestError, RuntimeError):
    """Raised when the phase state machine is driven out of order."""


class FetchFailure(DownloadTestError):
    """A single request attempt did not complete."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientFetchFailure(FetchFailure):
    """Network or HTTP error; the stream retries after a fixed delay."""


class MalformedChunk(TransientFetchFailure):
    """The transport delivered a chunk the byte counter refused."""


class CancelledFetchFailure(FetchFailure):
    """The attempt was aborted because the test is stopping."""
