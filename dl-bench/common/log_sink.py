"""
Log sink receiving the human-readable event lines of a run.
"""

import logging
from typing import Callable

LogSink = Callable[[str], None]

EVENTS_LOGGER_NAME = "dlbench.events"


def default_log_sink() -> LogSink:
    """Emit event lines through the events logger at INFO level."""
    return logging.getLogger(EVENTS_LOGGER_NAME).info


class CollectingLogSink:
    """Sink that keeps every line, optionally forwarding to another sink."""

    def __init__(self, forward: LogSink = None):
        self.lines = []
        self.forward = forward

    def __call__(self, line: str) -> None:
        self.lines.append(line)
        if self.forward:
            self.forward(line)

    def contains(self, fragment: str) -> bool:
        return any(fragment in line for line in self.lines)
