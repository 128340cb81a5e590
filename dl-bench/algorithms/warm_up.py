"""
Grace period: lets the streams ramp up before the measurement baseline is taken.
"""

import asyncio
import time
import logging
from typing import Optional

from common.byte_counter import ProgressAggregator
from common.log_sink import LogSink
from common.phase_manager import wait_for_stop

logger = logging.getLogger(__name__)


class GracePeriod:
    """Waits out the grace time, then captures the byte baseline."""

    def __init__(
        self,
        aggregator: ProgressAggregator,
        grace_time: float,
        stop_event: asyncio.Event,
        emit: LogSink,
    ):
        self.aggregator = aggregator
        self.grace_time = grace_time
        self.stop_event = stop_event
        self.emit = emit

        logger.debug(f"Initialized grace period: {grace_time}s")

    async def execute(self) -> Optional[int]:
        """Wait for the grace time.

        Returns:
            Total bytes at the end of the grace period, or None if a stop was
            requested before it ended
        """
        self.emit(f"Waiting for grace time ({self.grace_time}s)...")
        start_time = time.monotonic()

        if await wait_for_stop(self.stop_event, self.grace_time):
            logger.info(f"Stop requested {time.monotonic() - start_time:.2f}s into grace period")
            self.emit("Test aborted before grace time ended.")
            return None

        baseline = self.aggregator.total()
        self.emit(
            f"Grace time ended. Current totalBytes={baseline}. Starting measurement period..."
        )
        return baseline
