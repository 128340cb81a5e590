"""
Measurement window: samples the byte total periodically until the deadline.
"""

import asyncio
import time
import logging
from typing import Callable, List, Optional

from common.byte_counter import ProgressAggregator
from common.log_sink import LogSink
from common.phase_manager import wait_for_stop
from common.records import ProgressReport

logger = logging.getLogger(__name__)


class MeasurementOutcome:
    """What the measurement loop observed."""

    def __init__(self, elapsed_seconds: float, stopped_early: bool, samples: List[ProgressReport]):
        self.elapsed_seconds = elapsed_seconds
        self.stopped_early = stopped_early
        self.samples = samples


class MeasurementWindow:
    """Periodic progress sampling over the measurement window."""

    def __init__(
        self,
        aggregator: ProgressAggregator,
        baseline: int,
        measure_time: float,
        sample_interval: float,
        stop_event: asyncio.Event,
        emit: LogSink,
        on_progress: Optional[Callable[[ProgressReport], None]] = None,
    ):
        self.aggregator = aggregator
        self.baseline = baseline
        self.measure_time = measure_time
        self.sample_interval = sample_interval
        self.stop_event = stop_event
        self.emit = emit
        self.on_progress = on_progress

        logger.debug(
            f"Initialized measurement window: {measure_time}s, sampling every {sample_interval}s"
        )

    def sample(self, elapsed: float) -> ProgressReport:
        """Snapshot the bytes received since the baseline."""
        return ProgressReport(
            elapsed_measurement_seconds=elapsed,
            bytes_since_baseline=self.aggregator.total() - self.baseline,
        )

    async def execute(self) -> MeasurementOutcome:
        """Run the sampling loop until the deadline or a stop request."""
        self.emit(f"Measuring speed for next {self.measure_time} seconds...")

        samples: List[ProgressReport] = []
        stopped_early = False
        start_time = time.monotonic()
        end_time = start_time + self.measure_time

        while True:
            remaining = end_time - time.monotonic()
            if remaining <= 0:
                break

            # Final interval may be shorter than the sampling period
            stopped = await wait_for_stop(self.stop_event, min(self.sample_interval, remaining))

            report = self.sample(time.monotonic() - start_time)
            samples.append(report)
            self.emit(
                f"[Progress Update] Elapsed: {report.elapsed_measurement_seconds:.2f}s, "
                f"Downloaded: {report.bytes_since_baseline} bytes during measurement"
            )
            if self.on_progress:
                try:
                    self.on_progress(report)
                except Exception as e:
                    logger.error(f"Progress callback failed: {e}", exc_info=True)

            if stopped:
                stopped_early = True
                break

        elapsed = time.monotonic() - start_time
        return MeasurementOutcome(elapsed, stopped_early, samples)
