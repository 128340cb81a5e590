"""
Test orchestrator: drives the streams through the grace and measurement phases
and computes the final download speed.
"""

import asyncio
import time
import logging
from typing import Callable, List, Optional

from algorithms.steady_state import MeasurementWindow
from algorithms.warm_up import GracePeriod
from common.byte_counter import ProgressAggregator
from common.log_sink import LogSink, default_log_sink
from common.metrics_utils import calculate_speed, summarize_attempts
from common.phase_manager import PhaseManager, TestPhase
from common.records import AttemptRecord, ProgressReport, TestResult
from common.run_config import TestConfig
from common.worker_pool import StreamPool
from systems.base import HttpFetcher

logger = logging.getLogger(__name__)


class TestRun:
    """State of a single run; never reused once the run completes."""

    __test__ = False

    def __init__(self, config: TestConfig):
        self.config = config
        self.start_time: Optional[float] = None
        self.baseline_bytes: Optional[int] = None
        self.aggregator = ProgressAggregator()
        self.attempt_records: List[AttemptRecord] = []
        self.samples: List[ProgressReport] = []


class TestOrchestrator:
    """Runs one multi-stream download test at a time.

    Phases: IDLE -> GRACE -> MEASURING -> STOPPING -> COMPLETE. A stop
    requested during GRACE ends the run without a result; a stop requested
    during MEASURING ends it early and the speed uses the actual elapsed
    measurement time instead of the nominal one.
    """

    __test__ = False

    def __init__(
        self,
        fetcher: HttpFetcher,
        emit: LogSink = None,
        on_progress: Optional[Callable[[ProgressReport], None]] = None,
        on_result: Optional[Callable[[TestResult], None]] = None,
        stop_timeout: float = None,
    ):
        self.fetcher = fetcher
        self.emit = emit or default_log_sink()
        self.on_progress = on_progress
        self.on_result = on_result
        self.stop_timeout = stop_timeout

        self.phases = PhaseManager()
        self.run_state: Optional[TestRun] = None
        self.pool: Optional[StreamPool] = None
        self.result: Optional[TestResult] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._starting = False

    @property
    def phase(self) -> TestPhase:
        return self.phases.phase

    def live_total(self) -> int:
        """Bytes downloaded so far in the current run (including grace)."""
        if self.run_state is None:
            return 0
        return self.run_state.aggregator.total()

    def start(self, config: TestConfig) -> asyncio.Task:
        """Schedule a run on the running event loop and return its task."""
        if self._task is not None and not self._task.done():
            raise RuntimeError("A test is already running")
        if self.phases.phase is not TestPhase.IDLE:
            raise RuntimeError(f"Cannot start from phase {self.phases.phase.value}; call reset() first")
        if not isinstance(config, TestConfig):
            raise TypeError("start() expects a TestConfig; build one with configure()")

        # Created now so a stop issued before the task first runs is not lost
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._starting = True
        self._task = self._loop.create_task(self.run(config))
        return self._task

    def request_stop(self) -> None:
        """Ask the running test to end early.

        Idempotent, and a no-op when no test is in its grace or measurement
        phase. May be called from another thread.
        """
        if self._stop_event is None or not (self._starting or self.phases.is_running()):
            logger.debug("Stop requested with no running test, ignoring")
            return
        if self._stop_event.is_set():
            return

        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if current_loop is self._loop:
            self._stop_event.set()
        else:
            self._loop.call_soon_threadsafe(self._stop_event.set)
        logger.info(f"Stop requested during {self.phases.phase.value} phase")

    def reset(self) -> None:
        """Return a completed orchestrator to IDLE, discarding the finished run."""
        if self.phases.phase is TestPhase.IDLE:
            return
        if self.phases.phase is not TestPhase.COMPLETE:
            raise RuntimeError(f"Cannot reset while {self.phases.phase.value}")
        self.phases.reset()
        self.run_state = None
        self.pool = None
        self.result = None
        self._stop_event = None
        self._task = None
        self._starting = False

    async def run(self, config: TestConfig) -> Optional[TestResult]:
        """Execute a complete test.

        Returns:
            The final result, or None if the test was stopped during the grace period
        """
        if not isinstance(config, TestConfig):
            raise TypeError("run() expects a TestConfig; build one with configure()")
        if self.phases.phase is not TestPhase.IDLE:
            raise RuntimeError(f"Cannot start from phase {self.phases.phase.value}; call reset() first")

        if self._starting:
            # Keep the event made by start(); it may already be set
            self._starting = False
        else:
            self._loop = asyncio.get_running_loop()
            self._stop_event = asyncio.Event()
        run = TestRun(config)
        self.run_state = run

        self.emit("===== STARTING DOWNLOAD TEST =====")
        self.emit(f"Settings: {config.describe()}")
        for warning in config.warnings:
            self.emit(f"Warning: {warning}")

        run.start_time = time.monotonic()
        self.phases.transition(TestPhase.GRACE, run.start_time)

        self.pool = StreamPool(
            fetcher=self.fetcher,
            aggregator=run.aggregator,
            config=config,
            emit=self.emit,
            attempt_records=run.attempt_records,
            stop_timeout=self.stop_timeout,
        )

        try:
            self.emit(f"Starting {config.stream_count} parallel streams...")
            await self.pool.start_streams(config.stream_count)

            grace = GracePeriod(run.aggregator, config.grace_time, self._stop_event, self.emit)
            baseline = await grace.execute()
            if baseline is None:
                self.phases.transition(TestPhase.STOPPING)
                await self.pool.stop_streams()
                self.phases.transition(TestPhase.COMPLETE)
                return None

            run.baseline_bytes = baseline
            self.phases.transition(TestPhase.MEASURING)

            window = MeasurementWindow(
                aggregator=run.aggregator,
                baseline=baseline,
                measure_time=config.measure_time,
                sample_interval=config.sample_interval,
                stop_event=self._stop_event,
                emit=self.emit,
                on_progress=self.on_progress,
            )
            outcome = await window.execute()
            run.samples.extend(outcome.samples)

            if outcome.stopped_early:
                self.emit("Stop requested, stopping streams...")
            else:
                self.emit("Measurement period ended, stopping streams...")
            self.phases.transition(TestPhase.STOPPING)
            await self.pool.stop_streams()

        except BaseException:
            # Streams never outlive the run, even if it is cancelled
            if self.pool.is_running:
                await self.pool.stop_streams()
            if self.phases.phase in (TestPhase.GRACE, TestPhase.MEASURING):
                self.phases.transition(TestPhase.STOPPING)
            if self.phases.phase is TestPhase.STOPPING:
                self.phases.transition(TestPhase.COMPLETE)
            raise

        result = self._compute_result(run, outcome.elapsed_seconds, outcome.stopped_early)
        self.result = result
        self.phases.transition(TestPhase.COMPLETE)
        self._report(result)

        if self.on_result:
            try:
                self.on_result(result)
            except Exception as e:
                logger.error(f"Result callback failed: {e}", exc_info=True)

        return result

    def _compute_result(self, run: TestRun, actual_elapsed: float, stopped_early: bool) -> TestResult:
        """Derive the final speed once every stream has exited."""
        config = run.config
        final_total = run.aggregator.total()
        measured_bytes = max(final_total - run.baseline_bytes, 0)

        # Nominal window unless the run was cut short
        elapsed = actual_elapsed if stopped_early else config.measure_time

        warnings = list(config.warnings)
        if elapsed <= 0:
            warnings.append("measurement window was empty; speed reported as 0")
        if config.stream_count > 0 and measured_bytes == 0:
            warnings.append("no bytes were received during the measurement window")

        speed = calculate_speed(measured_bytes, elapsed, config.overhead_factor, config.use_binary_units)

        return TestResult(
            measured_bytes=measured_bytes,
            elapsed_seconds=elapsed,
            speed=speed,
            unit=config.unit,
            stopped_early=stopped_early,
            stream_count=config.stream_count,
            warnings=warnings,
            samples=list(run.samples),
            attempts=summarize_attempts(run.attempt_records),
            streams=self.pool.get_stream_stats(),
        )

    def _report(self, result: TestResult) -> None:
        self.emit("Download test finished")
        self.emit(
            f"Elapsed (measurement only): {result.elapsed_seconds:.2f}s, "
            f"Downloaded: {result.measured_bytes} bytes during measurement period"
        )
        for warning in result.warnings:
            self.emit(f"Warning: {warning}")
        self.emit(f"Download Speed: {result.describe()}")
        self.emit("===== TEST COMPLETE =====")
