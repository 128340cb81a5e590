"""
Async pool of download streams, each keeping one request attempt in flight.
"""

import asyncio
import time
import logging
from typing import Dict, Any, List, Optional

from common.byte_counter import ProgressAggregator
from common.errors import MalformedChunk, TransientFetchFailure, CancelledFetchFailure
from common.log_sink import LogSink, default_log_sink
from common.phase_manager import wait_for_stop
from common.records import (
    AttemptRecord,
    OUTCOME_SUCCESS,
    OUTCOME_FAILED,
    OUTCOME_MALFORMED,
    OUTCOME_CANCELLED,
)
from common.run_config import TestConfig
from configuration import STOP_TIMEOUT_SECONDS
from systems.base import HttpFetcher, build_request_url

logger = logging.getLogger(__name__)


class StreamState:
    """Mutable state of one stream."""

    def __init__(self, index: int):
        self.index = index
        self.running = True
        self.current_attempt: Optional[asyncio.Task] = None
        self.attempts = 0
        self.failures = 0
        self.bytes_received = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "running": self.running,
            "in_flight": self.current_attempt is not None,
            "attempts": self.attempts,
            "failures": self.failures,
            "bytes_received": self.bytes_received,
        }

    def __repr__(self) -> str:
        return f"StreamState(index={self.index}, running={self.running}, attempts={self.attempts})"


class StreamWorker:
    """Runs consecutive request attempts for one stream until told to stop."""

    def __init__(
        self,
        state: StreamState,
        fetcher: HttpFetcher,
        aggregator: ProgressAggregator,
        config: TestConfig,
        stop_event: asyncio.Event,
        emit: LogSink,
        attempt_records: List[AttemptRecord],
    ):
        self.state = state
        self.fetcher = fetcher
        self.aggregator = aggregator
        self.config = config
        self.stop_event = stop_event
        self.emit = emit
        self.attempt_records = attempt_records

    def _should_run(self) -> bool:
        return self.state.running and not self.stop_event.is_set()

    async def run(self) -> None:
        index = self.state.index
        self.emit(f"Stream {index} started.")
        try:
            while self._should_run():
                succeeded = await self._attempt()
                if succeeded is None:
                    break
                if not succeeded and self._should_run():
                    await self._retry_delay()
        finally:
            self.state.running = False
            self.emit(f"Stream {index} coroutine ended.")

    async def _attempt(self) -> Optional[bool]:
        """Perform one request attempt.

        Returns:
            True on success, False on a recoverable failure, None when the
            attempt was cancelled because the test is stopping
        """
        index = self.state.index
        url = build_request_url(self.config.server_url, self.config.chunk_size)

        # Registered before the fetch so in-flight bytes count toward the live total
        counter = self.aggregator.new_counter()
        self.state.attempts += 1
        start_ts = time.time()
        start_mono = time.monotonic()

        attempt = asyncio.create_task(
            self.fetcher.fetch(url, lambda data: counter.on_chunk(len(data))),
            name=f"stream-{index}-attempt-{self.state.attempts}",
        )
        self.state.current_attempt = attempt

        outcome = OUTCOME_SUCCESS
        http_status = None
        error = ""
        try:
            result = await attempt
            http_status = result.status
        except asyncio.CancelledError:
            outcome = OUTCOME_CANCELLED
            error = str(CancelledFetchFailure("aborted by test stop"))
            if self._should_run():
                # Not a test stop: the worker itself is being cancelled
                raise
        except MalformedChunk as e:
            outcome = OUTCOME_MALFORMED
            http_status = e.status
            error = str(e)
        except TransientFetchFailure as e:
            outcome = OUTCOME_FAILED
            http_status = e.status
            error = str(e)
        except Exception as e:
            logger.error(f"Stream {index} unexpected fetch error: {e}", exc_info=True)
            outcome = OUTCOME_FAILED
            error = f"{type(e).__name__}: {e}"
        finally:
            counter.close()
            self.state.current_attempt = None
            self.state.bytes_received += counter.total()
            if outcome in (OUTCOME_FAILED, OUTCOME_MALFORMED):
                self.state.failures += 1
            self.attempt_records.append(
                AttemptRecord(
                    stream_index=index,
                    url=url,
                    bytes_received=counter.total(),
                    outcome=outcome,
                    http_status=http_status,
                    error=error,
                    start_ts=start_ts,
                    end_ts=time.time(),
                )
            )

        req_time = time.monotonic() - start_mono

        if outcome == OUTCOME_CANCELLED or not self._should_run():
            self.emit(f"Stream {index} stopped (test ended).")
            return None

        if outcome == OUTCOME_SUCCESS:
            self.emit(
                f"Stream {index} request completed in {req_time:.2f}s, "
                f"received {counter.total()} bytes (this request)."
            )
            return True

        self.emit(f"Stream {index} error: {error} (reqTime={req_time:.2f}s)")
        return False

    async def _retry_delay(self) -> None:
        """Fixed back-off after a failure; returns early if the test stops."""
        await wait_for_stop(self.stop_event, self.config.retry_delay)


class StreamPool:
    """Owns the stream workers of one run and their coordinated shutdown."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        aggregator: ProgressAggregator,
        config: TestConfig,
        emit: LogSink = None,
        attempt_records: List[AttemptRecord] = None,
        stop_timeout: float = None,
    ):
        """Initialize the stream pool.

        Args:
            fetcher: Streaming fetch shared by all streams
            aggregator: Collection receiving every attempt's byte counter
            config: Validated run configuration
            emit: Log sink for event lines (default: events logger)
            attempt_records: List receiving one record per attempt
            stop_timeout: Max seconds to wait for streams after cancelling them
        """
        self.fetcher = fetcher
        self.aggregator = aggregator
        self.config = config
        self.emit = emit or default_log_sink()
        self.attempt_records = attempt_records if attempt_records is not None else []
        self.stop_timeout = stop_timeout or STOP_TIMEOUT_SECONDS

        # Worker management
        self.states: Dict[int, StreamState] = {}
        self.worker_tasks: List[asyncio.Task] = []
        self.stop_event = asyncio.Event()
        self.is_running = False
        self._stop_lock = asyncio.Lock()

        logger.debug(f"Initialized StreamPool for {config.stream_count} streams")

    async def start_streams(self, count: int) -> None:
        """Start ``count`` streams concurrently."""
        if self.is_running:
            raise RuntimeError("Stream pool already started")

        self.stop_event.clear()
        self.is_running = True

        # Initialize stream states BEFORE starting workers
        for i in range(count):
            self.states[i] = StreamState(i)

        for i in range(count):
            worker = StreamWorker(
                state=self.states[i],
                fetcher=self.fetcher,
                aggregator=self.aggregator,
                config=self.config,
                stop_event=self.stop_event,
                emit=self.emit,
                attempt_records=self.attempt_records,
            )
            task = asyncio.create_task(worker.run(), name=f"stream-{i}")
            self.worker_tasks.append(task)

        logger.info(f"Started {count} streams")

    def in_flight_count(self) -> int:
        """Number of streams currently waiting on a fetch."""
        return sum(1 for s in self.states.values() if s.current_attempt is not None)

    @property
    def active_count(self) -> int:
        return sum(1 for t in self.worker_tasks if not t.done())

    async def stop_streams(self) -> None:
        """Stop every stream and wait until all stream loops have exited.

        Safe to call repeatedly; calls after the first (or before start) do
        nothing.
        """
        async with self._stop_lock:
            if not self.is_running:
                return

            self.emit("Stopping all streams...")
            for state in self.states.values():
                state.running = False
            self.stop_event.set()

            self.emit("Aborting all ongoing requests...")
            aborted = 0
            for state in self.states.values():
                attempt = state.current_attempt
                if attempt is not None and not attempt.done():
                    attempt.cancel()
                    aborted += 1
            logger.debug(f"Cancelled {aborted} in-flight requests")

            if self.worker_tasks:
                done, pending = await asyncio.wait(self.worker_tasks, timeout=self.stop_timeout)
                if pending:
                    logger.warning(
                        f"{len(pending)} streams did not exit within {self.stop_timeout}s, cancelling"
                    )
                    for task in pending:
                        task.cancel()
                results = await asyncio.gather(*self.worker_tasks, return_exceptions=True)
                for task, result in zip(self.worker_tasks, results):
                    if isinstance(result, Exception):
                        logger.error(f"{task.get_name()} exited with error: {result}")

            self.is_running = False
            self.emit("All streams stopped.")

    def get_stream_stats(self) -> List[Dict[str, Any]]:
        return [state.to_dict() for state in self.states.values()]
