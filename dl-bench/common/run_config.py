"""
Validated run configuration for the download test.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from yarl import URL

from common.errors import InvalidConfiguration
from configuration import (
    SAMPLE_INTERVAL_SECONDS,
    RETRY_DELAY_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    BITS_PER_MEGABIT,
    BITS_PER_MEBIBIT,
    UNIT_MEGABITS,
    UNIT_MEBIBITS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestConfig:
    """Fully resolved parameters of one run."""

    __test__ = False

    server_url: str
    chunk_size: int
    test_duration: float
    grace_time: float
    stream_count: int
    overhead_factor: float
    use_binary_units: bool
    sample_interval: float = SAMPLE_INTERVAL_SECONDS
    retry_delay: float = RETRY_DELAY_SECONDS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    warnings: Tuple[str, ...] = ()

    @property
    def measure_time(self) -> float:
        """Nominal length of the measurement window."""
        return self.test_duration - self.grace_time

    @property
    def divisor(self) -> int:
        return BITS_PER_MEBIBIT if self.use_binary_units else BITS_PER_MEGABIT

    @property
    def unit(self) -> str:
        return UNIT_MEBIBITS if self.use_binary_units else UNIT_MEGABITS

    def describe(self) -> str:
        return (
            f"serverURL={self.server_url}, ckSize={self.chunk_size}, "
            f"testDuration={self.test_duration}s, graceTime={self.grace_time}s, "
            f"streamCount={self.stream_count}, overheadFactor={self.overhead_factor}, "
            f"useMebibits={self.use_binary_units}"
        )


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidConfiguration(message)


def configure(
    server_url: str,
    chunk_size: int,
    test_duration: float,
    grace_time: float,
    stream_count: int,
    overhead_factor: float,
    use_binary_units: bool = False,
    sample_interval: float = SAMPLE_INTERVAL_SECONDS,
    retry_delay: float = RETRY_DELAY_SECONDS,
    request_timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> TestConfig:
    """Validate parameters and build a TestConfig.

    A stream count of 0 is accepted as a degenerate run (zero speed) and only
    produces a warning.

    Raises:
        InvalidConfiguration: if any parameter is out of range
    """
    _require(bool(server_url), "server URL is required")
    parsed = URL(server_url)
    _require(
        parsed.scheme in ("http", "https") and bool(parsed.host),
        f"server URL must be an absolute http(s) URL: {server_url!r}",
    )
    _require(
        isinstance(chunk_size, int) and not isinstance(chunk_size, bool) and chunk_size > 0,
        f"chunk size must be a positive integer, got {chunk_size!r}",
    )
    _require(test_duration > 0, f"test duration must be positive, got {test_duration}")
    _require(grace_time >= 0, f"grace time must not be negative, got {grace_time}")
    _require(
        grace_time < test_duration,
        f"grace time ({grace_time}s) must be shorter than test duration ({test_duration}s)",
    )
    _require(
        isinstance(stream_count, int) and not isinstance(stream_count, bool) and stream_count >= 0,
        f"stream count must be a non-negative integer, got {stream_count!r}",
    )
    _require(overhead_factor > 0, f"overhead factor must be positive, got {overhead_factor}")
    _require(sample_interval > 0, f"sample interval must be positive, got {sample_interval}")
    _require(retry_delay >= 0, f"retry delay must not be negative, got {retry_delay}")
    _require(request_timeout > 0, f"request timeout must be positive, got {request_timeout}")

    warnings = []
    if stream_count == 0:
        warnings.append("stream count is 0: no data will be downloaded and the speed will be 0")

    for warning in warnings:
        logger.warning(f"Configuration warning: {warning}")

    return TestConfig(
        server_url=server_url,
        chunk_size=chunk_size,
        test_duration=float(test_duration),
        grace_time=float(grace_time),
        stream_count=stream_count,
        overhead_factor=float(overhead_factor),
        use_binary_units=bool(use_binary_units),
        sample_interval=float(sample_interval),
        retry_delay=float(retry_delay),
        request_timeout=float(request_timeout),
        warnings=tuple(warnings),
    )
