"""
Basic data structures for the download test.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Attempt outcomes
OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_MALFORMED = "malformed"
OUTCOME_CANCELLED = "cancelled"


class AttemptRecord:
    """Data structure for one request attempt of a stream."""

    def __init__(self, stream_index, url, bytes_received, outcome,
                 http_status: Optional[int] = None, error: str = "",
                 start_ts: float = None, end_ts: float = None):
        self.stream_index = stream_index
        self.url = url
        self.bytes = bytes_received
        self.outcome = outcome
        self.http_status = http_status
        self.error = error
        self.start_ts = time.time() if start_ts is None else start_ts
        self.end_ts = time.time() if end_ts is None else end_ts

    @property
    def duration_seconds(self) -> float:
        return max(self.end_ts - self.start_ts, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stream_index': self.stream_index,
            'url': self.url,
            'bytes': self.bytes,
            'outcome': self.outcome,
            'http_status': self.http_status,
            'error': self.error,
            'start_ts': self.start_ts,
            'end_ts': self.end_ts,
            'duration_seconds': self.duration_seconds,
        }


@dataclass(frozen=True)
class ProgressReport:
    """Snapshot emitted on every sampling tick of the measurement window."""

    elapsed_measurement_seconds: float
    bytes_since_baseline: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'elapsed_measurement_seconds': round(self.elapsed_measurement_seconds, 3),
            'bytes_since_baseline': self.bytes_since_baseline,
        }


@dataclass
class TestResult:
    """Final result of a completed run."""

    __test__ = False

    measured_bytes: int
    elapsed_seconds: float
    speed: float
    unit: str
    stopped_early: bool = False
    stream_count: int = 0
    warnings: List[str] = field(default_factory=list)
    samples: List[ProgressReport] = field(default_factory=list)
    attempts: Dict[str, Any] = field(default_factory=dict)
    streams: List[Dict[str, Any]] = field(default_factory=list)

    def describe(self) -> str:
        return f"{self.speed:.2f} {self.unit}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'measured_bytes': self.measured_bytes,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'speed': round(self.speed, 2),
            'unit': self.unit,
            'stopped_early': self.stopped_early,
            'stream_count': self.stream_count,
            'warnings': list(self.warnings),
            'samples': [s.to_dict() for s in self.samples],
            'attempts': dict(self.attempts),
            'streams': [dict(s) for s in self.streams],
        }
