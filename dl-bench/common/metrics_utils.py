"""
Shared utilities for download test metrics: rate arithmetic, sample and attempt summaries.
"""

import pandas as pd
import logging
from typing import Iterable, List

from common.records import AttemptRecord, ProgressReport, OUTCOME_SUCCESS
from configuration import (
    BITS_PER_BYTE,
    BITS_PER_MEGABIT,
    BITS_PER_MEBIBIT,
)

logger = logging.getLogger(__name__)

ATTEMPT_COLUMNS = [
    'stream_index', 'url', 'bytes', 'outcome', 'http_status',
    'error', 'start_ts', 'end_ts', 'duration_seconds',
]


def calculate_speed(
    measured_bytes: int,
    elapsed_seconds: float,
    overhead_factor: float,
    use_binary_units: bool = False,
) -> float:
    """
    Calculate the download speed in megabits (or mebibits) per second.

    speed = measured_bytes * 8 * overhead_factor / (elapsed_seconds * divisor)

    where divisor is 1_048_576 for binary units and 1_000_000 otherwise.

    Args:
        measured_bytes: Bytes received during the measurement window
        elapsed_seconds: Length of the measurement window
        overhead_factor: Compensation for protocol overhead
        use_binary_units: Report Mebibits/s instead of Mbps

    Returns:
        Speed, or 0.0 when the window is empty
    """
    if elapsed_seconds <= 0:
        return 0.0
    divisor = BITS_PER_MEBIBIT if use_binary_units else BITS_PER_MEGABIT
    return (measured_bytes * BITS_PER_BYTE * overhead_factor) / (elapsed_seconds * divisor)


def attempts_to_frame(records: Iterable[AttemptRecord]) -> pd.DataFrame:
    """Convert attempt records to a DataFrame (one row per attempt)."""
    rows = [record.to_dict() for record in records]
    if not rows:
        return pd.DataFrame(columns=ATTEMPT_COLUMNS)
    return pd.DataFrame(rows, columns=ATTEMPT_COLUMNS)


def summarize_attempts(records: Iterable[AttemptRecord]) -> dict:
    """
    Summarize request attempts across all streams.

    Returns:
        Dictionary with total/successful attempt counts, counts per outcome,
        bytes per stream and the mean/p50/p95 duration of successful requests
    """
    data = attempts_to_frame(records)

    if len(data) == 0:
        return {
            'total_attempts': 0,
            'successful_attempts': 0,
            'outcomes': {},
            'bytes_per_stream': {},
            'avg_request_seconds': 0.0,
            'p50_request_seconds': 0.0,
            'p95_request_seconds': 0.0,
        }

    successful = data[data['outcome'] == OUTCOME_SUCCESS]
    durations = successful['duration_seconds']
    bytes_per_stream = data.groupby('stream_index')['bytes'].sum()

    return {
        'total_attempts': int(len(data)),
        'successful_attempts': int(len(successful)),
        'outcomes': {str(k): int(v) for k, v in data['outcome'].value_counts().items()},
        'bytes_per_stream': {int(k): int(v) for k, v in bytes_per_stream.items()},
        'avg_request_seconds': float(durations.mean()) if len(durations) else 0.0,
        'p50_request_seconds': float(durations.quantile(0.5)) if len(durations) else 0.0,
        'p95_request_seconds': float(durations.quantile(0.95)) if len(durations) else 0.0,
    }


def samples_to_frame(
    samples: List[ProgressReport],
    overhead_factor: float = 1.0,
    use_binary_units: bool = False,
) -> pd.DataFrame:
    """
    Turn cumulative progress samples into per-interval throughput.

    Each row holds the cumulative sample plus the bytes and speed of the
    interval since the previous sample (the first interval starts at the
    baseline, i.e. elapsed 0 and 0 bytes).
    """
    columns = ['elapsed_seconds', 'bytes_since_baseline', 'interval_seconds',
               'interval_bytes', 'interval_speed']
    if not samples:
        return pd.DataFrame(columns=columns)

    data = pd.DataFrame({
        'elapsed_seconds': [s.elapsed_measurement_seconds for s in samples],
        'bytes_since_baseline': [s.bytes_since_baseline for s in samples],
    })
    data['interval_seconds'] = data['elapsed_seconds'].diff().fillna(data['elapsed_seconds'])
    data['interval_bytes'] = (
        data['bytes_since_baseline'].diff().fillna(data['bytes_since_baseline']).astype('int64')
    )
    data['interval_speed'] = [
        calculate_speed(b, t, overhead_factor, use_binary_units)
        for b, t in zip(data['interval_bytes'], data['interval_seconds'])
    ]
    return data[columns]


def streams_to_frame(streams: List[dict]) -> pd.DataFrame:
    """Per-stream attempts, failures and bytes, plus each stream's share of the bytes."""
    columns = ['index', 'attempts', 'failures', 'bytes_received', 'byte_share']
    if not streams:
        return pd.DataFrame(columns=columns)

    data = pd.DataFrame(streams)
    total = data['bytes_received'].sum()
    data['byte_share'] = data['bytes_received'] / total if total else 0.0
    return data[columns].sort_values('index').reset_index(drop=True)
