"""
Test suite for rate arithmetic and run summaries.
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.metrics_utils import (
    calculate_speed,
    summarize_attempts,
    samples_to_frame,
    attempts_to_frame,
    streams_to_frame,
)
from common.records import (
    AttemptRecord,
    ProgressReport,
    OUTCOME_SUCCESS,
    OUTCOME_FAILED,
    OUTCOME_CANCELLED,
)


def test_reference_speed_in_megabits():
    """125 MB over 13.5 s with 6% overhead compensation."""
    speed = calculate_speed(125_000_000, 15 - 1.5, 1.06, use_binary_units=False)

    expected = (125_000_000 * 8 * 1.06) / (13.5 * 1_000_000)
    assert abs(speed - expected) < 1e-9
    assert abs(speed - 78.52) < 0.01


def test_speed_in_mebibits():
    speed = calculate_speed(125_000_000, 13.5, 1.06, use_binary_units=True)

    assert abs(speed - (125_000_000 * 8 * 1.06) / (13.5 * 1_048_576)) < 1e-9
    assert speed < calculate_speed(125_000_000, 13.5, 1.06)


def test_empty_window_is_zero_speed():
    assert calculate_speed(1000, 0.0, 1.06) == 0.0
    assert calculate_speed(1000, -1.0, 1.06) == 0.0
    assert calculate_speed(0, 10.0, 1.06) == 0.0


def _record(stream, nbytes, outcome, start, end):
    return AttemptRecord(
        stream_index=stream,
        url="http://example.org/garbage",
        bytes_received=nbytes,
        outcome=outcome,
        http_status=200 if outcome == OUTCOME_SUCCESS else None,
        start_ts=start,
        end_ts=end,
    )


def test_summarize_attempts():
    records = [
        _record(0, 1000, OUTCOME_SUCCESS, 100.0, 101.0),
        _record(0, 3000, OUTCOME_SUCCESS, 101.0, 104.0),
        _record(1, 0, OUTCOME_FAILED, 100.0, 100.5),
        _record(1, 0, OUTCOME_FAILED, 101.0, 101.5),
        _record(2, 500, OUTCOME_CANCELLED, 100.0, 105.0),
    ]

    summary = summarize_attempts(records)

    assert summary['total_attempts'] == 5
    assert summary['successful_attempts'] == 2
    assert summary['outcomes'] == {OUTCOME_SUCCESS: 2, OUTCOME_FAILED: 2, OUTCOME_CANCELLED: 1}
    assert summary['bytes_per_stream'] == {0: 4000, 1: 0, 2: 500}
    # Mean of the successful durations only (1 s and 3 s)
    assert abs(summary['avg_request_seconds'] - 2.0) < 1e-9


def test_summarize_no_attempts():
    summary = summarize_attempts([])

    assert summary['total_attempts'] == 0
    assert summary['bytes_per_stream'] == {}
    assert len(attempts_to_frame([])) == 0


def test_samples_to_interval_speeds():
    samples = [
        ProgressReport(elapsed_measurement_seconds=5.0, bytes_since_baseline=62_500_000),
        ProgressReport(elapsed_measurement_seconds=10.0, bytes_since_baseline=125_000_000),
        ProgressReport(elapsed_measurement_seconds=12.0, bytes_since_baseline=150_000_000),
    ]

    frame = samples_to_frame(samples)

    assert list(frame['interval_seconds']) == [5.0, 5.0, 2.0]
    assert list(frame['interval_bytes']) == [62_500_000, 62_500_000, 25_000_000]
    # 62.5 MB in 5 s = 100 Mbps
    assert abs(frame['interval_speed'].iloc[0] - 100.0) < 1e-9
    assert abs(frame['interval_speed'].iloc[2] - 100.0) < 1e-9


def test_samples_to_frame_empty():
    frame = samples_to_frame([])
    assert len(frame) == 0
    assert 'interval_speed' in frame.columns


def test_zero_timestamps_are_kept():
    record = _record(0, 10, OUTCOME_SUCCESS, 0.0, 2.5)

    assert record.start_ts == 0.0
    assert record.end_ts == 2.5
    assert record.duration_seconds == 2.5


def test_missing_timestamps_default_to_now():
    record = AttemptRecord(stream_index=0, url="http://example.org/garbage",
                           bytes_received=0, outcome=OUTCOME_FAILED)

    assert record.start_ts > 0
    assert record.end_ts >= record.start_ts


def test_streams_to_frame():
    streams = [
        {'index': 1, 'running': False, 'in_flight': False,
         'attempts': 4, 'failures': 0, 'bytes_received': 3000},
        {'index': 0, 'running': False, 'in_flight': False,
         'attempts': 6, 'failures': 6, 'bytes_received': 0},
        {'index': 2, 'running': False, 'in_flight': False,
         'attempts': 2, 'failures': 1, 'bytes_received': 1000},
    ]

    frame = streams_to_frame(streams)

    assert list(frame['index']) == [0, 1, 2]
    assert list(frame['failures']) == [6, 0, 1]
    assert list(frame['byte_share']) == [0.0, 0.75, 0.25]


def test_streams_to_frame_without_bytes():
    frame = streams_to_frame([
        {'index': 0, 'running': False, 'in_flight': False,
         'attempts': 3, 'failures': 3, 'bytes_received': 0},
    ])
    assert list(frame['byte_share']) == [0.0]
    assert len(streams_to_frame([])) == 0
