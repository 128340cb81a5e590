"""
Configuration constants for the multi-stream download test.

This module contains all configuration parameters including:
- Server endpoint and request parameters
- Test timing (duration, grace period, sampling interval)
- Stream and retry settings
- Rate conversion factors
- Garbage server defaults
"""

import os

# =============================================================================
# SERVER CONFIGURATION
# =============================================================================

# LibreSpeed-style garbage endpoint
DEFAULT_SERVER_URL: str = os.getenv(
    "DLBENCH_SERVER_URL", "https://librespeed.a573.net/backend/garbage.php"
)

# Number of 1 MiB chunks requested per GET (the server's ckSize parameter)
DEFAULT_CHUNK_SIZE: int = int(os.getenv("DLBENCH_CHUNK_SIZE", "100"))

# Query parameter names understood by the garbage endpoint
CHUNK_SIZE_PARAM: str = "ckSize"
NONCE_PARAM: str = "r"
CORS_PARAM: str = "cors"

# =============================================================================
# TEST TIMING
# =============================================================================

DEFAULT_TEST_DURATION_SECONDS: float = 15.0
DEFAULT_GRACE_TIME_SECONDS: float = 1.5  # Warm-up excluded from the measurement
SAMPLE_INTERVAL_SECONDS: float = 5.0  # Progress report period during measurement

# =============================================================================
# STREAMS AND RETRIES
# =============================================================================

DEFAULT_STREAM_COUNT: int = int(os.getenv("DLBENCH_STREAMS", "6"))
RETRY_DELAY_SECONDS: float = 0.5  # Fixed delay after a failed attempt
STOP_TIMEOUT_SECONDS: float = 5.0  # Max wait for stream loops to exit after cancel

# =============================================================================
# HTTP CLIENT
# =============================================================================

REQUEST_TIMEOUT_SECONDS: float = 30.0  # Max wait for a single chunk
CONNECT_TIMEOUT_SECONDS: float = 10.0
READ_CHUNK_BYTES: int = 64 * 1024
HTTP_SUCCESS_STATUS: int = 200

# =============================================================================
# RATE COMPUTATION
# =============================================================================

DEFAULT_OVERHEAD_FACTOR: float = 1.06  # Compensates for HTTP/TCP/IP framing
BITS_PER_BYTE: int = 8
BITS_PER_MEGABIT: int = 1_000_000
BITS_PER_MEBIBIT: int = 1_048_576
UNIT_MEGABITS: str = "Mbps"
UNIT_MEBIBITS: str = "Mebibits/s"

# =============================================================================
# GARBAGE SERVER
# =============================================================================

GARBAGE_CHUNK_BYTES: int = 1024 * 1024  # One ckSize unit
GARBAGE_DEFAULT_CHUNKS: int = 4
GARBAGE_MAX_CHUNKS: int = 1024
DEFAULT_SERVE_HOST: str = "127.0.0.1"
DEFAULT_SERVE_PORT: int = 8080
