"""
Streaming HTTP fetch used by the download streams.
"""

import abc
import asyncio
import logging
import random
import time
from typing import Callable, Dict, Any, Optional

import aiohttp
from aiohttp.client_exceptions import ClientPayloadError
from yarl import URL

from common.errors import MalformedChunk, TransientFetchFailure
from configuration import (
    CHUNK_SIZE_PARAM,
    NONCE_PARAM,
    CORS_PARAM,
    CONNECT_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    READ_CHUNK_BYTES,
    HTTP_SUCCESS_STATUS,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], bool]


def build_request_url(server_url: str, chunk_size: int, nonce: Optional[float] = None) -> str:
    """Append the chunk-size hint and a cache-busting token to the server URL."""
    if nonce is None:
        nonce = random.random()
    url = URL(server_url).update_query({
        CHUNK_SIZE_PARAM: str(chunk_size),
        NONCE_PARAM: repr(nonce),
        CORS_PARAM: "1",
    })
    return str(url)


class FetchOutcome:
    """Result of a completed fetch."""

    def __init__(self, status: int, bytes_received: int, elapsed_seconds: float):
        self.status = status
        self.bytes = bytes_received
        self.elapsed_seconds = elapsed_seconds

    def __repr__(self) -> str:
        return (
            f"FetchOutcome(status={self.status}, bytes={self.bytes}, "
            f"elapsed={self.elapsed_seconds:.2f}s)"
        )


class HttpFetcher(abc.ABC):
    """Abstract streaming fetch.

    Implementations call ``on_chunk`` once per received chunk in transfer
    order and stop with MalformedChunk as soon as it returns False. Network
    errors and non-success statuses raise TransientFetchFailure. Cancellation
    of the calling task must propagate promptly as asyncio.CancelledError.
    """

    @abc.abstractmethod
    async def fetch(self, url: str, on_chunk: ChunkCallback) -> FetchOutcome:
        raise NotImplementedError

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


class AiohttpFetcher(HttpFetcher):
    """aiohttp implementation sharing one client session across all streams."""

    def __init__(
        self,
        connection_limit: int = 0,
        request_timeout: float = None,
        read_chunk_bytes: int = None,
    ):
        self.connection_limit = connection_limit
        self.request_timeout = request_timeout or REQUEST_TIMEOUT_SECONDS
        self.read_chunk_bytes = read_chunk_bytes or READ_CHUNK_BYTES
        self.session: Optional[aiohttp.ClientSession] = None

        # Performance metrics
        self._metrics = {
            'total_fetches': 0,
            'successful_fetches': 0,
            'failed_fetches': 0,
            'total_bytes': 0,
        }
        self._metrics_lock = asyncio.Lock()

        logger.info(
            f"Initialized aiohttp fetcher (connection_limit={connection_limit or 'unlimited'}, "
            f"read_timeout={self.request_timeout}s)"
        )

    async def __aenter__(self):
        """Async context manager entry."""
        connector = aiohttp.TCPConnector(
            limit=self.connection_limit,
            limit_per_host=self.connection_limit,
            enable_cleanup_closed=True,
        )
        # No total timeout: a garbage download may legitimately run for the whole test
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=CONNECT_TIMEOUT_SECONDS,
            sock_read=self.request_timeout,
        )
        self.session = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"Accept-Encoding": "identity"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, url: str, on_chunk: ChunkCallback) -> FetchOutcome:
        """GET ``url`` and stream the body through ``on_chunk``.

        Returns:
            FetchOutcome for a fully received body

        Raises:
            TransientFetchFailure: network error, timeout or non-200 status
            MalformedChunk: ``on_chunk`` refused a chunk
        """
        if not self.session:
            raise RuntimeError("HTTP session not initialized. Use async context manager.")

        start_time = time.monotonic()
        received = 0
        try:
            async with self.session.get(url) as response:
                if response.status != HTTP_SUCCESS_STATUS:
                    raise TransientFetchFailure(
                        f"HTTP {response.status} {response.reason}", status=response.status
                    )

                async for chunk in response.content.iter_chunked(self.read_chunk_bytes):
                    if not on_chunk(chunk):
                        raise MalformedChunk(
                            f"chunk of {len(chunk)} bytes rejected after {received} bytes",
                            status=response.status,
                        )
                    received += len(chunk)

                outcome = FetchOutcome(response.status, received, time.monotonic() - start_time)

        except TransientFetchFailure:
            await self._record(success=False)
            raise

        except asyncio.TimeoutError as e:
            await self._record(success=False)
            raise TransientFetchFailure(
                f"timeout after {time.monotonic() - start_time:.2f}s ({received} bytes)"
            ) from e

        except ClientPayloadError as e:
            # Connection closed before the full body arrived
            await self._record(success=False)
            raise TransientFetchFailure(f"incomplete payload after {received} bytes: {e}") from e

        except (aiohttp.ClientError, OSError) as e:
            await self._record(success=False)
            raise TransientFetchFailure(f"{type(e).__name__}: {e}") from e

        await self._record(success=True, bytes_received=received)
        return outcome

    async def _record(self, success: bool, bytes_received: int = 0) -> None:
        async with self._metrics_lock:
            self._metrics['total_fetches'] += 1
            if success:
                self._metrics['successful_fetches'] += 1
                self._metrics['total_bytes'] += bytes_received
            else:
                self._metrics['failed_fetches'] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Counters of fetches performed through this session."""
        return dict(self._metrics)
