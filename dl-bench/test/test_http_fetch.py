"""
HTTP round-trip tests: aiohttp fetcher against the local garbage server.
"""

import asyncio
import unittest
import sys
import os

# Add the parent directory to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from common.byte_counter import ByteCounter
from common.errors import MalformedChunk, TransientFetchFailure
from common.log_sink import CollectingLogSink
from common.orchestrator import TestOrchestrator
from common.run_config import configure
from systems.base import AiohttpFetcher, build_request_url
from systems.garbage_server import GarbageServer, parse_chunk_count
from configuration import GARBAGE_DEFAULT_CHUNKS, GARBAGE_MAX_CHUNKS

CHUNK_BYTES = 64 * 1024
# Long enough to outlast the read timeout and the cancellation check
HANG_SECONDS = 2.0


class TestParseChunkCount(unittest.TestCase):
    """Test ckSize handling on the server side."""

    def test_values(self):
        self.assertEqual(parse_chunk_count("10"), 10)
        self.assertEqual(parse_chunk_count(None), GARBAGE_DEFAULT_CHUNKS)
        self.assertEqual(parse_chunk_count("abc"), GARBAGE_DEFAULT_CHUNKS)
        self.assertEqual(parse_chunk_count("0"), GARBAGE_DEFAULT_CHUNKS)
        self.assertEqual(parse_chunk_count(str(GARBAGE_MAX_CHUNKS * 2)), GARBAGE_MAX_CHUNKS)


class TestGarbageRoundTrip(AioHTTPTestCase):
    """Fetch garbage from a local server."""

    async def get_application(self):
        self.garbage = GarbageServer(chunk_bytes=CHUNK_BYTES, chunk_delay=0.005)
        app = self.garbage.create_app()

        async def hang(request):
            response = web.StreamResponse()
            await response.prepare(request)
            await response.write(b"x" * 1024)
            await asyncio.sleep(HANG_SECONDS)
            return response

        async def unavailable(request):
            return web.Response(status=503, text="busy")

        app.router.add_get("/hang", hang)
        app.router.add_get("/unavailable", unavailable)
        return app

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    async def test_fetch_streams_every_chunk(self):
        counter = ByteCounter()
        seen = []

        def on_chunk(data):
            seen.append(len(data))
            return counter.on_chunk(len(data))

        async with AiohttpFetcher(connection_limit=1) as fetcher:
            outcome = await fetcher.fetch(build_request_url(self.url("/garbage"), 3), on_chunk)
            metrics = fetcher.get_metrics()

        self.assertEqual(outcome.status, 200)
        self.assertEqual(outcome.bytes, 3 * CHUNK_BYTES)
        self.assertEqual(counter.total(), 3 * CHUNK_BYTES)
        self.assertGreater(len(seen), 1)
        self.assertEqual(metrics['successful_fetches'], 1)

    async def test_librespeed_path(self):
        counter = ByteCounter()
        async with AiohttpFetcher() as fetcher:
            outcome = await fetcher.fetch(
                build_request_url(self.url("/backend/garbage.php"), 1),
                lambda data: counter.on_chunk(len(data)),
            )
        self.assertEqual(outcome.bytes, CHUNK_BYTES)

    async def test_non_success_status_is_transient_failure(self):
        async with AiohttpFetcher() as fetcher:
            with self.assertRaises(TransientFetchFailure) as ctx:
                await fetcher.fetch(self.url("/unavailable"), lambda data: True)
            self.assertEqual(fetcher.get_metrics()['failed_fetches'], 1)
        self.assertEqual(ctx.exception.status, 503)

    async def test_rejected_chunk_aborts_fetch(self):
        async with AiohttpFetcher() as fetcher:
            with self.assertRaises(MalformedChunk):
                await fetcher.fetch(build_request_url(self.url("/garbage"), 2), lambda data: False)

    async def test_cancellation_is_prompt(self):
        counter = ByteCounter()
        async with AiohttpFetcher() as fetcher:
            task = asyncio.create_task(
                fetcher.fetch(self.url("/hang"), lambda data: counter.on_chunk(len(data)))
            )
            await asyncio.sleep(0.2)
            self.assertEqual(counter.total(), 1024)

            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await asyncio.wait_for(task, timeout=2.0)

    async def test_read_timeout_is_transient_failure(self):
        async with AiohttpFetcher(request_timeout=0.2) as fetcher:
            with self.assertRaises(TransientFetchFailure):
                await fetcher.fetch(self.url("/hang"), lambda data: True)

    async def test_full_test_against_local_server(self):
        config = configure(
            server_url=self.url("/garbage"),
            chunk_size=4,
            test_duration=0.8,
            grace_time=0.2,
            stream_count=3,
            overhead_factor=1.06,
            use_binary_units=False,
            sample_interval=0.2,
        )
        sink = CollectingLogSink()

        async with AiohttpFetcher(connection_limit=config.stream_count) as fetcher:
            result = await TestOrchestrator(fetcher, emit=sink).run(config)

        self.assertGreater(result.measured_bytes, 0)
        self.assertGreater(result.speed, 0)
        self.assertGreater(result.attempts['successful_attempts'], 0)
        self.assertGreaterEqual(self.garbage.requests_served, 3)
        self.assertTrue(sink.contains("request completed in"))


if __name__ == '__main__':
    unittest.main()
