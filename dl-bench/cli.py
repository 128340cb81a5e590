import os
import sys
import json
import signal
import logging
import argparse
import asyncio

# Required: Use uvloop for better performance
import uvloop
asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

# Add the current directory to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from configuration import (
    DEFAULT_SERVER_URL, DEFAULT_CHUNK_SIZE, DEFAULT_TEST_DURATION_SECONDS,
    DEFAULT_GRACE_TIME_SECONDS, DEFAULT_STREAM_COUNT, DEFAULT_OVERHEAD_FACTOR,
    SAMPLE_INTERVAL_SECONDS, RETRY_DELAY_SECONDS, REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SERVE_HOST, DEFAULT_SERVE_PORT,
)
from common.errors import InvalidConfiguration, FetchFailure

# Set up logging (only if not already configured)
if not logging.root.handlers:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


class SimpleDownloadTestCLI:
    """Simple CLI interface for the multi-stream download test."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self):
        """Create the main argument parser."""
        parser = argparse.ArgumentParser(
            description='Multi-stream HTTP download throughput test',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # 15 second test with 6 streams against a LibreSpeed backend
  python cli.py run --url https://example.org/backend/garbage.php --streams 6

  # Report in Mebibits/s and print the result as JSON
  python cli.py run --url http://127.0.0.1:8080/garbage --mebibits --json

  # Single request to check the endpoint
  python cli.py probe --url http://127.0.0.1:8080/garbage --ck-size 4

  # Local garbage server for testing
  python cli.py serve --port 8080
            """
        )
        parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Run command
        run_parser = subparsers.add_parser('run', help='Run a download speed test')
        run_parser.add_argument('--url', type=str, default=DEFAULT_SERVER_URL,
                                help=f'Garbage endpoint URL (default: {DEFAULT_SERVER_URL})')
        run_parser.add_argument('--ck-size', type=int, default=DEFAULT_CHUNK_SIZE,
                                help=f'ckSize requested per GET (default: {DEFAULT_CHUNK_SIZE})')
        run_parser.add_argument('--duration', type=float, default=DEFAULT_TEST_DURATION_SECONDS,
                                help=f'Total test duration in seconds (default: {DEFAULT_TEST_DURATION_SECONDS})')
        run_parser.add_argument('--grace', type=float, default=DEFAULT_GRACE_TIME_SECONDS,
                                help=f'Grace time excluded from the measurement (default: {DEFAULT_GRACE_TIME_SECONDS})')
        run_parser.add_argument('--streams', type=int, default=DEFAULT_STREAM_COUNT,
                                help=f'Number of parallel streams (default: {DEFAULT_STREAM_COUNT})')
        run_parser.add_argument('--overhead', type=float, default=DEFAULT_OVERHEAD_FACTOR,
                                help=f'Overhead compensation factor (default: {DEFAULT_OVERHEAD_FACTOR})')
        run_parser.add_argument('--mebibits', action='store_true',
                                help='Report Mebibits/s instead of Mbps')
        run_parser.add_argument('--interval', type=float, default=SAMPLE_INTERVAL_SECONDS,
                                help=f'Progress report interval in seconds (default: {SAMPLE_INTERVAL_SECONDS})')
        run_parser.add_argument('--retry-delay', type=float, default=RETRY_DELAY_SECONDS,
                                help=f'Delay after a failed request (default: {RETRY_DELAY_SECONDS})')
        run_parser.add_argument('--timeout', type=float, default=REQUEST_TIMEOUT_SECONDS,
                                help=f'Read timeout per chunk in seconds (default: {REQUEST_TIMEOUT_SECONDS})')
        run_parser.add_argument('--json', action='store_true',
                                help='Print the final result as JSON')

        # Probe command
        probe_parser = subparsers.add_parser('probe', help='Issue a single request to the endpoint')
        probe_parser.add_argument('--url', type=str, default=DEFAULT_SERVER_URL,
                                  help=f'Garbage endpoint URL (default: {DEFAULT_SERVER_URL})')
        probe_parser.add_argument('--ck-size', type=int, default=DEFAULT_CHUNK_SIZE,
                                  help=f'ckSize requested (default: {DEFAULT_CHUNK_SIZE})')
        probe_parser.add_argument('--timeout', type=float, default=REQUEST_TIMEOUT_SECONDS,
                                  help=f'Read timeout per chunk in seconds (default: {REQUEST_TIMEOUT_SECONDS})')

        # Serve command
        serve_parser = subparsers.add_parser('serve', help='Run a local garbage server')
        serve_parser.add_argument('--host', type=str, default=DEFAULT_SERVE_HOST,
                                  help=f'Bind address (default: {DEFAULT_SERVE_HOST})')
        serve_parser.add_argument('--port', type=int, default=DEFAULT_SERVE_PORT,
                                  help=f'Port (default: {DEFAULT_SERVE_PORT})')
        serve_parser.add_argument('--chunk-delay', type=float, default=0.0,
                                  help='Pause after each 1 MiB chunk, to simulate a slow link')

        return parser

    async def run_download(self, args):
        """Run the download test."""
        from common.metrics_utils import samples_to_frame, streams_to_frame
        from common.orchestrator import TestOrchestrator
        from common.run_config import configure
        from systems.base import AiohttpFetcher

        try:
            config = configure(
                server_url=args.url,
                chunk_size=args.ck_size,
                test_duration=args.duration,
                grace_time=args.grace,
                stream_count=args.streams,
                overhead_factor=args.overhead,
                use_binary_units=args.mebibits,
                sample_interval=args.interval,
                retry_delay=args.retry_delay,
                request_timeout=args.timeout,
            )
        except InvalidConfiguration as e:
            logger.error(f"Invalid configuration: {e}")
            return 2

        logger.info("=== Download Test ===")

        async with AiohttpFetcher(
            connection_limit=config.stream_count,
            request_timeout=config.request_timeout,
        ) as fetcher:
            orchestrator = TestOrchestrator(fetcher)

            # Ctrl+C ends the test early instead of killing it
            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, orchestrator.request_stop)
                handler_installed = True
            except (NotImplementedError, RuntimeError):
                handler_installed = False

            try:
                result = await orchestrator.run(config)
            finally:
                if handler_installed:
                    loop.remove_signal_handler(signal.SIGINT)

        if result is None:
            logger.warning("Test stopped before the grace period ended; no result")
            return 1

        frame = samples_to_frame(result.samples, config.overhead_factor, config.use_binary_units)
        if len(frame):
            logger.info(f"Progress samples:\n{frame.to_string(index=False)}")

        attempts = result.attempts
        logger.info(
            f"Requests: {attempts.get('successful_attempts', 0)}/{attempts.get('total_attempts', 0)} "
            f"successful, outcomes: {attempts.get('outcomes', {})}"
        )
        streams = streams_to_frame(result.streams)
        if len(streams):
            logger.info(f"Streams:\n{streams.to_string(index=False)}")

        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(f"Result: {result.describe()}")
        return 0

    async def run_probe(self, args):
        """Issue one request and report what came back."""
        from common.byte_counter import ByteCounter
        from common.metrics_utils import calculate_speed
        from systems.base import AiohttpFetcher, build_request_url

        url = build_request_url(args.url, args.ck_size)
        counter = ByteCounter()
        logger.info(f"Probing {url}")

        async with AiohttpFetcher(connection_limit=1, request_timeout=args.timeout) as fetcher:
            try:
                outcome = await fetcher.fetch(url, lambda data: counter.on_chunk(len(data)))
            except FetchFailure as e:
                logger.error(f"Probe failed: {e} ({counter.total()} bytes received)")
                return 1

        speed = calculate_speed(outcome.bytes, outcome.elapsed_seconds, 1.0)
        logger.info(
            f"HTTP {outcome.status}: {outcome.bytes} bytes in {outcome.elapsed_seconds:.2f}s "
            f"({speed:.2f} Mbps, single stream, no overhead compensation)"
        )
        return 0

    def run_serve(self, args):
        """Run the local garbage server until interrupted."""
        from systems.garbage_server import run_server

        run_server(args.host, args.port, chunk_delay=args.chunk_delay)
        return 0

    def run(self, args=None):
        """Run the CLI with the given arguments."""
        if args is None:
            args = sys.argv[1:]

        parsed_args = self.parser.parse_args(args)

        if parsed_args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        try:
            if parsed_args.command == 'run':
                return asyncio.run(self.run_download(parsed_args))
            elif parsed_args.command == 'probe':
                return asyncio.run(self.run_probe(parsed_args))
            elif parsed_args.command == 'serve':
                return self.run_serve(parsed_args)
            else:
                logger.error(f"Unknown command: {parsed_args.command}")
                return 1

        except KeyboardInterrupt:
            logger.info("Operation interrupted by user")
            return 1
        except Exception as e:
            logger.error(f"Unexpected error: {e}")
            return 1


def main():
    """Main entry point."""
    cli = SimpleDownloadTestCLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
