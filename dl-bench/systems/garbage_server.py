"""
Local garbage endpoint compatible with the LibreSpeed backend.

GET /garbage or /backend/garbage.php streams ``ckSize`` chunks of 1 MiB of
incompressible data.
"""

import asyncio
import logging
import os

from aiohttp import web

from configuration import (
    CHUNK_SIZE_PARAM,
    GARBAGE_CHUNK_BYTES,
    GARBAGE_DEFAULT_CHUNKS,
    GARBAGE_MAX_CHUNKS,
)

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Content-Type": "application/octet-stream",
    "Content-Description": "File Transfer",
    "Content-Disposition": "attachment; filename=random.dat",
    "Content-Transfer-Encoding": "binary",
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0, s-maxage=0",
    "Pragma": "no-cache",
    "Access-Control-Allow-Origin": "*",
}


def parse_chunk_count(raw) -> int:
    """Clamp the requested ckSize the way the PHP backend does."""
    try:
        chunks = int(raw)
    except (TypeError, ValueError):
        return GARBAGE_DEFAULT_CHUNKS
    if chunks <= 0:
        return GARBAGE_DEFAULT_CHUNKS
    return min(chunks, GARBAGE_MAX_CHUNKS)


class GarbageServer:
    """aiohttp application serving garbage payloads."""

    def __init__(self, chunk_bytes: int = None, chunk_delay: float = 0.0):
        self.chunk_bytes = chunk_bytes or GARBAGE_CHUNK_BYTES
        self.chunk_delay = chunk_delay
        # One random block reused for every chunk
        self._block = os.urandom(self.chunk_bytes)
        self.requests_served = 0

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/garbage", self.garbage_handler)
        app.router.add_get("/backend/garbage.php", self.garbage_handler)
        return app

    async def garbage_handler(self, request: web.Request) -> web.StreamResponse:
        chunks = parse_chunk_count(request.query.get(CHUNK_SIZE_PARAM))
        self.requests_served += 1

        response = web.StreamResponse(status=200, headers=NO_CACHE_HEADERS)
        response.content_length = chunks * self.chunk_bytes
        await response.prepare(request)

        for _ in range(chunks):
            await response.write(self._block)
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)

        await response.write_eof()
        return response


def run_server(host: str, port: int, chunk_delay: float = 0.0) -> None:
    """Serve garbage until interrupted."""
    server = GarbageServer(chunk_delay=chunk_delay)
    logger.info(f"Serving garbage on http://{host}:{port}/garbage (chunk delay {chunk_delay}s)")
    web.run_app(server.create_app(), host=host, port=port, print=None)
