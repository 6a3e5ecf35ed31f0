"""Multi-worker throughput measurement.

``run`` starts N workers against one URL.  Each worker is bounded by its
own byte cap and its own timeout; every worker adds to one shared
:class:`ByteCounter`, which a ticker samples every PROGRESS_INTERVAL to
emit live throughput.  The round ends when all workers are done, the
overall deadline (per-worker timeout + DEADLINE_GRACE) passes, or the
cancel event fires.

Public API:
    run          -- measure one download or upload round
    ByteCounter  -- shared byte accounting
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import AsyncIterator, Optional

import httpx

from inetspeed.config import (
    CHUNK_SIZE,
    DEADLINE_GRACE,
    PROGRESS_INTERVAL,
    REQUEST_HEADERS,
    human_bytes,
)
from inetspeed.display import Bus
from inetspeed.interrupt import race
from inetspeed.models import Direction, SpeedtestConfig, TransferResult

logger = logging.getLogger(__name__)

UPLOAD_HEADERS = {
    **REQUEST_HEADERS,
    "Upload-Draft-Interop-Version": "6",
    "Upload-Complete": "?1",
}

_ZERO_CHUNK = bytes(CHUNK_SIZE)

_WORKER_ERRORS = (asyncio.TimeoutError, httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, OSError)

# The server dropped the connection before the body was fully sent.
_UPLOAD_REJECTED = (httpx.NetworkError, httpx.RemoteProtocolError)


class ByteCounter:
    """Byte total shared by every worker of one round.

    Updates hold a lock, so increments from worker tasks, the progress
    ticker and any helper thread are never lost.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, n: int) -> int:
        with self._lock:
            self._value += n
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class _CountingZeroBody:
    """Streams *size* zero bytes, crediting each chunk as the HTTP layer pulls it."""

    def __init__(self, size: int, shared: ByteCounter):
        self.size = size
        self.shared = shared
        self.sent = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        remaining = self.size
        while remaining > 0:
            n = min(CHUNK_SIZE, remaining)
            remaining -= n
            self.sent += n
            self.shared.add(n)
            yield _ZERO_CHUNK if n == CHUNK_SIZE else _ZERO_CHUNK[:n]


async def _download(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int,
    shared: ByteCounter,
) -> int:
    total = 0
    async with client.stream("GET", url, headers=REQUEST_HEADERS) as response:
        if response.status_code >= 400:
            logger.debug("Download from %s returned HTTP %d", url, response.status_code)
            return 0
        async for chunk in response.aiter_bytes(CHUNK_SIZE):
            n = min(len(chunk), max_bytes - total)
            total += n
            shared.add(n)
            if total >= max_bytes:
                break
    return total


async def _upload(
    client: httpx.AsyncClient,
    url: str,
    body: _CountingZeroBody,
) -> int:
    async with client.stream("PUT", url, headers=UPLOAD_HEADERS, content=body) as response:
        await response.aread()
        if response.status_code >= 400:
            logger.debug(
                "Upload to %s returned HTTP %d, discarding %d bytes",
                url, response.status_code, body.sent,
            )
            body.shared.add(-body.sent)
            return 0
    return body.sent


async def _worker(
    client: httpx.AsyncClient,
    direction: Direction,
    url: str,
    max_bytes: int,
    timeout: float,
    shared: ByteCounter,
) -> int:
    """One transfer worker.  Failures are logged and end only this worker."""
    if direction is Direction.DOWNLOAD:
        try:
            return await asyncio.wait_for(_download(client, url, max_bytes, shared), timeout)
        except _WORKER_ERRORS as exc:
            logger.debug("Download worker stopped: %r", exc)
            return 0

    body = _CountingZeroBody(max_bytes, shared)
    try:
        return await asyncio.wait_for(_upload(client, url, body), timeout)
    except _UPLOAD_REJECTED as exc:
        logger.debug(
            "Upload to %s aborted by the server, discarding %d bytes: %r", url, body.sent, exc,
        )
        shared.add(-body.sent)
        return 0
    except _WORKER_ERRORS as exc:
        # Timed out: bytes already on the wire stay credited.
        logger.debug("Upload worker stopped after %d bytes: %r", body.sent, exc)
        return body.sent


def _mbps(n_bytes: int, seconds: float) -> float:
    return n_bytes * 8 / (seconds * 1_000_000)


async def _report_progress(
    bus: Bus,
    direction: Direction,
    shared: ByteCounter,
    start: float,
    interval: float,
) -> None:
    while True:
        await asyncio.sleep(interval)
        current = shared.value
        elapsed = time.perf_counter() - start
        if elapsed > 0:
            bus.progress(
                str(direction),
                f"{_mbps(current, elapsed):.1f} Mbps  {human_bytes(current)}  {elapsed:.1f}s",
            )


async def run(
    client: httpx.AsyncClient,
    config: SpeedtestConfig,
    direction: Direction,
    threads: int,
    url: str,
    bus: Bus,
    cancel: Optional[asyncio.Event] = None,
    progress_interval: float = PROGRESS_INTERVAL,
) -> TransferResult:
    """Run one transfer round with *threads* concurrent workers.

    Parameters
    ----------
    client:
        Shared HTTP client (pinned or not).
    config:
        Supplies the per-worker byte cap (``max_bytes``) and timeout.
    direction:
        Download (GET) or upload (PUT of zero bytes).
    threads:
        Number of concurrent workers.
    url:
        Transfer target.
    bus:
        Receives progress events while the round is running.
    cancel:
        Governing cancel event; when set, workers are abandoned and the
        partial result is returned.
    """
    timeout = float(config.timeout)
    shared = ByteCounter()
    start = time.perf_counter()

    ticker = asyncio.ensure_future(
        _report_progress(bus, direction, shared, start, progress_interval),
    )
    workers = [
        asyncio.ensure_future(
            _worker(client, direction, url, config.max_bytes, timeout, shared),
        )
        for _ in range(threads)
    ]

    try:
        finished, _ = await race(
            asyncio.gather(*workers), cancel, timeout=timeout + DEADLINE_GRACE,
        )
        if not finished:
            logger.debug("%s round stopped before all workers finished", direction)
    finally:
        for w in workers:
            w.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        ticker.cancel()
        await asyncio.gather(ticker, return_exceptions=True)

    duration = time.perf_counter() - start
    total = shared.value
    secs = duration if duration > 0 else 1.0

    return TransferResult(
        direction=direction,
        threads=threads,
        total_bytes=total,
        duration=duration,
        mbps=_mbps(total, secs),
    )
