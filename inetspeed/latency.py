"""HTTP round-trip latency probing.

Two modes share the same one-shot :func:`probe`:

  idle    -- :func:`measure_idle` runs a fixed number of sequential probes
  loaded  -- :class:`LoadedProbe` probes back-to-back in the background
             while a transfer is running, until :meth:`LoadedProbe.stop`
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from inetspeed.config import PROBE_TIMEOUT, REQUEST_HEADERS
from inetspeed.interrupt import is_cancelled, race
from inetspeed.models import LatencyStats
from inetspeed.stats import compute_stats

logger = logging.getLogger(__name__)


async def _fetch_and_drain(client: httpx.AsyncClient, url: str) -> None:
    async with client.stream("GET", url, headers=REQUEST_HEADERS) as response:
        async for _ in response.aiter_bytes():
            pass


async def probe(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = PROBE_TIMEOUT,
) -> Optional[float]:
    """Time one GET of *url* until its body is drained.

    Returns elapsed milliseconds, or ``None`` when the request fails for
    any reason (invalid URL, transport error, timeout).
    """
    t0 = time.perf_counter()
    try:
        await asyncio.wait_for(_fetch_and_drain(client, url), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug("Latency probe to %s timed out after %.1fs", url, timeout)
        return None
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        logger.debug("Latency probe to %s failed: %s", url, exc)
        return None
    return (time.perf_counter() - t0) * 1000.0


async def measure_idle(
    client: httpx.AsyncClient,
    url: str,
    count: int,
    cancel: Optional[asyncio.Event] = None,
) -> LatencyStats:
    """Run *count* sequential probes and summarise the successful ones."""
    samples: list[float] = []
    for _ in range(count):
        if is_cancelled(cancel):
            break
        finished, elapsed_ms = await race(probe(client, url), cancel)
        if not finished:
            break
        if elapsed_ms is not None:
            samples.append(elapsed_ms)
    return compute_stats(samples)


class LoadedProbe:
    """Background latency sampling that runs alongside a transfer.

    Samples are appended only by the probing task itself; :meth:`stop`
    reads them after that task has exited.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        cancel: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.url = url
        self.cancel = cancel
        self.samples: list[float] = []
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.ensure_future(self._loop())

    async def _loop(self) -> None:
        while not is_cancelled(self.cancel):
            finished, elapsed_ms = await race(probe(self.client, self.url), self.cancel)
            if not finished:
                return
            if elapsed_ms is not None:
                self.samples.append(elapsed_ms)

    async def stop(self) -> LatencyStats:
        """Stop probing, wait for the loop to exit, and summarise."""
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        return compute_stats(self.samples)


def start_loaded(
    client: httpx.AsyncClient,
    url: str,
    cancel: Optional[asyncio.Event] = None,
) -> LoadedProbe:
    """Create and start a :class:`LoadedProbe`."""
    loaded = LoadedProbe(client, url, cancel)
    loaded.start()
    return loaded
