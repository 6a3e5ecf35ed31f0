"""Shared helpers for the test-suite."""

import asyncio

import httpx

from inetspeed.display import Bus, CollectingRenderer


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by *handler* (sync or async)."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def collecting_bus():
    renderer = CollectingRenderer()
    return Bus(renderer), renderer


async def drip(chunk_size: int, delay: float, count: int | None = None):
    """Async body that yields zero-filled chunks with a pause between them."""
    sent = 0
    while count is None or sent < count:
        yield bytes(chunk_size)
        sent += 1
        await asyncio.sleep(delay)
