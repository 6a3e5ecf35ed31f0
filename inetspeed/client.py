"""HTTP client construction with optional endpoint pinning."""

from __future__ import annotations

import httpx

from inetspeed.config import MAX_THREADS


class PinnedTransport(httpx.AsyncHTTPTransport):
    """Transport that pins DNS resolution of one host to a specific IP.

    Requests for *pin_host* are rewritten to target *pin_ip* while the
    original hostname is kept in the ``Host`` header and passed through the
    ``sni_hostname`` extension, so TLS SNI and certificate validation still
    see the real name.  Other hosts are untouched.
    """

    def __init__(self, pin_host: str, pin_ip: str, **kwargs):
        self.pin_host = pin_host
        self.pin_ip = pin_ip
        super().__init__(**kwargs)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        url = request.url
        if url.host == self.pin_host:
            request = httpx.Request(
                method=request.method,
                url=url.copy_with(host=self.pin_ip),
                headers=request.headers,
                stream=request.stream,
                extensions={**request.extensions, "sni_hostname": url.host},
            )
        return await super().handle_async_request(request)


def new_client(
    timeout: float,
    pin_host: str = "",
    pin_ip: str = "",
) -> httpx.AsyncClient:
    """Build the measurement client.

    HTTP/2 is preferred when the server offers it.  When both *pin_host*
    and *pin_ip* are given, connections to *pin_host* go to *pin_ip*.
    """
    limits = httpx.Limits(
        max_connections=MAX_THREADS * 2 + 4,
        max_keepalive_connections=MAX_THREADS * 2,
        keepalive_expiry=90.0,
    )
    timeouts = httpx.Timeout(timeout, connect=10.0)
    if pin_host and pin_ip:
        transport = PinnedTransport(
            pin_host=pin_host, pin_ip=pin_ip, http2=True, verify=True, limits=limits,
        )
        return httpx.AsyncClient(transport=transport, timeout=timeouts)
    return httpx.AsyncClient(http2=True, verify=True, limits=limits, timeout=timeouts)
