"""Endpoint selection: resolve the test host and pick an IP to pin.

Resolution goes through dual DoH (see :mod:`inetspeed.doh`).  When both
providers time out the system resolver is used instead; when they answer
with nothing the run continues unpinned.  Each candidate is annotated
with ip-api.com location/ASN data and, on an interactive terminal with
several candidates, the user picks one.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import sys
import threading
from typing import Callable, Optional, TextIO
from urllib.parse import urlparse

import dns.asyncresolver
import dns.exception
import dns.rdatatype
import httpx

from inetspeed.display import Bus, render_prompt
from inetspeed.doh import resolve_doh_dual
from inetspeed.i18n import Locale
from inetspeed.interrupt import race
from inetspeed.location import fetch_ip_desc
from inetspeed.models import Endpoint

logger = logging.getLogger(__name__)

# Returns (stream, should_close).  Raises OSError when no terminal is available.
PromptOpener = Callable[[], "tuple[TextIO, bool]"]


def host_from_url(raw_url: str) -> str:
    """Hostname part of *raw_url*, or ``""`` if it cannot be parsed."""
    try:
        return urlparse(raw_url).hostname or ""
    except ValueError:
        return ""


async def resolve_system(host: str) -> str:
    """Resolve *host* the way the operating system does.

    IP literals come back unchanged.  Names go through getaddrinfo, so the
    hosts file and nsswitch apply; if that fails the configured DNS servers
    are queried directly.  Returns the first IPv4 address, or ``""``.
    """
    if not host:
        return ""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        return host

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
    except OSError as exc:
        logger.debug("getaddrinfo for %s failed: %s", host, exc)
    else:
        for _family, _type, _proto, _canon, sockaddr in infos:
            return sockaddr[0]

    try:
        answer = await dns.asyncresolver.resolve(host, dns.rdatatype.A)
    except dns.exception.DNSException as exc:
        logger.debug("System DNS lookup for %s failed: %s", host, exc)
        return ""
    for rdata in answer:
        return str(rdata)
    return ""


async def choose(
    host: str,
    bus: Bus,
    is_tty: bool,
    locale: Locale,
    lookup_client: httpx.AsyncClient,
    cancel: Optional[asyncio.Event] = None,
    open_input: Optional[PromptOpener] = None,
) -> Endpoint:
    """Pick the endpoint to pin for *host*.

    Returns an empty :class:`Endpoint` when nothing should be pinned,
    including when the interactive prompt was interrupted.
    """
    t = locale.text
    bus.header(t("Endpoint Selection", "节点选择"))
    if not host:
        bus.warn(t("Could not parse host from DL_URL. Skip endpoint selection.",
                   "无法从 DL_URL 解析主机，跳过节点选择。"))
        return Endpoint()
    bus.info(t("Host: ", "主机: ") + host)

    finished, resolution = await race(resolve_doh_dual(lookup_client, host), cancel)
    if not finished:
        return Endpoint()
    if not resolution.ips:
        if resolution.both_timed_out:
            bus.warn(t("Dual DoH (CF + Ali) both timed out. Fallback to system DNS.",
                       "双 DoH（CF + Ali）均超时，回退系统 DNS。"))
            finished, fallback = await race(resolve_system(host), cancel)
            if not finished:
                return Endpoint()
            if fallback:
                ep = Endpoint(ip=fallback, description=t("system DNS fallback", "系统 DNS 回退"))
                bus.info(t("Selected endpoint: ", "已选择节点: ") + f"{ep.ip} ({ep.description})")
                return ep
        else:
            bus.warn(t("Dual DoH returned no endpoint, continue with default DNS.",
                       "双 DoH 未返回节点，继续使用默认 DNS。"))
        bus.warn(t("Could not resolve endpoint IP, continue with default DNS.",
                   "无法解析节点 IP，继续使用默认 DNS。"))
        return Endpoint()

    descriptions = await asyncio.gather(
        *(fetch_ip_desc(lookup_client, ip, locale, cancel) for ip in resolution.ips)
    )
    endpoints = [Endpoint(ip=ip, description=d) for ip, d in zip(resolution.ips, descriptions)]

    bus.info(t("Available endpoints:", "可用节点:"))
    for i, ep in enumerate(endpoints, 1):
        bus.info(f"  {i}) {ep.ip}  {ep.description}")

    choice = 0
    if len(endpoints) > 1 and is_tty:
        choice, cancelled = await prompt_choice(
            len(endpoints), bus, locale, cancel, open_input or open_prompt_input,
        )
        if cancelled:
            return Endpoint()

    selected = endpoints[choice]
    bus.info(t("Selected endpoint: {} ({})", "已选择节点: {} ({})").format(
        selected.ip, selected.description))
    return selected


def parse_choice(line: str, count: int) -> tuple[int, bool]:
    """Turn a prompt answer into a zero-based index.

    An empty answer means the first endpoint.  Returns ``(0, False)`` for
    anything that is not a number between 1 and *count*.
    """
    line = line.strip()
    if not line:
        return 0, True
    try:
        n = int(line)
    except ValueError:
        return 0, False
    if n < 1 or n > count:
        return 0, False
    return n - 1, True


def open_prompt_input() -> tuple[TextIO, bool]:
    """Open the controlling terminal for reading.

    Returns ``(stream, should_close)``.  Falls back to stdin when it is a
    terminal; raises OSError when no interactive input exists.
    """
    for path in ("/dev/tty", "CONIN$"):
        try:
            return open(path, "r", encoding="utf-8", errors="replace"), True
        except OSError:
            continue
    if sys.stdin is not None and sys.stdin.isatty():
        return sys.stdin, False
    raise OSError("interactive input not available")


def _read_line_in_thread(stream: TextIO, should_close: bool) -> asyncio.Future:
    """Read one line from *stream* on a daemon thread.

    The returned future resolves to the line (``""`` on EOF) or to the
    read error.  The thread cannot be interrupted once blocked; callers
    that stop waiting simply drop the future, and the thread ends with
    the process.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _deliver(result: str, error: Optional[BaseException]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _reader() -> None:
        line, error = "", None
        try:
            line = stream.readline()
        except (OSError, ValueError) as exc:
            error = exc
        finally:
            if should_close:
                try:
                    stream.close()
                except OSError:
                    pass
        try:
            loop.call_soon_threadsafe(_deliver, line, error)
        except RuntimeError:
            # Event loop already closed.
            pass

    threading.Thread(target=_reader, name="endpoint-prompt", daemon=True).start()
    return future


async def prompt_choice(
    count: int,
    bus: Bus,
    locale: Locale,
    cancel: Optional[asyncio.Event] = None,
    open_input: PromptOpener = open_prompt_input,
) -> tuple[int, bool]:
    """Ask which endpoint to use.  Returns ``(index, cancelled)``.

    When *cancel* fires while waiting, returns ``(0, True)`` right away
    without waiting for the blocked read.
    """
    t = locale.text
    render_prompt(t("Select endpoint [1-{}, Enter=1]: ", "选择节点 [1-{}，回车=1]: ").format(count))

    try:
        stream, should_close = open_input()
    except OSError as exc:
        logger.debug("No prompt input: %s", exc)
        bus.warn(t("Interactive input unavailable, defaulting to endpoint 1.",
                   "交互输入不可用，默认使用节点 1。"))
        return 0, False

    try:
        finished, line = await race(_read_line_in_thread(stream, should_close), cancel)
    except (OSError, ValueError) as exc:
        logger.debug("Prompt read failed: %s", exc)
        return 0, False
    if not finished:
        return 0, True

    if not line:
        return 0, False
    choice, ok = parse_choice(line, count)
    if not ok:
        bus.warn(t("Invalid selection '{}', fallback to 1.", "选择无效 '{}'，回退到 1。").format(
            line.strip()))
        return 0, False
    return choice, False
