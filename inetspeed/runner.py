"""Measurement pipeline.

info gather -> idle latency -> download single -> download multi
-> upload single -> upload multi -> summary
"""

from __future__ import annotations

import asyncio
import logging
import platform
from typing import Callable, Optional

import httpx

from inetspeed import transfer
from inetspeed.client import new_client
from inetspeed.config import CLIENT_TIMEOUT_MARGIN, USER_AGENT, human_bytes
from inetspeed.display import Bus
from inetspeed.endpoint import PromptOpener, choose, host_from_url, resolve_system
from inetspeed.i18n import Locale
from inetspeed.interrupt import is_cancelled
from inetspeed.latency import measure_idle, start_loaded
from inetspeed.location import fetch_info, format_location
from inetspeed.models import Direction, Endpoint, SpeedtestConfig

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DEGRADED = 2
EXIT_INTERRUPTED = 130

ClientFactory = Callable[..., httpx.AsyncClient]


def _interrupted(bus: Bus, locale: Locale) -> int:
    bus.warn(locale.text("Interrupted.", "已中断。"))
    return EXIT_INTERRUPTED


async def gather_info(
    bus: Bus,
    locale: Locale,
    lookup_client: httpx.AsyncClient,
    host: str,
    endpoint: Endpoint,
    cancel: Optional[asyncio.Event] = None,
) -> bool:
    """Report client and server addresses.  False when either is unknown."""
    t = locale.text
    ok = True
    bus.header(t("Connection Information", "连接信息"))

    client_info = await fetch_info(lookup_client, "", locale, cancel)
    client_ip = client_info.query
    if not client_ip:
        client_ip = "?"
        ok = False
    bus.kv(t("Client", "客户端"), f"{client_ip}  ({client_info.isp or '?'})")
    bus.kv("  ASN", client_info.as_ or "?")
    bus.kv(t("  Location", "  位置"), format_location(client_info))

    server_ip = endpoint.ip
    if not server_ip and host:
        server_ip = await resolve_system(host)
    if not server_ip:
        server_ip = "?"
        ok = False
    bus.kv(t("Server", "服务端"), f"{host}  →  {server_ip}")
    if endpoint.description:
        bus.kv(t("  Endpoint", "  节点"), endpoint.description)

    if server_ip != "?":
        server_info = await fetch_info(lookup_client, server_ip, locale, cancel)
        bus.kv("  ASN", server_info.as_ or server_info.org or "?")
        bus.kv(t("  Location", "  位置"), format_location(server_info))

    return ok


async def run(
    config: SpeedtestConfig,
    bus: Bus,
    is_tty: bool,
    cancel: Optional[asyncio.Event] = None,
    lookup_client: Optional[httpx.AsyncClient] = None,
    client_factory: ClientFactory = new_client,
    open_input: Optional[PromptOpener] = None,
) -> int:
    """Execute the full pipeline and return the process exit code.

    0 on success, 2 when connection information was degraded, 130 when
    interrupted.
    """
    owns_lookup = lookup_client is None
    if lookup_client is None:
        lookup_client = httpx.AsyncClient(
            follow_redirects=True, headers={"User-Agent": USER_AGENT},
        )
    try:
        return await _run(config, bus, is_tty, cancel, lookup_client, client_factory, open_input)
    finally:
        if owns_lookup:
            await lookup_client.aclose()


async def _run(
    config: SpeedtestConfig,
    bus: Bus,
    is_tty: bool,
    cancel: Optional[asyncio.Event],
    lookup_client: httpx.AsyncClient,
    client_factory: ClientFactory,
    open_input: Optional[PromptOpener],
) -> int:
    locale = config.locale
    t = locale.text
    degraded = False

    bus.line()
    bus.banner("⚡ iNetSpeed")
    bus.info(t("Config:  ", "配置:  ") + config.summary(locale))
    bus.line()

    bus.header(t("Environment Check", "环境检查"))
    bus.info(f"Python {platform.python_version()}  httpx {httpx.__version__}")

    if is_cancelled(cancel):
        return _interrupted(bus, locale)

    host = host_from_url(config.dl_url)
    endpoint = await choose(host, bus, is_tty, locale, lookup_client, cancel, open_input)

    pin = {}
    if endpoint.ip and host:
        pin = {"pin_host": host, "pin_ip": endpoint.ip}
    client = client_factory(timeout=float(config.timeout + CLIENT_TIMEOUT_MARGIN), **pin)

    async with client:
        if is_cancelled(cancel):
            return _interrupted(bus, locale)

        if not await gather_info(bus, locale, lookup_client, host, endpoint, cancel):
            degraded = True

        if is_cancelled(cancel):
            return _interrupted(bus, locale)

        bus.header(t("Idle Latency", "空载延迟"))
        bus.info(t("Endpoint: ", "端点: ") + config.latency_url)
        bus.info(t("Samples: {}", "采样: {}").format(config.latency_count))

        idle = await measure_idle(client, config.latency_url, config.latency_count, cancel)
        bus.result(t(
            "{:.2f} ms median  (min {:.2f} / avg {:.2f} / max {:.2f})  jitter {:.2f} ms",
            "{:.2f} 毫秒 中位数  (最小 {:.2f} / 平均 {:.2f} / 最大 {:.2f})  抖动 {:.2f} 毫秒",
        ).format(idle.median, idle.min, idle.avg, idle.max, idle.jitter))

        rounds = [
            (Direction.DOWNLOAD, 1, t("Download (single thread)", "下载（单线程）"), config.dl_url),
            (Direction.DOWNLOAD, config.threads, t("Download (multi-thread)", "下载（多线程）"), config.dl_url),
            (Direction.UPLOAD, 1, t("Upload (single thread)", "上传（单线程）"), config.ul_url),
            (Direction.UPLOAD, config.threads, t("Upload (multi-thread)", "上传（多线程）"), config.ul_url),
        ]

        total_data = 0
        for direction, threads, label, url in rounds:
            if is_cancelled(cancel):
                break
            bus.header(label)
            bus.info(t("Threads: {}", "线程: {}").format(threads))
            bus.info(t("Limit: {} / {}s per thread", "上限: {} / 每线程 {}s").format(
                config.max, config.timeout))

            loaded = start_loaded(client, config.latency_url, cancel)
            try:
                res = await transfer.run(client, config, direction, threads, url, bus, cancel)
            finally:
                loaded_stats = await loaded.stop()
            total_data += res.total_bytes

            if threads <= 1:
                bus.result(t("{:.0f} Mbps  ({} in {:.1f}s)", "{:.0f} Mbps  ({}，耗时 {:.1f}s)").format(
                    res.mbps, human_bytes(res.total_bytes), res.duration))
            else:
                bus.result(t(
                    "{:.0f} Mbps  ({} in {:.1f}s, {} threads)",
                    "{:.0f} Mbps  ({}，耗时 {:.1f}s，{} 线程)",
                ).format(res.mbps, human_bytes(res.total_bytes), res.duration, threads))
            bus.info(t("Loaded latency: {:.2f} ms  (jitter {:.2f} ms)",
                       "负载延迟: {:.2f} 毫秒  (抖动 {:.2f} 毫秒)").format(
                loaded_stats.median, loaded_stats.jitter))

    if is_cancelled(cancel):
        return _interrupted(bus, locale)

    bus.line()
    bus.banner(t("📊 Summary", "📊 测速汇总"))
    bus.line()
    bus.kv(t("Idle Latency", "空载延迟"), t("{:.2f} ms  (jitter {:.2f} ms)", "{:.2f} 毫秒  (抖动 {:.2f} 毫秒)").format(
        idle.median, idle.jitter))
    bus.kv(t("Data Used", "消耗流量"), human_bytes(total_data))
    bus.line()
    bus.info(t("All tests complete.", "所有测试完成。"))
    bus.line()

    if degraded:
        logger.debug("Connection information was incomplete")
        return EXIT_DEGRADED
    return EXIT_OK
