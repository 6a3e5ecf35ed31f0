"""CLI entry point and orchestration for inetspeed."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click
from rich.logging import RichHandler

from inetspeed import __version__
from inetspeed.config import (
    DEFAULT_DL_URL,
    DEFAULT_LATENCY_COUNT,
    DEFAULT_LATENCY_URL,
    DEFAULT_MAX,
    DEFAULT_THREADS,
    DEFAULT_TIMEOUT,
    DEFAULT_UL_URL,
    MAX_LATENCY_COUNT,
    MAX_THREADS,
    MAX_TIMEOUT,
    parse_size,
)
from inetspeed.i18n import resolve
from inetspeed.models import SpeedtestConfig


def _validate_url(ctx: click.Context, param: click.Parameter, value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise click.BadParameter("must start with http(s)://")
    return value


def _validate_max(ctx: click.Context, param: click.Parameter, value: str) -> str:
    try:
        size = parse_size(value)
    except ValueError as exc:
        raise click.BadParameter(f"invalid size {value!r}: {exc}") from exc
    if size <= 0:
        raise click.BadParameter("must be > 0")
    return value


def _setup_logging(debug: bool) -> None:
    from inetspeed.display import console

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # httpx/httpcore are chatty at DEBUG; keep them at INFO.
    for name in ("httpx", "httpcore", "hpack"):
        logging.getLogger(name).setLevel(logging.INFO)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--dl-url", envvar="DL_URL", default=DEFAULT_DL_URL, callback=_validate_url,
              help="Download test URL", show_default=True)
@click.option("--ul-url", envvar="UL_URL", default=DEFAULT_UL_URL, callback=_validate_url,
              help="Upload test URL", show_default=True)
@click.option("--latency-url", envvar="LATENCY_URL", default=DEFAULT_LATENCY_URL, callback=_validate_url,
              help="Latency test URL", show_default=True)
@click.option("--max", "max_", envvar="MAX", default=DEFAULT_MAX, callback=_validate_max,
              help="Per-thread transfer cap, e.g. 2G/500M/1GiB", show_default=True)
@click.option("--timeout", envvar="TIMEOUT", default=DEFAULT_TIMEOUT, type=click.IntRange(1, MAX_TIMEOUT),
              help="Per-thread timeout in seconds", show_default=True)
@click.option("--threads", envvar="THREADS", default=DEFAULT_THREADS, type=click.IntRange(1, MAX_THREADS),
              help="Concurrent threads", show_default=True)
@click.option("--latency-count", envvar="LATENCY_COUNT", default=DEFAULT_LATENCY_COUNT,
              type=click.IntRange(1, MAX_LATENCY_COUNT), help="Latency sample count", show_default=True)
@click.option("--lang", envvar="SPEEDTEST_LANG", default=None,
              help="Output language: zh for Chinese, others for English [default: from LC_ALL/LANG]")
@click.option("--debug", is_flag=True, help="Log debug details to stderr")
@click.version_option(__version__, "-v", "--version")
def main(
    dl_url: str,
    ul_url: str,
    latency_url: str,
    max_: str,
    timeout: int,
    threads: int,
    latency_count: int,
    lang: str | None,
    debug: bool,
) -> None:
    """inetspeed: network speed test.

    Measures idle and loaded latency and single/multi-thread download and
    upload throughput, optionally pinned to an endpoint chosen via dual
    DNS-over-HTTPS.
    """
    _setup_logging(debug)

    config = SpeedtestConfig(
        dl_url=dl_url,
        ul_url=ul_url,
        latency_url=latency_url,
        max=max_,
        max_bytes=parse_size(max_),
        timeout=timeout,
        threads=threads,
        latency_count=latency_count,
        lang=resolve(lang),
    )

    try:
        code = asyncio.run(_run(config))
    except KeyboardInterrupt:
        from inetspeed.display import console
        console.print("\n[yellow]Interrupted.[/yellow]")
        code = 130

    sys.exit(code)


async def _run(config: SpeedtestConfig) -> int:
    """Wire signals to the cancel event and run the pipeline."""
    from inetspeed.display import is_tty, new_bus
    from inetspeed.runner import run

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # No loop signal support (Windows): Ctrl+C raises KeyboardInterrupt.
            pass

    interactive = is_tty()
    bus = new_bus(interactive)
    try:
        return await run(config, bus, interactive, cancel)
    finally:
        bus.close()
        for sig in installed:
            loop.remove_signal_handler(sig)


if __name__ == "__main__":
    main()
