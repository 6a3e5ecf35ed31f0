"""IP geolocation / ASN lookups via ip-api.com."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from inetspeed.config import (
    IP_API_BASE,
    IP_DESC_FIELDS,
    IP_DESC_TIMEOUT,
    IP_INFO_FIELDS,
    IP_INFO_SELF_FIELDS,
    IP_INFO_TIMEOUT,
    LOOKUP_ATTEMPTS,
    LOOKUP_BACKOFF,
    USER_AGENT,
)
from inetspeed.i18n import Locale
from inetspeed.interrupt import is_cancelled, race, sleep
from inetspeed.models import IPInfo

logger = logging.getLogger(__name__)


class IPLookupError(Exception):
    """A single ip-api.com attempt did not produce a usable record."""


def build_ip_api_url(target: str, fields: str, locale: Locale) -> str:
    """Build an ip-api.com JSON URL; an empty *target* looks up the caller."""
    url = f"{IP_API_BASE}{target}?fields={fields}"
    if locale.is_zh:
        url += "&lang=zh-CN"
    return url


def _parse_ip_api(data: dict) -> IPInfo:
    """Parse an ip-api.com response."""
    return IPInfo(
        status=str(data.get("status") or ""),
        query=str(data.get("query") or ""),
        as_=str(data.get("as") or ""),
        isp=str(data.get("isp") or ""),
        org=str(data.get("org") or ""),
        city=str(data.get("city") or ""),
        region_name=str(data.get("regionName") or ""),
        country=str(data.get("country") or ""),
    )


async def _query_api(client: httpx.AsyncClient, url: str) -> IPInfo:
    resp = await client.get(url, headers={"User-Agent": USER_AGENT})
    if resp.status_code != 200:
        raise IPLookupError(f"HTTP {resp.status_code}")
    try:
        data = resp.json()
    except ValueError as exc:
        raise IPLookupError(f"malformed response: {exc}") from exc
    if not isinstance(data, dict):
        raise IPLookupError("malformed response: not an object")
    return _parse_ip_api(data)


async def _lookup_with_retries(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    require_success: bool,
    cancel: Optional[asyncio.Event],
) -> Optional[IPInfo]:
    """Try *url* up to LOOKUP_ATTEMPTS times with linear backoff.

    Returns None when every attempt failed or *cancel* fired.
    """
    for attempt in range(LOOKUP_ATTEMPTS):
        if attempt > 0 and not await sleep(attempt * LOOKUP_BACKOFF, cancel):
            return None
        if is_cancelled(cancel):
            return None
        try:
            finished, info = await race(_query_api(client, url), cancel, timeout=timeout)
        except (IPLookupError, httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            logger.debug("ip-api attempt %d for %s failed: %s", attempt + 1, url, exc)
            continue
        if not finished:
            if is_cancelled(cancel):
                return None
            logger.debug("ip-api attempt %d for %s timed out", attempt + 1, url)
            continue
        accepted = ("success",) if require_success else ("", "success")
        if info.status not in accepted:
            logger.debug("ip-api status for %s: %r", url, info.status)
            continue
        return info
    return None


def describe(info: IPInfo, locale: Locale) -> str:
    """Render ``City, Region, Country (AS...)`` for an endpoint listing."""
    loc = format_location(info)
    if loc == "?":
        loc = locale.text("unknown location", "未知位置")
    asn = info.as_ or info.org
    if asn:
        loc += f" ({asn})"
    return loc


async def fetch_ip_desc(
    client: httpx.AsyncClient,
    ip: str,
    locale: Locale,
    cancel: Optional[asyncio.Event] = None,
) -> str:
    """Best-effort one-line description of *ip*; never raises."""
    url = build_ip_api_url(ip, IP_DESC_FIELDS, locale)
    info = await _lookup_with_retries(client, url, IP_DESC_TIMEOUT, True, cancel)
    if info is None:
        return locale.text("lookup failed", "查询失败")
    return describe(info, locale)


async def fetch_info(
    client: httpx.AsyncClient,
    target: str,
    locale: Locale,
    cancel: Optional[asyncio.Event] = None,
) -> IPInfo:
    """Look up *target* (or the caller's own address when empty)."""
    fields = IP_INFO_FIELDS if target else IP_INFO_SELF_FIELDS
    url = build_ip_api_url(target, fields, locale)
    info = await _lookup_with_retries(client, url, IP_INFO_TIMEOUT, False, cancel)
    return info if info is not None else IPInfo()


def format_location(info: IPInfo) -> str:
    """Join city, region and country, or ``?`` when none is known."""
    parts = [info.city]
    if info.region_name and info.region_name != info.city:
        parts.append(info.region_name)
    parts.append(info.country)
    loc = ", ".join(p for p in parts if p)
    return loc or "?"
