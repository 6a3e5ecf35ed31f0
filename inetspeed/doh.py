"""Dual-provider DNS-over-HTTPS resolution.

Cloudflare (JSON, ``application/dns-json``) and AliDNS (``short=1`` list)
are each asked for A and AAAA records, four concurrent sub-queries in all.
Results are merged in the fixed slot order CF-A, CF-AAAA, Ali-A, Ali-AAAA,
deduplicated by first appearance.  A provider counts as timed out only when
both of its sub-queries timed out.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import httpx

from inetspeed.config import ALI_DOH_URL, CF_DOH_URL, DOH_TIMEOUT, USER_AGENT
from inetspeed.models import DoHQueryResult, DualResolution

logger = logging.getLogger(__name__)

_IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
_IPV6_RE = re.compile(r"(?:[0-9a-f]{0,4}:){2,7}[0-9a-f]{0,4}", re.IGNORECASE)


@dataclass(frozen=True)
class DoHProvider:
    """A DoH service and how to query it."""

    name: str
    url_template: str
    headers: dict[str, str] = field(default_factory=dict)

    def url(self, host: str, rtype: str) -> str:
        return self.url_template.format(host=host, rtype=rtype)


CLOUDFLARE = DoHProvider(
    name="cloudflare",
    url_template=CF_DOH_URL,
    headers={"Accept": "application/dns-json"},
)
ALIDNS = DoHProvider(name="alidns", url_template=ALI_DOH_URL)


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _dedup_valid(candidates: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for ip in candidates:
        if ip in seen or not _is_ip(ip):
            continue
        seen.add(ip)
        out.append(ip)
    return out


def extract_ips_from_body(body: bytes | str) -> list[str]:
    """Pull IP addresses out of a DoH response body.

    The ``{"Answer": [{"data": ...}]}`` structure is tried first.  If it
    yields nothing, IPv4 and IPv6 candidates are matched in the raw text
    and kept in the order they appear.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

    try:
        doc = json.loads(text)
    except ValueError:
        doc = None
    if isinstance(doc, dict) and isinstance(doc.get("Answer"), list):
        answers = [
            str(a.get("data", "")).strip()
            for a in doc["Answer"]
            if isinstance(a, dict)
        ]
        ips = _dedup_valid(answers)
        if ips:
            return ips

    matches = [(m.start(), m.group()) for m in _IPV4_RE.finditer(text)]
    matches += [(m.start(), m.group()) for m in _IPV6_RE.finditer(text)]
    matches.sort(key=lambda m: m[0])
    return _dedup_valid(ip for _, ip in matches)


def merge_ips(*lists: Sequence[str]) -> list[str]:
    """Concatenate IP lists in order, dropping duplicates and non-IPs."""
    return _dedup_valid(ip for lst in lists for ip in lst)


async def _fetch(client: httpx.AsyncClient, url: str, headers: dict[str, str]) -> DoHQueryResult:
    response = await client.get(url, headers={"User-Agent": USER_AGENT, **headers})
    if response.status_code != 200:
        return DoHQueryResult(error=f"HTTP {response.status_code}")
    return DoHQueryResult(ips=extract_ips_from_body(response.content))


async def query_doh(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str] | None = None,
    timeout: float = DOH_TIMEOUT,
) -> DoHQueryResult:
    """Run one DoH sub-query.  Never raises."""
    try:
        return await asyncio.wait_for(_fetch(client, url, headers or {}), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug("DoH query %s timed out", url)
        return DoHQueryResult(timed_out=True, error="timeout")
    except httpx.TimeoutException as exc:
        logger.debug("DoH query %s timed out: %s", url, exc)
        return DoHQueryResult(timed_out=True, error=str(exc) or "timeout")
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        logger.debug("DoH query %s failed: %s", url, exc)
        return DoHQueryResult(error=str(exc) or type(exc).__name__)


async def resolve_doh_dual(
    client: httpx.AsyncClient,
    host: str,
    providers: tuple[DoHProvider, DoHProvider] = (CLOUDFLARE, ALIDNS),
    timeout: float = DOH_TIMEOUT,
) -> DualResolution:
    """Resolve *host* through both providers, A and AAAA, concurrently."""
    cf, ali = providers
    cf_a, cf_aaaa, ali_a, ali_aaaa = await asyncio.gather(
        query_doh(client, cf.url(host, "A"), cf.headers, timeout),
        query_doh(client, cf.url(host, "AAAA"), cf.headers, timeout),
        query_doh(client, ali.url(host, "A"), ali.headers, timeout),
        query_doh(client, ali.url(host, "AAAA"), ali.headers, timeout),
    )

    for label, res in (("cf-a", cf_a), ("cf-aaaa", cf_aaaa), ("ali-a", ali_a), ("ali-aaaa", ali_aaaa)):
        logger.debug("DoH %s for %s: ips=%s timed_out=%s error=%s",
                     label, host, res.ips, res.timed_out, res.error)

    return DualResolution(
        ips=merge_ips(cf_a.ips, cf_aaaa.ips, ali_a.ips, ali_aaaa.ips),
        cf_timed_out=cf_a.timed_out and cf_aaaa.timed_out,
        ali_timed_out=ali_a.timed_out and ali_aaaa.timed_out,
    )
