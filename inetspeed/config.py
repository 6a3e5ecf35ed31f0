"""Constants and configuration for inetspeed."""

from __future__ import annotations

import re

# Default measurement endpoints
DEFAULT_DL_URL = "https://mensura.cdn-apple.com/api/v1/gm/large"
DEFAULT_UL_URL = "https://mensura.cdn-apple.com/api/v1/gm/slurp"
DEFAULT_LATENCY_URL = "https://mensura.cdn-apple.com/api/v1/gm/small"

# Default measurement settings
DEFAULT_MAX = "2G"
DEFAULT_TIMEOUT = 10
DEFAULT_THREADS = 4
DEFAULT_LATENCY_COUNT = 20

# Accepted ranges for CLI / env values
MAX_TIMEOUT = 120
MAX_THREADS = 64
MAX_LATENCY_COUNT = 100

# User agent for measurement requests
USER_AGENT = "networkQuality/194.80.3 CFNetwork/3860.400.51 Darwin/25.3.0"

# Headers shared by every measurement request
REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "zh-CN,zh-Hans;q=0.9",
    "Accept-Encoding": "identity",
}

# Transfer engine
CHUNK_SIZE = 256 * 1024
PROGRESS_INTERVAL = 0.5  # seconds between progress events
DEADLINE_GRACE = 2.0  # added to the per-thread timeout for the overall deadline
CLIENT_TIMEOUT_MARGIN = 5  # seconds added to the per-thread timeout for the client

# Latency prober
PROBE_TIMEOUT = 3.0

# DNS-over-HTTPS providers
CF_DOH_URL = "https://cloudflare-dns.com/dns-query?name={host}&type={rtype}"
ALI_DOH_URL = "https://dns.alidns.com/resolve?name={host}&type={rtype}&short=1"
DOH_TIMEOUT = 1.0

# IP information lookups (ip-api.com)
IP_API_BASE = "http://ip-api.com/json/"
IP_DESC_FIELDS = "status,city,regionName,country,as,org"
IP_INFO_SELF_FIELDS = "status,query,as,isp,city,regionName,country"
IP_INFO_FIELDS = "status,query,as,isp,org,city,regionName,country"
IP_DESC_TIMEOUT = 4.0
IP_INFO_TIMEOUT = 5.0
LOOKUP_ATTEMPTS = 3
LOOKUP_BACKOFF = 0.5  # multiplied by the attempt number

_SIZE_RE = re.compile(r"^\s*([\d.]+)\s*([a-z]*)\s*$", re.IGNORECASE)

_SIZE_UNITS = {
    "k": 1000,
    "kb": 1000,
    "m": 1000**2,
    "mb": 1000**2,
    "g": 1000**3,
    "gb": 1000**3,
    "t": 1000**4,
    "tb": 1000**4,
    "kib": 1024,
    "mib": 1024**2,
    "gib": 1024**3,
    "tib": 1024**4,
}


def parse_size(text: str) -> int:
    """Parse a size such as ``2G``, ``500M`` or ``1GiB`` into bytes.

    Decimal units (k, m, g, t with optional ``b``) use powers of 1000,
    binary units (kib, mib, gib, tib) powers of 1024.  A bare number is
    a byte count.

    Raises
    ------
    ValueError
        When the text is not a number followed by a known unit.
    """
    m = _SIZE_RE.match(text)
    if m is None:
        raise ValueError(f"cannot parse size {text!r}")
    num = float(m.group(1))
    unit = m.group(2).lower()
    if not unit:
        return int(num)
    if unit not in _SIZE_UNITS:
        raise ValueError(f"unknown unit {unit!r}")
    return int(num * _SIZE_UNITS[unit])


def human_bytes(n: int) -> str:
    """Format a byte count with binary units."""
    if n >= 1 << 30:
        return f"{n / (1 << 30):.2f} GiB"
    if n >= 1 << 20:
        return f"{n / (1 << 20):.1f} MiB"
    if n >= 1 << 10:
        return f"{n / (1 << 10):.0f} KiB"
    return f"{n} B"
