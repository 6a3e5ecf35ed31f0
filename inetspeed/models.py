"""Data models for inetspeed."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from inetspeed.i18n import LANG_EN, Locale


@dataclass
class LatencyStats:
    """Aggregated statistics over latency samples (milliseconds)."""

    min: float = 0.0
    avg: float = 0.0
    median: float = 0.0
    max: float = 0.0
    jitter: float = 0.0
    n: int = 0


@dataclass(frozen=True)
class Endpoint:
    """A resolved server address chosen for connection pinning.

    An empty ``ip`` means no pinning: connections use default DNS.
    """

    ip: str = ""
    description: str = ""


@dataclass
class IPInfo:
    """ip-api.com lookup result.  All fields empty when the lookup failed."""

    status: str = ""
    query: str = ""
    as_: str = ""
    isp: str = ""
    org: str = ""
    city: str = ""
    region_name: str = ""
    country: str = ""


@dataclass
class DoHQueryResult:
    """Outcome of a single DNS-over-HTTPS sub-query."""

    ips: list[str] = field(default_factory=list)
    timed_out: bool = False
    error: Optional[str] = None


@dataclass
class DualResolution:
    """Merged result of the four DoH sub-queries."""

    ips: list[str] = field(default_factory=list)
    cf_timed_out: bool = False
    ali_timed_out: bool = False

    @property
    def both_timed_out(self) -> bool:
        return self.cf_timed_out and self.ali_timed_out


class Direction(enum.Enum):
    DOWNLOAD = "Download"
    UPLOAD = "Upload"

    def __str__(self) -> str:
        return self.value


@dataclass
class TransferResult:
    """Aggregate outcome of one transfer round."""

    direction: Direction
    threads: int
    total_bytes: int = 0
    duration: float = 0.0  # seconds
    mbps: float = 0.0


@dataclass
class SpeedtestConfig:
    """Configuration for a measurement run."""

    dl_url: str = ""
    ul_url: str = ""
    latency_url: str = ""
    max: str = "2G"
    max_bytes: int = 2_000_000_000
    timeout: int = 10  # per-thread, seconds
    threads: int = 4
    latency_count: int = 20
    lang: str = LANG_EN

    @property
    def locale(self) -> Locale:
        return Locale(self.lang)

    def summary(self, locale: Locale) -> str:
        return locale.text(
            f"timeout={self.timeout}s  max={self.max}  threads={self.threads}  "
            f"latency_count={self.latency_count}",
            f"超时={self.timeout}s  上限={self.max}  线程={self.threads}  "
            f"延迟采样={self.latency_count}",
        )
