"""inetspeed: network speed test with DoH endpoint pinning."""

__version__ = "0.1.0"
