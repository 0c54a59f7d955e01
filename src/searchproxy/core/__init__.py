"""Core schema helpers for searchproxy."""

from .keys import *  # noqa: F401,F403 re-export stable keys
from .errors import (
    BlockedDestination,
    FetchError,
    FetchTimeout,
    InvalidInput,
    InvalidUrl,
    NetworkError,
    ProxyError,
    TooManyRedirects,
    UpstreamError,
)

__all__ = [name for name in globals() if name.startswith(("K_", "HDR_"))] + [
    "BlockedDestination",
    "FetchError",
    "FetchTimeout",
    "InvalidInput",
    "InvalidUrl",
    "NetworkError",
    "ProxyError",
    "TooManyRedirects",
    "UpstreamError",
]
