"""Shared helper functions used by the guard, fetcher and rewriter."""

from __future__ import annotations

import os
from typing import List, Optional, Set, Tuple
from urllib.parse import quote, urljoin, urlsplit

from ..core.keys import K_URL
from .proxy_config import FETCH_ROUTE


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().strip("[]").rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except Exception:
        pass
    return h


def resolve_url(base: str, ref: Optional[str]) -> Optional[str]:
    """Resolve ``ref`` against ``base`` into an absolute URL.

    Returns None when the result is unparsable or has no scheme; callers
    leave the original value untouched in that case.
    """

    raw = (ref or "").strip()
    try:
        resolved = urljoin(base, raw) if base else raw
        parts = urlsplit(resolved)
        # Accessing .port validates it (ValueError on junk or out of range)
        parts.port
    except ValueError:
        return None
    if not parts.scheme:
        return None
    return resolved


def proxy_reference(url: str) -> str:
    """Return the proxy-local path that re-enters the fetcher for ``url``."""

    return f"{FETCH_ROUTE}?{K_URL}={quote(url, safe='')}"


def split_env_list(value: str, *, lower: bool = False) -> Tuple[str, ...]:
    tokens: List[str] = []
    for token in (value or "").split(","):
        cleaned = token.strip()
        if not cleaned:
            continue
        tokens.append(cleaned.lower() if lower else cleaned)
    # Preserve order but drop duplicates
    seen: Set[str] = set()
    ordered: List[str] = []
    for token in tokens:
        if token in seen:
            continue
        seen.add(token)
        ordered.append(token)
    return tuple(ordered)


def env_int(*names: str, default: int) -> int:
    """First parseable integer among ``names``; malformed values are skipped."""

    for name in names:
        raw = os.getenv(name, "")
        if not raw.strip():
            continue
        try:
            return int(raw.strip())
        except ValueError:
            continue
    return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM.") == "example.com"
    assert idna_normalize("[::1]") == "::1"
    assert resolve_url("https://example.com/lite/", "/img/a.png") == "https://example.com/img/a.png"
    assert resolve_url("https://example.com/", "http://[::1") is None
    assert proxy_reference("https://a.b/?q=1") == "/fetch?url=https%3A%2F%2Fa.b%2F%3Fq%3D1"
    assert split_env_list("A, b,,a", lower=True) == ("a", "b")


sanity_check()

__all__ = [
    "idna_normalize",
    "resolve_url",
    "proxy_reference",
    "split_env_list",
    "env_int",
    "env_float",
    "sanity_check",
]
