"""Process-wide settings, read once at startup and never mutated."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .destination_guard import DestinationGuard
from .fetcher_utils import env_float, env_int, split_env_list
from .guarded_fetch import FetchConfig
from .proxy_config import (
    DEFAULT_HOST,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    SEARCH_ENDPOINT,
)


@dataclass(frozen=True)
class ProxySettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    search_endpoint: str = SEARCH_ENDPOINT
    user_agent: str = DEFAULT_USER_AGENT
    extra_denied_hosts: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port must be within 1-65535, got {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_redirects < 0:
            raise ValueError(f"max_redirects cannot be negative, got {self.max_redirects}")

    @classmethod
    def from_env(cls, **overrides: Any) -> "ProxySettings":
        """Build settings from PROXY_* variables; non-None overrides win."""

        values: Dict[str, Any] = {
            "host": os.getenv("PROXY_HOST", "").strip() or DEFAULT_HOST,
            "port": env_int("PROXY_PORT", "PORT", default=DEFAULT_PORT),
            "timeout": env_float("PROXY_TIMEOUT", DEFAULT_TIMEOUT),
            "max_redirects": env_int("PROXY_MAX_REDIRECTS", default=DEFAULT_MAX_REDIRECTS),
            "search_endpoint": os.getenv("PROXY_SEARCH_URL", "").strip() or SEARCH_ENDPOINT,
            "user_agent": os.getenv("PROXY_USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
            "extra_denied_hosts": split_env_list(os.getenv("PROXY_DENY_HOSTS", ""), lower=True),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def fetch_config(self) -> FetchConfig:
        return FetchConfig(timeout=self.timeout, max_redirects=self.max_redirects)

    def build_guard(self) -> DestinationGuard:
        return DestinationGuard(extra_denied_hosts=self.extra_denied_hosts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "timeout": self.timeout,
            "max_redirects": self.max_redirects,
            "search_endpoint": self.search_endpoint,
            "user_agent": self.user_agent,
            "extra_denied_hosts": list(self.extra_denied_hosts),
        }


__all__ = ["ProxySettings"]
