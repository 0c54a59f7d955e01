"""Destination policy: decide whether a URL may be contacted at all.

The check is made against the literal hostname or IP literal in the URL.
No DNS resolution happens here, so a public name that resolves to a private
address is not caught by this layer.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple, Union
from urllib.parse import urlsplit

from .fetcher_utils import idna_normalize
from .proxy_config import (
    ALLOWED_SCHEMES,
    DENIED_HOST_SUFFIXES,
    DENIED_HOSTS,
    DENIED_NETWORKS,
)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# Shorthand IPv4 spellings (127.1, 2130706433, 0x7f.0.0.1) that resolvers accept
_LEGACY_IPV4 = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$")


@dataclass(frozen=True)
class DestinationVerdict:
    blocked: bool
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return not self.blocked


ALLOWED = DestinationVerdict(blocked=False)


def _blocked(reason: str) -> DestinationVerdict:
    return DestinationVerdict(blocked=True, reason=reason)


def _parse_ip(host: str) -> Optional[IPAddress]:
    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        if not _LEGACY_IPV4.match(host):
            return None
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


class DestinationGuard:
    """Classifies absolute URLs as allowed or blocked.

    Holds only immutable deny tables; ``classify`` is a pure function of its
    input and safe to share across concurrent requests.
    """

    def __init__(
        self,
        denied_hosts: Iterable[str] = DENIED_HOSTS,
        denied_networks: Iterable[str] = DENIED_NETWORKS,
        denied_suffixes: Iterable[str] = DENIED_HOST_SUFFIXES,
        extra_denied_hosts: Iterable[str] = (),
    ) -> None:
        hosts = {idna_normalize(h) for h in denied_hosts}
        hosts.update(idna_normalize(h) for h in extra_denied_hosts)
        hosts.discard("")
        self.denied_hosts: FrozenSet[str] = frozenset(hosts)
        self.denied_networks: Tuple[IPNetwork, ...] = tuple(
            ipaddress.ip_network(net) for net in denied_networks
        )
        self.denied_suffixes: Tuple[str, ...] = tuple(s.lower() for s in denied_suffixes)

    def classify(self, url: Optional[str]) -> DestinationVerdict:
        raw = (url or "").strip()
        if not raw:
            return _blocked("empty_url")
        try:
            parts = urlsplit(raw)
            hostname = parts.hostname
            parts.port
        except ValueError:
            return _blocked("unparsable_url")
        scheme = (parts.scheme or "").lower()
        if not scheme:
            return _blocked("missing_scheme")
        if scheme not in ALLOWED_SCHEMES:
            return _blocked(f"scheme_{scheme}")
        host = idna_normalize(hostname or "")
        if not host:
            return _blocked("missing_host")
        return self.classify_host(host)

    def classify_host(self, host: str) -> DestinationVerdict:
        host = idna_normalize(host)
        if host in self.denied_hosts:
            return _blocked(f"denied_host:{host}")
        if any(host.endswith(suffix) for suffix in self.denied_suffixes):
            return _blocked(f"denied_suffix:{host}")
        ip = _parse_ip(host)
        if ip is None:
            return ALLOWED
        if str(ip) in self.denied_hosts:
            return _blocked(f"denied_host:{ip}")
        for network in self.denied_networks:
            if ip.version == network.version and ip in network:
                return _blocked(f"denied_network:{network}")
        return ALLOWED

    def is_blocked(self, url: Optional[str]) -> bool:
        return self.classify(url).blocked


DEFAULT_GUARD = DestinationGuard()


def classify(url: Optional[str]) -> DestinationVerdict:
    """Classify ``url`` with the default deny tables."""

    return DEFAULT_GUARD.classify(url)


def is_blocked(url: Optional[str]) -> bool:
    return DEFAULT_GUARD.is_blocked(url)


__all__ = [
    "ALLOWED",
    "DEFAULT_GUARD",
    "DestinationGuard",
    "DestinationVerdict",
    "classify",
    "is_blocked",
]
