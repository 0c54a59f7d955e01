"""Proxy defaults (endpoints, headers, deny sets, limits).

Centralizes static defaults so the guard, fetcher and server have no embedded
magic strings. These are baseline constants used to construct settings;
callers can pass their own values to override any of them.
"""

from __future__ import annotations

from ..core.keys import (
    HDR_ACCEPT,
    HDR_CACHE_CONTROL,
    HDR_CONTENT_LENGTH,
    HDR_CONTENT_TYPE,
    HDR_ETAG,
    HDR_LAST_MODIFIED,
    HDR_USER_AGENT,
)

# Endpoints / routes
SEARCH_ENDPOINT = "https://lite.duckduckgo.com/lite/"
FETCH_ROUTE = "/fetch"
SEARCH_ROUTE = "/search"
INDEX_ROUTE = "/"

# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 10000
DEFAULT_TIMEOUT = 20.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_USER_AGENT = "searchproxy"

# Headers copied from the client onto the upstream request
FORWARDED_REQUEST_HEADERS = (HDR_USER_AGENT, HDR_ACCEPT)

# Upstream response headers relayed to the client; everything else is dropped
RELAYED_RESPONSE_HEADERS = (
    HDR_CACHE_CONTROL,
    HDR_CONTENT_LENGTH,
    HDR_CONTENT_TYPE,
    HDR_LAST_MODIFIED,
    HDR_ETAG,
)

BODYLESS_METHODS = frozenset({"GET", "HEAD"})

ALLOWED_SCHEMES = frozenset({"http", "https"})

# Literal hostnames that are never contacted
DENIED_HOSTS = frozenset({
    "localhost",
    "0.0.0.0",
    "169.254.169.254",
    # Cloud metadata services
    "metadata",
    "metadata.google.internal",
    "metadata.goog",
    "metadata.azure.com",
    "instance-data",
    "instance-data.ec2.internal",
})

DENIED_HOST_SUFFIXES = (".localhost",)

# Loopback, private, link-local and unique-local ranges
DENIED_NETWORKS = (
    "0.0.0.0/8",
    "127.0.0.0/8",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "169.254.0.0/16",
    "::1/128",
    "fe80::/10",
    "fc00::/7",
)
