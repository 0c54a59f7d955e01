"""Shared parameter and header keys to avoid magic strings across modules."""

from __future__ import annotations

# Query/form parameters understood by the front end
K_URL = "url"
K_QUERY = "q"

# Header names (lower-case; aiohttp lookups are case-insensitive)
HDR_USER_AGENT = "user-agent"
HDR_ACCEPT = "accept"
HDR_CONTENT_TYPE = "content-type"
HDR_CONTENT_LENGTH = "content-length"
HDR_LOCATION = "location"
HDR_CACHE_CONTROL = "cache-control"
HDR_LAST_MODIFIED = "last-modified"
HDR_ETAG = "etag"
