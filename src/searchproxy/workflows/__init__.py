"""High-level exports for the proxy workflows."""

from .destination_guard import DestinationGuard, DestinationVerdict, classify, is_blocked
from .guarded_fetch import (
    FetchConfig,
    FetchRequest,
    FetchResult,
    GuardedFetcher,
    filter_response_headers,
    forwardable_headers,
)
from .link_rewriter import RewriteRule, rewrite_document, rewrite_html
from .settings import ProxySettings

__all__ = [
    "DestinationGuard",
    "DestinationVerdict",
    "classify",
    "is_blocked",
    "FetchConfig",
    "FetchRequest",
    "FetchResult",
    "GuardedFetcher",
    "filter_response_headers",
    "forwardable_headers",
    "RewriteRule",
    "rewrite_document",
    "rewrite_html",
    "ProxySettings",
]
