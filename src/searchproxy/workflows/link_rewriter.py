"""Rewrite outbound references in an HTML document so they route through the proxy.

Every pass resolves an attribute against the document's base URL and wraps the
result in a proxy-resource reference (``/fetch?url=...``). Passes differ only in
their selector, the attribute they touch, what they exempt and what they do
after wrapping, so they share one routine driven by ``RewriteRule`` entries.

Rewriting is not idempotent: a proxy-resource reference is itself a valid
relative URL and would be wrapped again. Run it exactly once per fetched
document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from ..core.keys import K_URL
from .fetcher_utils import proxy_reference, resolve_url
from .html_normalize import parse_document
from .proxy_config import FETCH_ROUTE, INDEX_ROUTE, SEARCH_ENDPOINT, SEARCH_ROUTE

logger = logging.getLogger(__name__)

EXEMPT_ANCHOR_SCHEMES = frozenset({"javascript", "mailto"})

BANNER_STYLE = "background:#f7f7f7;border-bottom:1px solid #ddd;padding:6px;font-size:14px;"


@dataclass(frozen=True)
class RewriteContext:
    base_url: str
    search_endpoint: str = SEARCH_ENDPOINT


Applier = Callable[[Tag, str, str, RewriteContext], None]


def _never(resolved: str) -> bool:
    return False


def _exempt_anchor(resolved: str) -> bool:
    scheme = resolved.split(":", 1)[0].strip().lower()
    return scheme in EXEMPT_ANCHOR_SCHEMES


def _wrap(tag: Tag, attribute: str, resolved: str, ctx: RewriteContext) -> None:
    tag[attribute] = proxy_reference(resolved)


def _wrap_same_tab(tag: Tag, attribute: str, resolved: str, ctx: RewriteContext) -> None:
    _wrap(tag, attribute, resolved, ctx)
    tag["target"] = "_self"


def _endpoint_key(url: str) -> Optional[Tuple[str, str, Optional[int], str]]:
    try:
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        port = parts.port or {"http": 80, "https": 443}.get(scheme)
        return scheme, (parts.hostname or "").lower(), port, parts.path or "/"
    except ValueError:
        return None


def targets_endpoint(url: str, endpoint: str) -> bool:
    """True when ``url`` points at ``endpoint`` (query and fragment ignored)."""

    key = _endpoint_key(url)
    return key is not None and key == _endpoint_key(endpoint)


def _route_form(tag: Tag, attribute: str, resolved: str, ctx: RewriteContext) -> None:
    if targets_endpoint(resolved, ctx.search_endpoint):
        # Search resubmissions re-enter the rewriting pipeline
        tag[attribute] = SEARCH_ROUTE
        tag["method"] = "GET"
        return
    method = str(tag.get("method") or "").strip().upper() or "GET"
    tag["method"] = method
    if method != "GET":
        tag[attribute] = proxy_reference(resolved)
        return
    # A GET submission replaces the action's query, so the target rides in a field
    tag[attribute] = FETCH_ROUTE
    hidden = Tag(
        name="input",
        attrs={"type": "hidden", "name": K_URL, "value": resolved},
        can_be_empty_element=True,
    )
    tag.insert(0, hidden)


@dataclass(frozen=True)
class RewriteRule:
    """How one element type is resolved and wrapped.

    ``default_to_base`` makes a missing or empty attribute resolve to the
    document's base URL instead of being skipped.
    """

    name: str
    selector: str
    attribute: str
    exempt: Callable[[str], bool] = _never
    apply: Applier = _wrap
    default_to_base: bool = False


RULES: Tuple[RewriteRule, ...] = (
    RewriteRule("anchors", "a[href]", "href", exempt=_exempt_anchor, apply=_wrap_same_tab),
    RewriteRule("images", "img[src]", "src"),
    RewriteRule("stylesheets", 'link[rel~="stylesheet" i][href]', "href"),
    RewriteRule("scripts", "script[src]", "src"),
    RewriteRule("forms", "form", "action", apply=_route_form, default_to_base=True),
)


def _attribute_text(tag: Tag, attribute: str) -> str:
    value = tag.get(attribute)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def rewrite_element(tag: Tag, rule: RewriteRule, ctx: RewriteContext) -> bool:
    """Resolve-and-wrap one element; returns False when it was left untouched."""

    raw = _attribute_text(tag, rule.attribute)
    if raw:
        resolved = resolve_url(ctx.base_url, raw)
    elif rule.default_to_base:
        resolved = ctx.base_url
    else:
        return False
    if resolved is None or rule.exempt(resolved):
        return False
    rule.apply(tag, rule.attribute, resolved, ctx)
    return True


def inject_banner(soup: BeautifulSoup, query: str) -> Tag:
    """Insert the results banner as the first child of ``<body>``."""

    banner = soup.new_tag("div", attrs={"class": "searchproxy-banner", "style": BANNER_STYLE})
    banner.append("Proxy: showing results for ")
    strong = soup.new_tag("strong")
    strong.string = query
    banner.append(strong)
    banner.append(" - ")
    home = soup.new_tag("a", href=INDEX_ROUTE)
    home.string = "New search"
    banner.append(home)
    container = soup.body if soup.body is not None else soup
    container.insert(0, banner)
    return banner


def rewrite_document(
    base_url: str,
    soup: BeautifulSoup,
    *,
    search_endpoint: str = SEARCH_ENDPOINT,
    banner_query: Optional[str] = None,
    rules: Tuple[RewriteRule, ...] = RULES,
) -> Dict[str, int]:
    """Rewrite ``soup`` in place and return how many elements each rule changed."""

    ctx = RewriteContext(base_url=base_url, search_endpoint=search_endpoint)
    counts: Dict[str, int] = {}
    for rule in rules:
        changed = 0
        for tag in soup.select(rule.selector):
            if rewrite_element(tag, rule, ctx):
                changed += 1
        counts[rule.name] = changed
    if banner_query is not None:
        inject_banner(soup, banner_query)
    logger.debug("rewrote %s: %s", base_url, counts)
    return counts


def rewrite_html(
    base_url: str,
    html: str,
    *,
    search_endpoint: str = SEARCH_ENDPOINT,
    banner_query: Optional[str] = None,
) -> str:
    """Parse, rewrite and re-serialize ``html``.

    Raises UpstreamError when the markup cannot be parsed at all.
    """

    soup = parse_document(html)
    rewrite_document(base_url, soup, search_endpoint=search_endpoint, banner_query=banner_query)
    return str(soup)


__all__ = [
    "RULES",
    "RewriteContext",
    "RewriteRule",
    "inject_banner",
    "rewrite_document",
    "rewrite_element",
    "rewrite_html",
    "targets_endpoint",
]
