"""HTTP front end: maps client requests onto the guarded fetcher and rewriter.

Routes:
  GET  /                 landing page with a search box
  GET|POST /search?q=..  upstream search, HTML rewritten to stay in the proxy
  *    /fetch?url=..     guarded resource fetch, relayed with filtered headers
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Iterable, Optional, Tuple
from urllib.parse import quote, urlencode, urlsplit

from aiohttp import web

from .core.errors import InvalidInput, ProxyError, UpstreamError
from .core.keys import HDR_CONTENT_LENGTH, HDR_USER_AGENT, K_QUERY, K_URL
from .workflows.guarded_fetch import FetchResult, GuardedFetcher
from .workflows.html_normalize import decode_bytes_auto
from .workflows.link_rewriter import rewrite_html
from .workflows.proxy_config import BODYLESS_METHODS, FETCH_ROUTE, INDEX_ROUTE, SEARCH_ROUTE
from .workflows.settings import ProxySettings

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("searchproxy.access")

SETTINGS_KEY = web.AppKey("settings", ProxySettings)
FETCHER_KEY = web.AppKey("fetcher", GuardedFetcher)

ACCESS_LOG_FORMAT = '%a "%r" %s %b - %Tf'

FORM_CONTENT_TYPES = {"application/x-www-form-urlencoded", "multipart/form-data"}

INDEX_HTML = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>searchproxy</title></head>
<body>
<form action="/search" method="GET">
  <input type="text" name="q" autofocus>
  <button type="submit">Search</button>
</form>
</body>
</html>
"""


def append_query(url: str, params: Iterable[Tuple[str, str]]) -> str:
    """Append URL-encoded ``params`` onto ``url``, keeping its existing query."""

    query = urlencode(list(params), quote_via=quote)
    if not query:
        return url
    joiner = "&" if "?" in url else "?"
    return f"{url}{joiner}{query}"


def relay_response(result: FetchResult) -> web.Response:
    headers = result.relay_headers()
    if HDR_CONTENT_LENGTH in headers and result.method != "HEAD":
        # Upstream length may describe a compressed payload; we relay the decoded bytes
        headers[HDR_CONTENT_LENGTH] = str(len(result.body))
    return web.Response(status=result.status, body=result.body, headers=headers)


async def _client_body(request: web.Request) -> Tuple[Optional[bytes], Optional[str]]:
    """Re-encode the client's body for the upstream request."""

    if not request.body_exists:
        return None, None
    if request.content_type == "application/json":
        try:
            data = await request.json()
        except ValueError as exc:
            raise InvalidInput("Malformed JSON body") from exc
        return json.dumps(data).encode("utf-8"), "application/json"
    if request.content_type in FORM_CONTENT_TYPES:
        form = await request.post()
        pairs = [(key, value) for key, value in form.items() if isinstance(value, str)]
        return urlencode(pairs).encode("utf-8"), "application/x-www-form-urlencoded"
    raw = await request.read()
    return raw, request.headers.get("Content-Type")


@web.middleware
async def error_boundary(request: web.Request, handler) -> web.StreamResponse:
    """Turn every failure of a single request into a response; never crash."""

    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ProxyError as exc:
        if exc.client_error:
            logger.info("rejected %s %s: %s", request.method, request.path_qs, exc)
        else:
            logger.warning("fetch failed for %s: %s", exc.url or request.path_qs, exc)
        return web.Response(status=exc.status, text=exc.client_message)
    except Exception:
        logger.exception("unhandled error serving %s %s", request.method, request.path_qs)
        return web.Response(status=500, text="Internal proxy error")


async def handle_index(request: web.Request) -> web.Response:
    return web.Response(text=INDEX_HTML, content_type="text/html")


def fetch_target(request: web.Request) -> str:
    """Absolute target URL of a /fetch request.

    Parameters other than ``url`` come from proxied GET forms and are
    appended to the target's own query string.
    """

    target = request.query.get(K_URL, "").strip()
    if not target:
        raise InvalidInput("Missing url")
    try:
        parts = urlsplit(target)
        parts.port
    except ValueError as exc:
        raise InvalidInput("Invalid url") from exc
    if not parts.scheme or not parts.hostname:
        raise InvalidInput("Invalid url")
    extra = [(key, value) for key, value in request.query.items() if key != K_URL]
    return append_query(target, extra)


async def handle_fetch(request: web.Request) -> web.Response:
    target = fetch_target(request)
    body: Optional[bytes] = None
    content_type: Optional[str] = None
    if request.method not in BODYLESS_METHODS:
        body, content_type = await _client_body(request)
    fetcher = request.app[FETCHER_KEY]
    result = await fetcher.fetch(
        target,
        method=request.method,
        headers=request.headers,
        body=body,
        content_type=content_type,
    )
    return relay_response(result)


async def handle_search(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    params = [(key, value) for key, value in request.query.items()]
    if request.method == "POST":
        form = await request.post()
        params.extend((key, value) for key, value in form.items() if isinstance(value, str))
    query = next((value.strip() for key, value in params if key == K_QUERY), "")
    if not query:
        raise web.HTTPFound(INDEX_ROUTE)

    upstream_url = append_query(settings.search_endpoint, params)
    user_agent = request.headers.get(HDR_USER_AGENT) or settings.user_agent
    fetcher = request.app[FETCHER_KEY]
    result = await fetcher.fetch(upstream_url, headers={HDR_USER_AGENT: user_agent})
    text = decode_bytes_auto(result.body, result.headers)
    try:
        html = rewrite_html(
            result.url,
            text,
            search_endpoint=settings.search_endpoint,
            banner_query=query,
        )
    except UpstreamError as exc:
        logger.warning("relaying search results unrewritten: %s", exc)
        html = text
    return web.Response(status=result.status, text=html, content_type="text/html")


def _fetcher_context(settings: ProxySettings):
    async def _ctx(app: web.Application) -> AsyncIterator[None]:
        fetcher = GuardedFetcher(settings.fetch_config(), guard=settings.build_guard())
        await fetcher.open()
        app[FETCHER_KEY] = fetcher
        yield
        await fetcher.close()

    return _ctx


def create_app(
    settings: Optional[ProxySettings] = None,
    fetcher: Optional[GuardedFetcher] = None,
) -> web.Application:
    """Create the proxy application.

    When ``fetcher`` is None a GuardedFetcher owning its own client session is
    opened on startup and closed on cleanup.
    """

    settings = settings or ProxySettings.from_env()
    app = web.Application(middlewares=[error_boundary])
    app[SETTINGS_KEY] = settings
    if fetcher is not None:
        app[FETCHER_KEY] = fetcher
    else:
        app.cleanup_ctx.append(_fetcher_context(settings))
    app.router.add_get(INDEX_ROUTE, handle_index)
    app.router.add_get(SEARCH_ROUTE, handle_search)
    app.router.add_post(SEARCH_ROUTE, handle_search)
    app.router.add_route("*", FETCH_ROUTE, handle_fetch)
    return app


def run_server(settings: ProxySettings) -> None:
    app = create_app(settings)
    logger.info(
        "searchproxy listening on %s:%s (timeout=%ss, max_redirects=%s)",
        settings.host,
        settings.port,
        settings.timeout,
        settings.max_redirects,
    )
    web.run_app(
        app,
        host=settings.host,
        port=settings.port,
        access_log=access_logger,
        access_log_format=ACCESS_LOG_FORMAT,
        print=None,
    )
