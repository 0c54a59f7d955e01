from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

import aiohttp

from ..core.errors import (
    BlockedDestination,
    FetchTimeout,
    InvalidUrl,
    NetworkError,
    TooManyRedirects,
)
from ..core.keys import HDR_CONTENT_TYPE, HDR_LOCATION
from .destination_guard import DEFAULT_GUARD, DestinationGuard
from .fetcher_utils import resolve_url
from .proxy_config import (
    BODYLESS_METHODS,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_TIMEOUT,
    FORWARDED_REQUEST_HEADERS,
    RELAYED_RESPONSE_HEADERS,
)

logger = logging.getLogger(__name__)


def forwardable_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Pick the client headers that may travel upstream (user-agent, accept)."""

    picked: Dict[str, str] = {}
    for key, value in (headers or {}).items():
        name = key.lower()
        if name in FORWARDED_REQUEST_HEADERS and value:
            picked[name] = value
    return picked


def filter_response_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Keep only the upstream response headers that are relayed to the client."""

    kept: Dict[str, str] = {}
    for key, value in (headers or {}).items():
        name = key.lower()
        if name in RELAYED_RESPONSE_HEADERS:
            kept[name] = value
    return kept


def _collect_headers(raw: Any) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    for key, value in raw.items():
        name = str(key).lower()
        merged[name] = f"{merged[name]}, {value}" if name in merged else str(value)
    return merged


def _is_redirect(status: int) -> bool:
    return 300 <= status < 400


@dataclass
class FetchConfig:
    """Configuration parameters for guarded fetching."""

    timeout: float = DEFAULT_TIMEOUT
    max_redirects: int = DEFAULT_MAX_REDIRECTS


@dataclass(frozen=True)
class FetchRequest:
    """One hop of a fetch chain. Never reused: each redirect builds a new one."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = field(default=None, repr=False)
    timeout: float = DEFAULT_TIMEOUT
    redirects_left: int = DEFAULT_MAX_REDIRECTS

    def follow(self, location: str, status: int) -> "FetchRequest":
        if status == 303:
            headers = {k: v for k, v in self.headers.items() if k != HDR_CONTENT_TYPE}
            return replace(
                self,
                url=location,
                method="GET",
                headers=headers,
                body=None,
                redirects_left=self.redirects_left - 1,
            )
        return replace(self, url=location, redirects_left=self.redirects_left - 1)


@dataclass
class FetchResult:
    """Final response of a fetch chain, fully buffered."""

    url: str
    status: int
    headers: Dict[str, str]
    method: str
    body: bytes = field(default=b"", repr=False)
    redirects: int = 0

    @property
    def content_type(self) -> str:
        return self.headers.get(HDR_CONTENT_TYPE, "")

    @property
    def is_html(self) -> bool:
        return "html" in self.content_type.split(";", 1)[0].lower()

    def relay_headers(self) -> Dict[str, str]:
        return filter_response_headers(self.headers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "method": self.method,
            "redirects": self.redirects,
            "content_type": self.content_type,
            "headers": self.relay_headers(),
            "body_length": len(self.body),
            "body_sha256": hashlib.sha256(self.body).hexdigest() if self.body else "",
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class GuardedFetcher:
    """Async fetcher that checks every hop against the destination policy.

    Use as an async context manager, or pass an existing ``aiohttp.ClientSession``
    (anything with a compatible ``request`` method) which the caller owns.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        guard: Optional[DestinationGuard] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.guard = guard or DEFAULT_GUARD
        self._session = session
        self._owns_session = False

    async def __aenter__(self) -> "GuardedFetcher":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            # No cookie jar: requests from different clients must not share state
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
            self._owns_session = True

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._owns_session = False

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
        content_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Fetch ``url`` following redirects under the configured budget.

        Raises BlockedDestination, InvalidUrl, TooManyRedirects, FetchTimeout
        or NetworkError; nothing is retried.
        """

        verb = (method or "GET").upper()
        outbound = forwardable_headers(headers)
        payload = body if verb not in BODYLESS_METHODS else None
        if payload is not None and content_type:
            outbound[HDR_CONTENT_TYPE] = content_type
        request = FetchRequest(
            method=verb,
            url=(url or "").strip(),
            headers=outbound,
            body=payload,
            timeout=timeout if timeout is not None else self.config.timeout,
            redirects_left=self.config.max_redirects,
        )
        hops = 0
        while True:
            if request.redirects_left < 0:
                raise TooManyRedirects(
                    f"more than {self.config.max_redirects} redirects", url=request.url
                )
            self._check_destination(request.url)
            status, response_headers, response_body = await self._send(request)
            location = response_headers.get(HDR_LOCATION)
            if _is_redirect(status) and location:
                next_url = resolve_url(request.url, location)
                if next_url is None:
                    raise InvalidUrl(f"unparsable redirect location: {location!r}", url=request.url)
                logger.debug("redirect %s %s -> %s", status, request.url, next_url)
                request = request.follow(next_url, status)
                hops += 1
                continue
            return FetchResult(
                url=request.url,
                status=status,
                headers=response_headers,
                method=request.method,
                body=response_body,
                redirects=hops,
            )

    def _check_destination(self, url: str) -> None:
        # Unparsable, scheme-less and non-http(s) URLs are all blocked verdicts
        verdict = self.guard.classify(url)
        if verdict.blocked:
            logger.info("blocked destination %s (%s)", url, verdict.reason)
            raise BlockedDestination(f"blocked destination: {url}", url=url, reason=verdict.reason)

    async def _send(self, request: FetchRequest) -> Tuple[int, Dict[str, str], bytes]:
        if self._session is None:
            await self.open()
        assert self._session is not None
        try:
            async with self._session.request(
                request.method,
                request.url,
                headers=request.headers or None,
                data=request.body,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=request.timeout),
            ) as resp:
                status = resp.status
                headers = _collect_headers(resp.headers)
                if _is_redirect(status) and headers.get(HDR_LOCATION):
                    return status, headers, b""
                raw_bytes = await resp.read()
        except asyncio.TimeoutError as exc:
            raise FetchTimeout(f"timed out after {request.timeout}s", url=request.url) from exc
        except aiohttp.InvalidURL as exc:
            raise InvalidUrl(f"invalid URL: {request.url!r}", url=request.url) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{type(exc).__name__}: {exc}", url=request.url) from exc
        return status, headers, raw_bytes


__all__ = [
    "FetchConfig",
    "FetchRequest",
    "FetchResult",
    "GuardedFetcher",
    "filter_response_headers",
    "forwardable_headers",
]
