"""Error taxonomy shared by the guard, fetcher, rewriter and front end."""

from __future__ import annotations

from typing import Optional


class ProxyError(Exception):
    """Base class for every failure of a single proxied request.

    ``client_error`` tells the front end whether the caller is at fault
    (4xx) or the remote fetch failed (5xx).
    """

    client_error = False
    status = 500
    public_message = "Proxy error"

    def __init__(self, message: str = "", *, url: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.url = url

    @property
    def client_message(self) -> str:
        """Text safe to show the client; server-side failures stay generic."""
        return str(self) if self.client_error else self.public_message


class InvalidInput(ProxyError):
    """Missing or unparsable target supplied by the client."""

    client_error = True
    status = 400
    public_message = "Invalid request"


class BlockedDestination(ProxyError):
    """The destination policy rejected a URL; no network call was made."""

    client_error = True
    status = 400
    public_message = "Blocked URL"

    def __init__(self, message: str = "", *, url: Optional[str] = None, reason: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.reason = reason

    @property
    def client_message(self) -> str:
        return self.public_message


class FetchError(ProxyError):
    """The remote fetch failed."""

    status = 502
    public_message = "Error fetching remote resource"


class InvalidUrl(FetchError):
    """A URL inside the fetch chain (target or redirect Location) is unparsable."""


class TooManyRedirects(FetchError):
    pass


class FetchTimeout(FetchError):
    status = 504


class NetworkError(FetchError):
    """Connection refused/reset, DNS or TLS failure."""


class UpstreamError(ProxyError):
    """Upstream answered but its HTML could not be parsed for rewriting."""
