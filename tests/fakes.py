"""Network stand-ins shared by the fetcher and server tests."""

from typing import Any, Dict, List, Optional, Tuple, Union


class FakeResponse:
    def __init__(self, status: int = 200, headers: Optional[Dict[str, str]] = None, body: bytes = b"") -> None:
        self.status = status
        self.headers = headers or {}
        self.body = body

    async def read(self) -> bytes:
        return self.body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False


def redirect(location: str, status: int = 302) -> FakeResponse:
    return FakeResponse(status=status, headers={"Location": location})


def html(body: str, status: int = 200) -> FakeResponse:
    return FakeResponse(status=status, headers={"Content-Type": "text/html; charset=utf-8"}, body=body.encode("utf-8"))


Outcome = Union[FakeResponse, BaseException]


class FakeSession:
    """Minimal ``aiohttp.ClientSession`` look-alike that records every request."""

    def __init__(self, routes: Optional[Dict[str, Outcome]] = None) -> None:
        self.routes: Dict[str, Outcome] = dict(routes or {})
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        outcome = self.routes.get(url)
        if outcome is None:
            return FakeResponse(status=404, body=b"not found")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def urls(self) -> List[str]:
        return [url for _, url, _ in self.calls]

    async def close(self) -> None:
        return None
