import asyncio

import aiohttp
import pytest

from fakes import FakeResponse, FakeSession, html, redirect
from searchproxy.core.errors import (
    BlockedDestination,
    FetchTimeout,
    InvalidUrl,
    NetworkError,
    TooManyRedirects,
)
from searchproxy.workflows.guarded_fetch import (
    FetchConfig,
    FetchRequest,
    GuardedFetcher,
    filter_response_headers,
    forwardable_headers,
)


def _fetch(session, url, config=None, **kwargs):
    fetcher = GuardedFetcher(config or FetchConfig(), session=session)
    return asyncio.run(fetcher.fetch(url, **kwargs))


def _chain(length, host="https://example.com"):
    routes = {f"{host}/r{i}": redirect(f"/r{i + 1}") for i in range(length)}
    routes[f"{host}/r{length}"] = html("<html><body>done</body></html>")
    return routes


def test_fetch_buffers_body_and_headers():
    session = FakeSession({
        "https://example.com/": FakeResponse(
            status=200,
            headers={"Content-Type": "text/plain", "ETag": '"abc"'},
            body=b"hello",
        )
    })

    result = _fetch(session, "https://example.com/")

    assert result.status == 200
    assert result.body == b"hello"
    assert result.headers["content-type"] == "text/plain"
    assert result.headers["etag"] == '"abc"'
    assert result.redirects == 0
    assert result.method == "GET"
    assert session.calls[0][2]["allow_redirects"] is False


def test_blocked_target_makes_no_network_call():
    session = FakeSession()

    with pytest.raises(BlockedDestination) as excinfo:
        _fetch(session, "http://169.254.169.254/latest/meta-data/")

    assert session.calls == []
    assert excinfo.value.reason


def test_redirect_into_blocked_destination_is_not_followed():
    session = FakeSession({"https://example.com/start": redirect("http://127.0.0.1:8080/admin")})

    with pytest.raises(BlockedDestination):
        _fetch(session, "https://example.com/start")

    assert session.urls == ["https://example.com/start"]


def test_redirect_chain_at_budget_succeeds():
    session = FakeSession(_chain(5))

    result = _fetch(session, "https://example.com/r0", FetchConfig(max_redirects=5))

    assert result.status == 200
    assert result.redirects == 5
    assert result.url == "https://example.com/r5"
    assert len(session.calls) == 6


def test_redirect_chain_over_budget_fails_before_extra_hop():
    session = FakeSession(_chain(6))

    with pytest.raises(TooManyRedirects):
        _fetch(session, "https://example.com/r0", FetchConfig(max_redirects=5))

    assert "https://example.com/r6" not in session.urls
    assert len(session.calls) == 6


def test_zero_budget_still_fetches_without_redirects():
    session = FakeSession({"https://example.com/": html("<p>ok</p>")})

    result = _fetch(session, "https://example.com/", FetchConfig(max_redirects=0))

    assert result.status == 200


def test_location_resolves_against_current_hop():
    session = FakeSession({
        "https://a.example/x/1": redirect("https://b.example/y/"),
        "https://b.example/y/": redirect("z"),
        "https://b.example/y/z": html("<p>final</p>"),
    })

    result = _fetch(session, "https://a.example/x/1")

    assert result.url == "https://b.example/y/z"
    assert session.urls[-1] == "https://b.example/y/z"


def test_303_downgrades_post_to_get_and_drops_body():
    session = FakeSession({
        "https://example.com/submit": redirect("/confirm", status=303),
        "https://example.com/confirm": html("<p>thanks</p>"),
    })

    result = _fetch(
        session,
        "https://example.com/submit",
        method="POST",
        body=b"a=1",
        content_type="application/x-www-form-urlencoded",
    )

    first, second = session.calls
    assert first[0] == "POST"
    assert first[2]["data"] == b"a=1"
    assert second[0] == "GET"
    assert second[1] == "https://example.com/confirm"
    assert second[2]["data"] is None
    assert "content-type" not in (second[2]["headers"] or {})
    assert result.method == "GET"


def test_307_keeps_method_and_body():
    session = FakeSession({
        "https://example.com/old": redirect("/new", status=307),
        "https://example.com/new": FakeResponse(status=201, body=b"created"),
    })

    result = _fetch(session, "https://example.com/old", method="post", body=b"{}", content_type="application/json")

    assert [call[0] for call in session.calls] == ["POST", "POST"]
    assert session.calls[1][2]["data"] == b"{}"
    assert result.status == 201


def test_redirect_without_location_is_returned_as_is():
    session = FakeSession({"https://example.com/": FakeResponse(status=304)})

    result = _fetch(session, "https://example.com/")

    assert result.status == 304
    assert result.redirects == 0


def test_unparsable_location_raises_invalid_url():
    session = FakeSession({"https://example.com/": redirect("http://[::1")})

    with pytest.raises(InvalidUrl):
        _fetch(session, "https://example.com/")


@pytest.mark.parametrize(
    "url",
    ["http://[::1", "file:///etc/passwd", "javascript:alert(1)", "ftp://files.example/x", "notaurl"],
)
def test_unparsable_and_non_http_targets_are_blocked(url):
    session = FakeSession()

    with pytest.raises(BlockedDestination) as excinfo:
        _fetch(session, url)

    assert session.calls == []
    assert excinfo.value.reason


def test_redirect_to_file_scheme_is_blocked():
    session = FakeSession({"https://example.com/": redirect("file:///etc/passwd")})

    with pytest.raises(BlockedDestination) as excinfo:
        _fetch(session, "https://example.com/")

    assert excinfo.value.reason == "scheme_file"
    assert session.urls == ["https://example.com/"]


def test_timeout_is_not_retried():
    session = FakeSession({"https://slow.example/": asyncio.TimeoutError()})

    with pytest.raises(FetchTimeout):
        _fetch(session, "https://slow.example/", timeout=0.5)

    assert len(session.calls) == 1
    assert session.calls[0][2]["timeout"].total == 0.5


def test_transport_failures_collapse_to_network_error():
    session = FakeSession({"https://down.example/": aiohttp.ClientConnectionError("connection refused")})

    with pytest.raises(NetworkError):
        _fetch(session, "https://down.example/")

    assert len(session.calls) == 1


def test_only_allow_listed_client_headers_are_forwarded():
    session = FakeSession({"https://example.com/": html("<p>x</p>")})

    _fetch(
        session,
        "https://example.com/",
        headers={"User-Agent": "ua/1.0", "Accept": "text/html", "Cookie": "sid=1", "Authorization": "Bearer t"},
        body=b"ignored for GET",
        content_type="text/plain",
    )

    kwargs = session.calls[0][2]
    assert kwargs["headers"] == {"user-agent": "ua/1.0", "accept": "text/html"}
    assert kwargs["data"] is None


def test_forwardable_headers_is_case_insensitive():
    assert forwardable_headers({"ACCEPT": "*/*", "X-Forwarded-For": "1.2.3.4"}) == {"accept": "*/*"}
    assert forwardable_headers(None) == {}


def test_filter_response_headers_keeps_allow_list_only():
    headers = {
        "Content-Type": "image/png",
        "Content-Length": "10",
        "Cache-Control": "max-age=60",
        "Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT",
        "ETag": '"x"',
        "Set-Cookie": "a=b",
        "Connection": "keep-alive",
        "Transfer-Encoding": "chunked",
    }

    kept = filter_response_headers(headers)

    assert sorted(kept) == ["cache-control", "content-length", "content-type", "etag", "last-modified"]


def test_fetch_request_follow_decrements_budget():
    request = FetchRequest(method="POST", url="https://example.com/a", body=b"x", redirects_left=2)

    hop = request.follow("https://example.com/b", 302)

    assert hop.redirects_left == 1
    assert hop.method == "POST"
    assert request.url == "https://example.com/a"


def test_result_summary_is_json_friendly():
    session = FakeSession({"https://example.com/": FakeResponse(headers={"Content-Type": "text/html"}, body=b"<p>")})

    payload = _fetch(session, "https://example.com/").to_dict()

    assert payload["body_length"] == 3
    assert payload["headers"] == {"content-type": "text/html"}
    assert len(payload["body_sha256"]) == 64
