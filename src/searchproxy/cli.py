from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv

from .core.errors import ProxyError
from .server import run_server
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.guarded_fetch import FetchResult, GuardedFetcher
from .workflows.settings import ProxySettings

app = typer.Typer(add_help_option=False, no_args_is_help=False)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _minimal_help() -> str:
    return """searchproxy (link-rewriting search proxy)

Usage:
  searchproxy serve [--host <ADDR>] [--port <N>] [--timeout <S>] [--max-redirects <N>]
  searchproxy check <url>... [--json]
  searchproxy get <url> [--method <M>] [--out <FILE>] [--json]
  searchproxy doctor

Discoverability:
  --help-full     Expanded help + env vars.
  --find <query>  Search commands, flags, env vars.
  --doctor        Run configuration diagnostics and exit.
"""


def _help_full() -> str:
    return """searchproxy CLI

Commands:
  serve    Run the HTTP proxy (/, /search, /fetch).
  check    Classify URLs against the destination policy (exit 1 if any blocked).
  get      Fetch one URL through the guarded fetcher.
  doctor   Print effective settings and parser availability.

Routes (serve):
  /search?q=<query>   Upstream search results, links rewritten through the proxy.
  /fetch?url=<url>    Guarded fetch of one resource, headers filtered.

Env vars (.env is loaded when present):
  PROXY_HOST            Bind address (default 0.0.0.0).
  PROXY_PORT / PORT     Listen port (default 10000).
  PROXY_TIMEOUT         Per-hop timeout in seconds (default 20).
  PROXY_MAX_REDIRECTS   Redirect budget (default 5).
  PROXY_SEARCH_URL      Upstream search endpoint.
  PROXY_USER_AGENT      Fallback User-Agent for search requests.
  PROXY_DENY_HOSTS      Extra comma-separated hostnames to block.

Exit codes (get):
  0 fetched, 2 rejected (invalid or blocked URL), 3 remote fetch failed.
"""


_FIND_INDEX = [
    ("command", "serve", "Run the HTTP proxy."),
    ("command", "check", "Classify URLs against the destination policy."),
    ("command", "get", "Fetch one URL through the guarded fetcher."),
    ("command", "doctor", "Print effective settings and parser availability."),
    ("flag", "--host", "Bind address for serve."),
    ("flag", "--port", "Listen port for serve."),
    ("flag", "--timeout", "Per-hop timeout in seconds."),
    ("flag", "--max-redirects", "Redirect budget."),
    ("flag", "--search-url", "Upstream search endpoint."),
    ("flag", "--log-level", "Logging level (DEBUG, INFO, WARNING)."),
    ("flag", "--json", "Print JSON to stdout."),
    ("flag", "--out", "Write the fetched body to a file."),
    ("flag", "--help-full", "Expanded help and env vars."),
    ("flag", "--find", "Search commands, flags, env vars."),
    ("flag", "--doctor", "Run configuration diagnostics and exit."),
    ("env", "PROXY_HOST", "Bind address."),
    ("env", "PROXY_PORT", "Listen port (PORT also honoured)."),
    ("env", "PROXY_TIMEOUT", "Per-hop timeout in seconds."),
    ("env", "PROXY_MAX_REDIRECTS", "Redirect budget."),
    ("env", "PROXY_SEARCH_URL", "Upstream search endpoint."),
    ("env", "PROXY_USER_AGENT", "Fallback User-Agent for search."),
    ("env", "PROXY_DENY_HOSTS", "Extra hostnames to block."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _load_settings(**overrides) -> ProxySettings:
    try:
        return ProxySettings.from_env(**overrides)
    except ValueError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run configuration diagnostics and exit."),
) -> None:
    load_dotenv()
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print effective settings and parser availability."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("serve", add_help_option=True)
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    port: Optional[int] = typer.Option(None, "--port", help="Listen port."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-hop timeout in seconds."),
    max_redirects: Optional[int] = typer.Option(None, "--max-redirects", help="Redirect budget."),
    search_url: Optional[str] = typer.Option(None, "--search-url", help="Upstream search endpoint."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Run the HTTP proxy."""
    _configure_logging(log_level)
    settings = _load_settings(
        host=host,
        port=port,
        timeout=timeout,
        max_redirects=max_redirects,
        search_endpoint=search_url,
    )
    run_server(settings)


@app.command("check", add_help_option=True)
def check(
    urls: List[str] = typer.Argument(..., help="URLs to classify."),
    json_out: bool = typer.Option(False, "--json", help="Print verdicts as JSON."),
) -> None:
    """Classify URLs against the destination policy."""
    guard = _load_settings().build_guard()
    verdicts = [(url, guard.classify(url)) for url in urls]
    if json_out:
        payload = [{"url": url, "blocked": v.blocked, "reason": v.reason} for url, v in verdicts]
        sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    else:
        for url, verdict in verdicts:
            if verdict.blocked:
                typer.echo(f"blocked\t{url}\t{verdict.reason}")
            else:
                typer.echo(f"allowed\t{url}")
    raise typer.Exit(code=1 if any(v.blocked for _, v in verdicts) else 0)


async def _fetch_once(settings: ProxySettings, url: str, method: str) -> FetchResult:
    async with GuardedFetcher(settings.fetch_config(), guard=settings.build_guard()) as fetcher:
        return await fetcher.fetch(url, method=method)


@app.command("get", add_help_option=True)
def get_url(
    url: str = typer.Argument(..., help="URL to fetch."),
    method: str = typer.Option("GET", "--method", help="HTTP method."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the body to this file."),
    json_out: bool = typer.Option(False, "--json", help="Print the summary as JSON."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-hop timeout in seconds."),
    max_redirects: Optional[int] = typer.Option(None, "--max-redirects", help="Redirect budget."),
) -> None:
    """Fetch one URL through the guarded fetcher."""
    settings = _load_settings(timeout=timeout, max_redirects=max_redirects)
    try:
        result = asyncio.run(_fetch_once(settings, url, method))
    except ProxyError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2 if exc.client_error else 3)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(result.body)
    if json_out:
        sys.stdout.write(result.to_json() + "\n")
    else:
        typer.echo(f"{result.status} {result.url} ({len(result.body)} bytes, {result.redirects} redirects)")
        for name, value in result.relay_headers().items():
            typer.echo(f"{name}: {value}")
    raise typer.Exit(code=0)
