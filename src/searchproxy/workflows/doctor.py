from __future__ import annotations

import importlib.util
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .html_normalize import PARSERS
from .settings import ProxySettings


_ENV_NAMES = (
    "PROXY_HOST",
    "PROXY_PORT",
    "PORT",
    "PROXY_TIMEOUT",
    "PROXY_MAX_REDIRECTS",
    "PROXY_SEARCH_URL",
    "PROXY_USER_AGENT",
    "PROXY_DENY_HOSTS",
)


def _parser_available(name: str) -> bool:
    if name == "html.parser":
        return True
    return importlib.util.find_spec(name) is not None


def build_doctor_report(settings: Optional[ProxySettings] = None) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment": {name: os.getenv(name) for name in _ENV_NAMES if os.getenv(name) is not None},
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    try:
        settings = settings or ProxySettings.from_env()
    except ValueError as exc:
        add_check(
            "settings",
            False,
            detail=str(exc),
            remedy="Fix PROXY_PORT / PROXY_TIMEOUT / PROXY_MAX_REDIRECTS.",
        )
        return report
    report["settings"] = settings.to_dict()
    add_check("settings", True, detail=f"{settings.host}:{settings.port}", level="info")

    verdict = settings.build_guard().classify(settings.search_endpoint)
    add_check(
        "PROXY_SEARCH_URL",
        verdict.allowed,
        detail=settings.search_endpoint if verdict.allowed else f"{settings.search_endpoint} ({verdict.reason})",
        remedy="Point PROXY_SEARCH_URL at a public http(s) search endpoint.",
    )

    for parser in PARSERS:
        available = _parser_available(parser)
        add_check(
            f"parser:{parser}",
            available,
            detail="available" if available else "not installed; next parser is used",
            level="warn" if parser == PARSERS[0] else "info",
        )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("searchproxy doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        lines.append(f"- [{level}] {name}: {status}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    environment = report.get("environment") or {}
    if environment:
        lines.append("")
        lines.append("Environment:")
        for name, value in sorted(environment.items()):
            lines.append(f"- {name}={value}")
    return "\n".join(lines).rstrip() + "\n"
