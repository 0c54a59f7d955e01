"""HTML decoding and parsing helpers for the link rewriter.

This module is deterministic and provider-agnostic. It exists to make
rewriting reliable across brittle upstream pages: bytes are decoded with the
best available charset and markup is parsed with staged parser fallbacks.
"""

from __future__ import annotations

import logging
import re
from typing import Mapping, Optional

from bs4 import BeautifulSoup
from charset_normalizer import from_bytes

from ..core.errors import UpstreamError

__all__ = [
    "PARSERS",
    "decode_bytes_auto",
    "parse_document",
]

logger = logging.getLogger(__name__)

PARSERS = ("lxml", "html5lib", "html.parser")


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    if not body:
        return ""
    enc = None
    if headers:
        ct = headers.get("content-type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            logger.debug("unknown charset %r, falling back to detection", enc)
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def parse_document(html: str) -> BeautifulSoup:
    """Parse markup with tolerant parsers, most capable first.

    Raises UpstreamError when no parser can handle the document.
    """

    last_exc: Optional[Exception] = None
    for parser in PARSERS:
        try:
            return BeautifulSoup(html, parser)
        except Exception as exc:  # FeatureNotFound or parser crash; try the next one
            last_exc = exc
            continue
    raise UpstreamError(f"unparsable upstream HTML: {last_exc}")
