"""MHTML metadata and text extraction.

Everything here is pure: the same bytes always give the same result, and a
missing header is a normal ``None`` rather than an error.
"""

from __future__ import annotations

import logging
import re
from html.parser import HTMLParser
from typing import Optional

from .models import MhtmlContent
from .utils import SOURCE_URL_PATTERNS

log = logging.getLogger(__name__)

_CONTENT_LOCATION_RE = re.compile(r"Content-Location:[ \t]*(.+)", re.IGNORECASE)
_BOUNDARY_RE = re.compile(r'boundary="?([^"\s;]+)"?', re.IGNORECASE)
_CHARSET_RE = re.compile(r'Content-Type:.*charset="?([^"\s;]+)"?', re.IGNORECASE)
_HTML_RE = re.compile(r"<html[\s\S]*</html>", re.IGNORECASE)
_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_HEADER_RES = {
    "date": re.compile(r"^Date:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE),
    "from": re.compile(r"^From:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE),
    "subject": re.compile(r"^Subject:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE),
}


def _decode(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Source URL
# ---------------------------------------------------------------------------


def extract_source_url(data: bytes | str) -> Optional[str]:
    """Return the first ``Content-Location`` header value, if any."""
    match = _CONTENT_LOCATION_RE.search(_decode(data))
    if not match:
        return None
    url = match.group(1).strip()
    return url or None


def derive_source_url(
    partition: str,
    name: str,
    template: Optional[str] = None,
) -> Optional[str]:
    """Guess a source URL from the object name (``stock_123.mhtml`` etc.).

    *template* overrides the partition's default URL template; it receives
    the numeric id as ``{id}``.
    """
    pattern = SOURCE_URL_PATTERNS.get(partition)
    if pattern is None:
        return None
    name_re, default_template = pattern
    match = re.search(name_re, name)
    if not match:
        return None
    return (template or default_template).format(id=match.group(1))


def resolve_source_url(
    partition: str,
    name: str,
    data: bytes | str,
    template: Optional[str] = None,
) -> Optional[str]:
    """Header URL when present, otherwise the name-derived fallback."""
    url = extract_source_url(data)
    if url:
        log.debug("Content-Location found for %s: %s", name, url)
        return url
    fallback = derive_source_url(partition, name, template)
    log.debug("No Content-Location in %s; fallback=%s", name, fallback)
    return fallback


# ---------------------------------------------------------------------------
# HTML -> text
# ---------------------------------------------------------------------------


class _TextStripper(HTMLParser):
    """Collects visible text, skipping script and style bodies."""

    _skip_tags = {"script", "style"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._pieces: list[str] = []
        self._skipping = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in self._skip_tags:
            self._skipping += 1
        else:
            self._pieces.append(" ")

    def handle_endtag(self, tag: str) -> None:
        if tag in self._skip_tags:
            self._skipping = max(0, self._skipping - 1)
        else:
            self._pieces.append(" ")

    def handle_data(self, data: str) -> None:
        if not self._skipping:
            self._pieces.append(data)

    def get_text(self) -> str:
        return re.sub(r"\s+", " ", "".join(self._pieces)).strip()


def html_to_text(html: str) -> str:
    """Convert an HTML fragment to whitespace-normalised plain text."""
    if not html:
        return ""
    stripper = _TextStripper()
    stripper.feed(html)
    stripper.close()
    return stripper.get_text()


# ---------------------------------------------------------------------------
# MHTML
# ---------------------------------------------------------------------------


def _html_part(content: str) -> str:
    boundary = _BOUNDARY_RE.search(content)
    if boundary:
        for part in content.split(f"--{boundary.group(1)}"):
            if not re.search(r"Content-Type:\s*text/html", part, re.IGNORECASE):
                continue
            normalised = part.replace("\r\n", "\n")
            body_start = normalised.find("\n\n")
            if body_start != -1:
                return normalised[body_start + 2 :].strip()
        return ""
    match = _HTML_RE.search(content)
    return match.group(0) if match else ""


def parse_mhtml(data: bytes | str) -> MhtmlContent:
    """Extract the HTML part, plain text, title and header metadata."""
    content = _decode(data)

    metadata: dict[str, str] = {}
    charset = _CHARSET_RE.search(content)
    if charset:
        metadata["encoding"] = charset.group(1)
    for key, header_re in _HEADER_RES.items():
        match = header_re.search(content)
        if match:
            metadata[key] = match.group(1).strip()

    html = _html_part(content)
    title_match = _TITLE_RE.search(html)
    title = title_match.group(1).strip() if title_match else None

    return MhtmlContent(
        html=html,
        text=html_to_text(html),
        title=title,
        metadata=metadata,
    )


def is_valid_mhtml(data: bytes | str) -> bool:
    """Cheap sniff for MIME headers or an ``<html`` tag."""
    content = _decode(data)
    return bool(
        re.search(r"MIME-Version:", content, re.IGNORECASE)
        or re.search(r"Content-Type:", content, re.IGNORECASE)
        or re.search(r"<html", content, re.IGNORECASE)
    )
