"""
Download-page scraping.

Release pages for pat, wsjtx, js8call, chirp and ARIM are plain HTML
with the current release linked from an ``href``. These helpers pull
the first matching link out of a page and the version token out of
its file name.
"""

from __future__ import annotations

import re
from urllib.parse import unquote, urljoin, urlparse

_LINK = re.compile(r"""href\s*=\s*["']([^"']+)["']""", re.IGNORECASE)


def find_link(
    html: str,
    link_pattern: str,
    base_url: str,
    line_filter: str | None = None,
) -> str | None:
    """First href matching ``link_pattern``, resolved against ``base_url``.

    With ``line_filter`` only lines matching that regex are considered
    (ARIM marks the current release with the word "current").
    """
    wanted = re.compile(link_pattern)
    keep = re.compile(line_filter) if line_filter else None
    for line in html.splitlines():
        if keep is not None and not keep.search(line):
            continue
        for href in _LINK.findall(line):
            if wanted.search(href):
                return urljoin(base_url, href)
    return None


def file_name(url: str) -> str:
    """Last path segment of a URL, percent-decoded."""
    return unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])


def extract_version(name: str, version_pattern: str) -> str | None:
    """Version token from a file name; group 1 when the pattern has one."""
    match = re.search(version_pattern, name)
    if not match:
        return None
    return match.group(1) if match.groups() else match.group(0)
