"""
HTTP adapter — download pages, release files and binaries.

Uses ``urllib.request``; the only things fetched are HTML index pages
and release artifacts, so there is no session, cookie or retry layer.
"""

from __future__ import annotations

import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path

from nexus_updater import __version__
from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.core.models.action import Receipt

logger = logging.getLogger(__name__)

USER_AGENT = f"nexus-updater/{__version__}"
_CHUNK = 64 * 1024


class HttpAdapter(Adapter):
    """HTTP GET/HEAD operations.

    Action params:
        operation (str): 'fetch_page', 'download' or 'reachable'.
        url (str): Target URL.
        dest (str): Destination file (for 'download').
        executable (bool): chmod +x after download.
        timeout (int): Timeout in seconds (default: 60).
    """

    operations = frozenset({"fetch_page", "download", "reachable"})

    @property
    def name(self) -> str:
        return "http"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, err = super().validate(context)
        if not ok:
            return ok, err
        if not context.param("url"):
            return False, "Missing required param: 'url'"
        if context.param("operation") == "download" and not context.param("dest"):
            return False, "Missing required param: 'dest' for download"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.param("operation")
        url = context.param("url")
        try:
            return getattr(self, f"_{operation}")(context)
        except urllib.error.HTTPError as e:
            return self._fail(context, f"HTTP {e.code} for {url}", status=e.code)
        except urllib.error.URLError as e:
            return self._fail(context, f"Cannot reach {url}: {e.reason}")
        except (OSError, ValueError) as e:
            return self._fail(context, f"{operation} {url} failed: {e}")

    # ── Operations ──────────────────────────────────────────────

    def _request(self, url: str, method: str = "GET") -> urllib.request.Request:
        return urllib.request.Request(url, method=method, headers={"User-Agent": USER_AGENT})

    def _fetch_page(self, ctx: ExecutionContext) -> Receipt:
        url = ctx.param("url")
        with urllib.request.urlopen(self._request(url), timeout=ctx.param("timeout", 60)) as resp:
            charset = resp.headers.get_content_charset() or "utf-8"
            body = resp.read().decode(charset, errors="replace")
            final_url = resp.geturl()
        return self._ok(ctx, body, url=final_url)

    def _download(self, ctx: ExecutionContext) -> Receipt:
        url = ctx.param("url")
        dest = Path(ctx.param("dest"))
        dest.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Downloading %s → %s", url, dest)
        with urllib.request.urlopen(self._request(url), timeout=ctx.param("timeout", 300)) as resp:
            with dest.open("wb") as f:
                shutil.copyfileobj(resp, f, _CHUNK)

        if ctx.param("executable"):
            dest.chmod(0o755)
        size = dest.stat().st_size
        return self._ok(ctx, str(dest), path=str(dest), size=size)

    def _reachable(self, ctx: ExecutionContext) -> Receipt:
        url = ctx.param("url")
        with urllib.request.urlopen(self._request(url, "HEAD"), timeout=ctx.param("timeout", 10)) as resp:
            status = resp.status
        return self._ok(ctx, str(status), status=status)
