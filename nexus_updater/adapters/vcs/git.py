"""
Git adapter — source checkouts for applications built from repositories.

Read-only operations (``fetch``, ``head``, ``upstream``) back the
version check; ``clone``, ``reset``, ``pull`` and ``checkout`` back the
acquire step. Uses the git CLI.
"""

from __future__ import annotations

import logging
import subprocess

from nexus_updater.adapters.base import Adapter, ExecutionContext
from nexus_updater.core.models.action import Receipt

logger = logging.getLogger(__name__)


class GitAdapter(Adapter):
    """Git operations.

    Action params:
        operation (str): One of 'clone', 'fetch', 'head', 'upstream',
                         'reset', 'pull', 'checkout'.
        repo_dir (str): Working tree (target directory for 'clone').
        url (str): Repository URL (for 'clone').
        branch (str): Branch to clone or check out.
        timeout (int): Timeout in seconds (default: 600).
    """

    operations = frozenset({"clone", "fetch", "head", "upstream", "reset", "pull", "checkout"})

    @property
    def name(self) -> str:
        return "git"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, err = super().validate(context)
        if not ok:
            return ok, err
        if not context.param("repo_dir"):
            return False, "Missing required param: 'repo_dir'"
        if context.param("operation") == "clone" and not context.param("url"):
            return False, "Missing required param: 'url' for clone"
        if context.param("operation") == "checkout" and not context.param("branch"):
            return False, "Missing required param: 'branch' for checkout"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.param("operation")
        try:
            handler = getattr(self, f"_{operation}")
            return handler(context)
        except subprocess.TimeoutExpired as e:
            return self._fail(context, f"git {operation} timed out after {e.timeout}s")
        except Exception as e:
            return self._fail(context, f"Git error: {e}")

    # ── Operations ──────────────────────────────────────────────

    def _clone(self, ctx: ExecutionContext) -> Receipt:
        args = ["clone"]
        if ctx.param("branch"):
            args += ["--branch", ctx.param("branch")]
        args += [ctx.param("url"), ctx.param("repo_dir")]
        output = self._git(args, cwd=None, timeout=ctx.param("timeout", 600))
        return self._ok(ctx, output)

    def _fetch(self, ctx: ExecutionContext) -> Receipt:
        output = self._git(["fetch", "--quiet"], ctx.param("repo_dir"), ctx.param("timeout", 600))
        return self._ok(ctx, output)

    def _head(self, ctx: ExecutionContext) -> Receipt:
        sha = self._git(["rev-parse", "HEAD"], ctx.param("repo_dir")).strip()
        return self._ok(ctx, sha, commit=sha)

    def _upstream(self, ctx: ExecutionContext) -> Receipt:
        sha = self._git(["rev-parse", "@{u}"], ctx.param("repo_dir")).strip()
        return self._ok(ctx, sha, commit=sha)

    def _reset(self, ctx: ExecutionContext) -> Receipt:
        output = self._git(["reset", "--hard"], ctx.param("repo_dir"))
        return self._ok(ctx, output)

    def _pull(self, ctx: ExecutionContext) -> Receipt:
        cwd = ctx.param("repo_dir")
        before = self._git(["rev-parse", "HEAD"], cwd).strip()
        output = self._git(["pull", "--ff-only"], cwd, ctx.param("timeout", 600))
        after = self._git(["rev-parse", "HEAD"], cwd).strip()
        return self._ok(ctx, output, changed=before != after, commit=after)

    def _checkout(self, ctx: ExecutionContext) -> Receipt:
        output = self._git(["checkout", ctx.param("branch")], ctx.param("repo_dir"))
        return self._ok(ctx, output, branch=ctx.param("branch"))

    # ── Helpers ─────────────────────────────────────────────────

    def _git(self, args: list[str], cwd: str | None, timeout: int = 60) -> str:
        """Run a git command and return stdout."""
        logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        if result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or f"git {args[0]} failed")
        return result.stdout
