"""Branch creation and the shared fetch-then-retry policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

from prreplay_core.errors import GitCommandError
from prreplay_core.git.runner import run_git

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FetchThenRetry:
    """Run an operation; on a git failure fetch the commit explicitly and retry once.

    Used for cherry-picks and branch creation, where the usual cause of a first
    failure is an object the working clone never received.
    """

    remote: str = "upstream"

    async def fetch(self, repo_path: Path, sha: str) -> bool:
        try:
            await run_git("fetch", self.remote, sha, cwd=repo_path)
            return True
        except GitCommandError as e:
            logger.warning("Explicit fetch of %s from %s failed: %s", sha[:7], self.remote, e.stderr)
            return False

    async def run(
        self,
        repo_path: Path,
        sha: str,
        operation: Callable[[], Awaitable[T]],
        cleanup: Callable[[], Awaitable[None]] | None = None,
    ) -> T:
        """Run ``operation``; on failure run ``cleanup``, fetch ``sha`` and run it once more."""
        try:
            return await operation()
        except GitCommandError as first:
            logger.info("Retrying after fetching %s (%s)", sha[:7], first.stderr)
        if cleanup is not None:
            await cleanup()
        await self.fetch(repo_path, sha)
        return await operation()


async def create_branch(repo_path: Path, name: str, start_point: str) -> None:
    """Check out ``name`` at ``start_point``, resetting an existing local branch in place."""
    try:
        await run_git("checkout", "-b", name, start_point, cwd=repo_path)
        return
    except GitCommandError as e:
        if "already exists" not in e.stderr:
            raise
    logger.debug("Branch %s already exists locally; resetting to %s", name, start_point[:7])
    await run_git("checkout", name, cwd=repo_path)
    await run_git("reset", "--hard", start_point, cwd=repo_path)


async def create_branch_with_retry(
    repo_path: Path, name: str, start_point: str, policy: FetchThenRetry | None = None
) -> None:
    policy = policy or FetchThenRetry()
    await policy.run(repo_path, start_point, lambda: create_branch(repo_path, name, start_point))
