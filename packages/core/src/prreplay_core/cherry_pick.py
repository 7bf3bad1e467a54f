"""Replay an ordered list of commits onto a base."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from prreplay_core.errors import CherryPickConflict, GitCommandError
from prreplay_core.git.branches import FetchThenRetry, create_branch_with_retry
from prreplay_core.git.runner import run_git
from prreplay_core.models import BranchPair, CommitRef, WorkingClone

logger = logging.getLogger(__name__)

OnCommit = Callable[[int, int, CommitRef], None]


class CherryPickEngine:
    def __init__(self, policy: FetchThenRetry | None = None):
        self.policy = policy or FetchThenRetry()

    async def build_branches(self, clone: WorkingClone, base: str, branches: BranchPair, head: str | None = None) -> None:
        """Create the base branch at ``base`` and the review branch at ``head`` (or ``base``)."""
        await create_branch_with_retry(clone.path, branches.base_branch, base, self.policy)
        await create_branch_with_retry(clone.path, branches.review_branch, head or base, self.policy)

    async def _pick(self, clone: WorkingClone, commit: CommitRef) -> None:
        args = ["cherry-pick", "-m", "1", commit.sha] if commit.is_merge else ["cherry-pick", commit.sha]
        await run_git(*args, cwd=clone.path)

    async def _abort(self, clone: WorkingClone) -> None:
        try:
            await run_git("cherry-pick", "--abort", cwd=clone.path)
        except GitCommandError as e:
            # Nothing in progress to abort.
            logger.debug("cherry-pick --abort failed: %s", e.stderr)

    async def apply(
        self,
        clone: WorkingClone,
        base: str,
        commits: Sequence[CommitRef],
        branches: BranchPair,
        on_commit: OnCommit | None = None,
    ) -> BranchPair:
        """Build both branches at ``base`` and replay ``commits`` onto the review branch."""
        await self.build_branches(clone, base, branches)
        await self.replay(clone, commits, on_commit)
        return branches

    async def replay(self, clone: WorkingClone, commits: Sequence[CommitRef], on_commit: OnCommit | None = None) -> None:
        """Cherry-pick ``commits`` in order onto the checked-out review branch.

        Raises CherryPickConflict naming the first commit that failed twice.
        """
        total = len(commits)
        for position, commit in enumerate(commits, 1):
            if on_commit:
                on_commit(position, total, commit)
            try:
                await self.policy.run(
                    clone.path,
                    commit.sha,
                    lambda: self._pick(clone, commit),
                    cleanup=lambda: self._abort(clone),
                )
            except GitCommandError as e:
                await self._abort(clone)
                logger.warning("Cherry-pick of %s (%d/%d) failed twice", commit.short_sha, position, total)
                raise CherryPickConflict(
                    sha=commit.sha,
                    position=position,
                    total=total,
                    subject=commit.short_message,
                    detail=e.stderr,
                )
