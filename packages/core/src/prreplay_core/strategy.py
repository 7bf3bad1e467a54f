"""Choose how to reproduce a source PR or commit.

The ladder, evaluated once per request:

1. Merged PR with a merge commit: inspect the merge commit's parents.
   Two or more parents replay the merge (``base=parents[0]``,
   ``head=parents[1]``); a single parent means a squash or rebase merge and
   the merge commit itself is the head.
2. Otherwise, when the PR still carries base and head SHAs, use them
   directly.
3. Otherwise cherry-pick the PR's non-merge commits onto the parent of its
   first commit, or onto its base ref when that parent is unavailable.

Strategies 1 and 2 reproduce the exact tree and cannot conflict.
"""

from __future__ import annotations

import asyncio
import logging

from prreplay_core.errors import StrategyResolutionFailure
from prreplay_core.models import (
    CherryPickFallback,
    CommitRef,
    DirectHeadFetch,
    MergeCommitReplay,
    PullRequestSnapshot,
    RepoRef,
    ReproductionStrategy,
    SquashCommitReplay,
)

logger = logging.getLogger(__name__)


class StrategySelector:
    def __init__(self, gateway):
        self.gateway = gateway

    async def _fetch_commit(self, repo: RepoRef, sha: str) -> CommitRef | None:
        try:
            return await asyncio.to_thread(self.gateway.get_commit, repo, sha)
        except Exception as e:
            logger.warning("Could not fetch commit %s from %s: %s", sha[:7], repo.key, e)
            return None

    async def select(self, snapshot: PullRequestSnapshot) -> ReproductionStrategy:
        if snapshot.merged and snapshot.merge_commit_sha:
            merge = await self._fetch_commit(snapshot.repo, snapshot.merge_commit_sha)
            if merge is not None and len(merge.parent_shas) >= 2:
                return MergeCommitReplay(base_sha=merge.parent_shas[0], head_sha=merge.parent_shas[1])
            if merge is not None and len(merge.parent_shas) == 1:
                return SquashCommitReplay(base_sha=merge.parent_shas[0], head_sha=snapshot.merge_commit_sha)
            logger.info("Merge commit of PR #%d unusable; falling back to head/base", snapshot.number)

        if snapshot.head_sha and snapshot.base_sha:
            return DirectHeadFetch(base_sha=snapshot.base_sha, head_sha=snapshot.head_sha)

        return await self.cherry_pick_plan(snapshot)

    async def cherry_pick_plan(self, snapshot: PullRequestSnapshot) -> CherryPickFallback:
        commits = tuple(c for c in snapshot.commits if not c.is_merge)
        if not commits:
            raise StrategyResolutionFailure(f"PR #{snapshot.number} has no non-merge commits to replay.")

        base = None
        first = await self._fetch_commit(snapshot.repo, snapshot.commits[0].sha)
        if first is not None and first.parent_shas:
            base = first.parent_shas[0]
        elif snapshot.base_ref:
            logger.info("Using base ref %s as cherry-pick base for PR #%d", snapshot.base_ref, snapshot.number)
            base = snapshot.base_ref
        if base is None:
            raise StrategyResolutionFailure(f"No cherry-pick base available for PR #{snapshot.number}.")
        return CherryPickFallback(base_sha=base, commits=commits)

    async def select_for_commit(
        self, commit: CommitRef, associated: PullRequestSnapshot | None = None
    ) -> CherryPickFallback:
        """Plan for a bare commit: replay its associated PR if any, else the commit alone."""
        if associated is not None:
            return await self.cherry_pick_plan(associated)
        if not commit.parent_shas:
            raise StrategyResolutionFailure(f"Commit {commit.short_sha} has no parent to build on.")
        return CherryPickFallback(base_sha=commit.parent_shas[0], commits=(commit,))
