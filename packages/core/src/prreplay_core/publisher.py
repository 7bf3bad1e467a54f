"""Push reproduced branches to the fork and find or open the downstream PR.

Branch names are deterministic per source PR or commit, so an open PR whose
head is the review branch is the same reproduction and is reused.
"""

from __future__ import annotations

import asyncio
import logging

from github import GithubException

from prreplay_core.errors import GitCommandError, PublishFailure, PushFailure
from prreplay_core.gh.github_api import BaseBranchMissing, DuplicatePullRequest
from prreplay_core.git.runner import run_git
from prreplay_core.models import BranchPair, PublishedPullRequest, PullRequestMetadata, RepoRef, WorkingClone

logger = logging.getLogger(__name__)


class PRPublisher:
    def __init__(self, gateway, default_base_branch: str = "main", fallback_base_branch: str = "master"):
        self.gateway = gateway
        self.default_base_branch = default_base_branch
        self.fallback_base_branch = fallback_base_branch

    def _alternate(self, base: str) -> str:
        if base == self.default_base_branch:
            return self.fallback_base_branch
        return self.default_base_branch

    async def push(self, clone: WorkingClone, branches: BranchPair) -> None:
        names = [branches.review_branch] if branches.single_branch else [branches.base_branch, branches.review_branch]
        for name in names:
            try:
                await run_git("push", "--force", "origin", f"{name}:{name}", cwd=clone.path)
            except GitCommandError as e:
                raise PushFailure(f"Could not push branch {name}: {e.stderr}")
            logger.info("Pushed %s", name)

    async def find_existing(self, fork: RepoRef, branches: BranchPair) -> PublishedPullRequest | None:
        try:
            return await asyncio.to_thread(self.gateway.find_open_pull, fork, branches.review_branch)
        except GithubException as e:
            logger.warning("Could not list open PRs on %s: %s", fork.key, e)
            return None

    async def _create(self, fork: RepoRef, branches: BranchPair, metadata: PullRequestMetadata, base: str):
        return await asyncio.to_thread(
            self.gateway.create_pull,
            fork,
            metadata.title,
            metadata.body,
            branches.review_branch,
            base,
        )

    async def publish(
        self, clone: WorkingClone, fork: RepoRef, branches: BranchPair, metadata: PullRequestMetadata
    ) -> PublishedPullRequest:
        await self.push(clone, branches)

        existing = await self.find_existing(fork, branches)
        if existing is not None:
            logger.info("Reusing open PR %s for %s", existing.url, branches.review_branch)
            return existing

        base = self.default_base_branch if branches.single_branch else branches.base_branch
        try:
            try:
                return await self._create(fork, branches, metadata, base)
            except BaseBranchMissing:
                if not branches.single_branch:
                    raise PublishFailure(f"Base branch {base} is missing on {fork.key} after push.")
                alternate = self._alternate(base)
                logger.info("Base branch %s missing on %s; retrying with %s", base, fork.key, alternate)
                try:
                    return await self._create(fork, branches, metadata, alternate)
                except BaseBranchMissing:
                    raise PublishFailure(f"Neither {base} nor {alternate} exists on {fork.key}.")
        except DuplicatePullRequest:
            # Another request for the same source won the race.
            existing = await self.find_existing(fork, branches)
            if existing is not None:
                return existing
            raise PublishFailure(f"GitHub reports a PR for {branches.review_branch} but none could be found.")
