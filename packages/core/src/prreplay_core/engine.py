"""Reproduction pipeline: recreate a source PR or commit as a PR on the fork.

One request walks the ten-step plan, reporting on its ProgressChannel, and
always finishes the channel with exactly one result. The working clone is
removed on every exit path before the result is emitted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from prreplay_core.cache import ReferenceRepoCache
from prreplay_core.cherry_pick import CherryPickEngine
from prreplay_core.clone import WorkingCloneManager
from prreplay_core.config import validate_config
from prreplay_core.errors import CherryPickConflict, CloneFailure, GitCommandError, NotFoundError, ReproductionError
from prreplay_core.gh.github_api import GitHubGateway
from prreplay_core.git.runner import run_git
from prreplay_core.locks import RepoLockManager
from prreplay_core.models import (
    DIRECT_STRATEGIES,
    STEP_APPLY_COMMITS,
    STEP_BUILD_BRANCHES,
    STEP_CHECK_FORK,
    STEP_CLONE,
    STEP_FETCH_COMMITS,
    STEP_FETCH_STRATEGY_INPUTS,
    STEP_PUBLISH,
    STEP_RESOLVE_SOURCE,
    STEP_VALIDATE_CONFIG,
    STEP_VERIFY_FORK,
    BranchPair,
    CherryPickFallback,
    CommitRef,
    PullRequestMetadata,
    PullRequestSnapshot,
    RepoRef,
    ReproductionResult,
    ReproductionStrategy,
    WorkingClone,
)
from prreplay_core.persistence import Persistence
from prreplay_core.progress import ChannelItem, ProgressChannel
from prreplay_core.publisher import PRPublisher
from prreplay_core.strategy import StrategySelector
from prreplay_core.utils.urls import is_commit_hash, is_full_sha, parse_pr_url, parse_repo_url

logger = logging.getLogger(__name__)


@dataclass
class ReproductionRequest:
    pr_url: str | None = None
    repo_url: str | None = None
    commit_sha: str | None = None
    cache_repo: bool = False

    def validate(self) -> None:
        if bool(self.pr_url) == bool(self.repo_url):
            raise ValueError("Provide exactly one of a PR URL or a repository URL.")
        if self.commit_sha and not is_commit_hash(self.commit_sha):
            raise ValueError(f"Invalid commit hash {self.commit_sha!r}. Expected 7-40 hex characters.")


@dataclass
class _Plan:
    """Everything resolved before the working clone exists."""

    upstream: RepoRef
    fork: RepoRef
    branches: BranchPair
    strategy: ReproductionStrategy
    metadata: PullRequestMetadata
    commit_count: int
    source_number: int | None = None
    commit_sha: str | None = None
    fork_url: str | None = None


def _pr_metadata(snapshot: PullRequestSnapshot, strategy: ReproductionStrategy) -> PullRequestMetadata:
    original_url = snapshot.html_url or f"{snapshot.repo.html_url}/pull/{snapshot.number}"
    lines = [
        f"Reproduced from {snapshot.repo.key}#{snapshot.number} for review.",
        "",
        f"**Original PR:** {original_url}",
    ]
    if snapshot.author:
        lines.append(f"**Author:** @{snapshot.author}")
    lines.append(f"**Strategy:** {strategy.kind}")
    lines.append(f"**Base:** `{strategy.base_sha}`")
    if isinstance(strategy, CherryPickFallback):
        lines.append(f"**Commits replayed:** {len(strategy.commits)}")
    else:
        lines.append(f"**Head:** `{strategy.head_sha}`")
    return PullRequestMetadata(
        title=f"[Review] {snapshot.title}",
        body="\n".join(lines),
        source_number=snapshot.number,
    )


def _commit_metadata(commit: CommitRef) -> PullRequestMetadata:
    parent = commit.parent_shas[0] if commit.parent_shas else ""
    body = (
        f"Recreated from commit `{commit.sha}` for review.\n\n"
        f"**Original commit:** {commit.sha}\n"
        f"**Parent commit:** {parent}"
    )
    if commit.is_merge:
        body += "\n\n**Note:** This was a merge commit, cherry-picked with `-m 1`."
    return PullRequestMetadata(title=commit.short_message or f"Review {commit.short_sha}", body=body)


class ReproductionEngine:
    """Runs reproduction requests. One instance is shared by all concurrent requests.

    The lock manager, and with it the reference cache, is per instance, so a
    process should hold a single engine.
    """

    def __init__(
        self,
        config: dict,
        gateway: GitHubGateway | None = None,
        locks: RepoLockManager | None = None,
        cache: ReferenceRepoCache | None = None,
        clones: WorkingCloneManager | None = None,
        selector: StrategySelector | None = None,
        cherry_picker: CherryPickEngine | None = None,
        publisher: PRPublisher | None = None,
        persistence: Persistence | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.persistence = persistence or Persistence()
        self.locks = locks or RepoLockManager()
        self.cache = cache or ReferenceRepoCache(
            config["repos_dir"],
            self.locks,
            is_cacheable=self._is_cacheable,
            progress_interval=config.get("progress_interval", 2.0),
        )
        self.clones = clones or WorkingCloneManager(
            self.cache,
            work_root=config.get("work_dir"),
            git_user_name=config.get("git_user_name", "prreplay"),
            git_user_email=config.get("git_user_email", "prreplay@users.noreply.github.com"),
        )
        self.cherry_picker = cherry_picker or CherryPickEngine()
        self._gateway = gateway
        self._selector = selector
        self._publisher = publisher
        self._sleep = sleep

    def _is_cacheable(self, repo: RepoRef) -> bool:
        try:
            return self.persistence.is_repo_cached(repo)
        except Exception as e:
            logger.warning("Cache allow-list lookup failed for %s: %s", repo.key, e)
            return False

    @property
    def gateway(self) -> GitHubGateway:
        if self._gateway is None:
            self._gateway = GitHubGateway(self.config["github_token"])
        return self._gateway

    @property
    def selector(self) -> StrategySelector:
        if self._selector is None:
            self._selector = StrategySelector(self.gateway)
        return self._selector

    @property
    def publisher(self) -> PRPublisher:
        if self._publisher is None:
            self._publisher = PRPublisher(
                self.gateway,
                default_base_branch=self.config.get("default_base_branch", "main"),
                fallback_base_branch=self.config.get("fallback_base_branch", "master"),
            )
        return self._publisher

    async def _call(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    async def run(self, request: ReproductionRequest, channel: ProgressChannel) -> ReproductionResult:
        """Execute ``request``; the channel is always finished with the returned result."""
        try:
            result = await self._run(request, channel)
        except CherryPickConflict as e:
            channel.error(str(e), STEP_APPLY_COMMITS, sha=e.short_sha, position=e.position, subject=e.subject)
            result = ReproductionResult(success=False, message="Cherry-pick failed", error=str(e))
        except (ReproductionError, ValueError) as e:
            logger.info("Reproduction failed: %s", e)
            channel.error(str(e))
            result = ReproductionResult(success=False, message=type(e).__name__, error=str(e))
        except asyncio.CancelledError:
            channel.finish(ReproductionResult(success=False, message="Cancelled", error="Request cancelled"))
            raise
        except Exception as e:
            logger.exception("Unexpected error during reproduction")
            channel.error(f"Unexpected error: {e}")
            result = ReproductionResult(success=False, message="An unexpected error occurred", error=str(e))
        channel.finish(result)
        return result

    async def stream(self, request: ReproductionRequest) -> AsyncIterator[ChannelItem]:
        """Yield progress events and then the result.

        Closing the generator early cancels the request, which kills any git
        subprocess still running.
        """
        channel = ProgressChannel()
        task = asyncio.create_task(self.run(request, channel))
        try:
            async for item in channel:
                yield item
        finally:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.info("Reproduction cancelled by caller")

    async def _run(self, request: ReproductionRequest, channel: ProgressChannel) -> ReproductionResult:
        request.validate()

        channel.info("Validating configuration", STEP_VALIDATE_CONFIG)
        validate_config(self.config)
        token = self.config["github_token"]
        fork_org = self.config["fork_org"]

        if request.pr_url:
            plan = await self._plan_pull_request(request, fork_org, channel)
        else:
            plan = await self._plan_commit(request, fork_org, channel)

        channel.info(f"Checking for fork {plan.fork.key}", STEP_CHECK_FORK)
        plan.fork_url, created = await self._ensure_fork(plan.upstream, plan.fork)
        channel.success(f"{'Created' if created else 'Using'} fork {plan.fork_url}", STEP_CHECK_FORK)

        channel.info("Verifying fork configuration", STEP_VERIFY_FORK)
        await self._verify_fork(plan.upstream, plan.fork, plan.fork_url)

        await self._refresh_cache(plan.upstream, token, request.cache_repo, channel)
        channel.info(f"Cloning {plan.fork.key}", STEP_CLONE)
        async with self.clones.session(plan.fork, plan.upstream, token) as clone:
            channel.success("Working clone ready", STEP_CLONE)
            await self._build(clone, plan, channel)

            channel.info("Pushing branches and opening PR", STEP_PUBLISH)
            published = await self.publisher.publish(clone, plan.fork, plan.branches, plan.metadata)

        if published.reused:
            channel.success(f"PR already exists: {published.url}", STEP_PUBLISH)
            message = f"PR already exists: {plan.metadata.title}"
        else:
            channel.success(f"PR created: {published.url}", STEP_PUBLISH)
            message = f"PR created: {plan.metadata.title}"
        return ReproductionResult(
            success=True,
            message=message,
            pr_url=published.url,
            fork_url=plan.fork_url,
            commit_count=plan.commit_count,
            reused=published.reused,
            source_repo=plan.upstream.key,
            source_number=plan.source_number,
            commit_sha=plan.commit_sha,
            title=plan.metadata.title,
            strategy=plan.strategy.kind,
            review_branch=plan.branches.review_branch,
        )

    async def _plan_pull_request(self, request: ReproductionRequest, fork_org: str, channel) -> _Plan:
        upstream, number = parse_pr_url(request.pr_url)
        channel.info(f"Fetching PR #{number} from {upstream.key}", STEP_RESOLVE_SOURCE)
        snapshot = await self._call(self.gateway.get_pull_snapshot, upstream, number)
        channel.success(f"Found PR #{number}: {snapshot.title}", STEP_RESOLVE_SOURCE)

        channel.info("Choosing reproduction strategy", STEP_FETCH_STRATEGY_INPUTS)
        strategy = await self.selector.select(snapshot)
        channel.success(f"Strategy: {strategy.kind}", STEP_FETCH_STRATEGY_INPUTS, strategy=strategy.kind)
        return self._pull_request_plan(upstream, fork_org, snapshot, strategy)

    def _pull_request_plan(
        self, upstream: RepoRef, fork_org: str, snapshot: PullRequestSnapshot, strategy: ReproductionStrategy
    ) -> _Plan:
        count = len(strategy.commits) if isinstance(strategy, CherryPickFallback) else len(snapshot.commits)
        return _Plan(
            upstream=upstream,
            fork=RepoRef(owner=fork_org, name=upstream.name),
            branches=BranchPair.for_pr(snapshot.number),
            strategy=strategy,
            metadata=_pr_metadata(snapshot, strategy),
            commit_count=count or 1,
            source_number=snapshot.number,
        )

    async def _plan_commit(self, request: ReproductionRequest, fork_org: str, channel) -> _Plan:
        upstream = parse_repo_url(request.repo_url)
        fork = RepoRef(owner=fork_org, name=upstream.name)

        channel.info(f"Resolving commit in {upstream.key}", STEP_RESOLVE_SOURCE)
        sha = request.commit_sha or await self._default_branch_tip(upstream, fork)
        commit = await self._get_commit(upstream, fork, sha)
        channel.success(f"Found commit {commit.short_sha}: {commit.short_message}", STEP_RESOLVE_SOURCE)

        channel.info("Looking for a PR associated with the commit", STEP_FETCH_STRATEGY_INPUTS)
        snapshot = await self._associated_pull(upstream, commit.sha)
        strategy = await self.selector.select_for_commit(commit, snapshot)
        if snapshot is not None:
            channel.success(f"Commit belongs to PR #{snapshot.number}", STEP_FETCH_STRATEGY_INPUTS)
            plan = self._pull_request_plan(upstream, fork_org, snapshot, strategy)
            plan.commit_sha = commit.sha
            return plan

        channel.success("No associated PR; replaying the single commit", STEP_FETCH_STRATEGY_INPUTS)
        return _Plan(
            upstream=upstream,
            fork=fork,
            branches=BranchPair.for_commit(commit.sha),
            strategy=strategy,
            metadata=_commit_metadata(commit),
            commit_count=1,
            commit_sha=commit.sha,
        )

    async def _default_branch_tip(self, upstream: RepoRef, fork: RepoRef) -> str:
        """Tip of the fork's default branch; the upstream stands in only while no fork exists."""
        branches = (self.config.get("default_base_branch", "main"), self.config.get("fallback_base_branch", "master"))
        target = fork
        if fork != upstream and not await self._call(self.gateway.find_repo, fork):
            logger.debug("%s does not exist yet; resolving against %s", fork.key, upstream.key)
            target = upstream
        for branch in branches:
            sha = await self._call(self.gateway.get_branch_sha, target, branch)
            if sha:
                logger.info("Resolved %s:%s to %s", target.key, branch, sha[:7])
                return sha
        raise NotFoundError(f"Neither {branches[0]} nor {branches[1]} exists on {target.key}.")

    async def _get_commit(self, upstream: RepoRef, fork: RepoRef, sha: str) -> CommitRef:
        try:
            return await self._call(self.gateway.get_commit, upstream, sha)
        except NotFoundError:
            if fork == upstream:
                raise
        return await self._call(self.gateway.get_commit, fork, sha)

    async def _associated_pull(self, upstream: RepoRef, sha: str) -> PullRequestSnapshot | None:
        try:
            numbers = await self._call(self.gateway.get_associated_pulls, upstream, sha)
        except Exception as e:
            logger.warning("Associated-PR lookup failed for %s: %s", sha[:7], e)
            return None
        if not numbers:
            return None
        return await self._call(self.gateway.get_pull_snapshot, upstream, numbers[0])

    async def _ensure_fork(self, upstream: RepoRef, fork: RepoRef) -> tuple[str, bool]:
        try:
            known = await self._call(self.persistence.get_fork_url, fork)
        except Exception as e:
            logger.warning("Fork lookup in store failed: %s", e)
            known = None
        if known:
            return known, False

        url = await self._call(self.gateway.find_repo, fork)
        if url:
            return url, False

        url = await self._call(self.gateway.create_fork, upstream, fork.owner)
        # GitHub creates forks asynchronously.
        await self._sleep(self.config.get("fork_ready_delay", 3))
        return url, True

    async def _verify_fork(self, upstream: RepoRef, fork: RepoRef, fork_url: str) -> None:
        if fork != upstream:
            try:
                await self._call(self.gateway.disable_actions, fork)
            except Exception as e:
                logger.warning("Failed to disable Actions on %s: %s", fork.key, e)
        try:
            await self._call(self.persistence.save_fork, upstream, fork, fork_url)
        except Exception as e:
            logger.warning("Could not record fork %s: %s", fork.key, e)

    async def _refresh_cache(self, upstream: RepoRef, token: str, cache_repo: bool, channel: ProgressChannel) -> None:
        if cache_repo:
            try:
                await self._call(self.persistence.add_cached_repo, upstream)
            except Exception as e:
                logger.warning("Could not add %s to the cache list: %s", upstream.key, e)

        def report(update: dict) -> None:
            channel.progress(f"Caching {upstream.key}: {update['phase']} {update['percent']}%", STEP_CLONE, **update)

        try:
            cached = await self.cache.ensure(upstream, token, on_progress=report, force=cache_repo)
        except (CloneFailure, OSError) as e:
            logger.warning("Reference cache unavailable for %s: %s", upstream.key, e)
            channel.info("Reference cache unavailable; using a full clone", STEP_CLONE)
            return
        if cached:
            channel.info(f"Reference cache for {upstream.key} is current", STEP_CLONE)

    async def _fetch_sources(self, clone: WorkingClone, plan: _Plan) -> None:
        # Best effort: branch creation and cherry-picks fetch by SHA again on failure.
        try:
            await run_git("fetch", "upstream", cwd=clone.path)
        except GitCommandError as e:
            logger.warning("Fetching upstream failed: %s", e.stderr)
        if plan.source_number is not None:
            ref = f"+refs/pull/{plan.source_number}/head:refs/remotes/upstream/pr/{plan.source_number}"
            try:
                await run_git("fetch", "upstream", ref, cwd=clone.path)
            except GitCommandError as e:
                logger.warning("Fetching pull ref %d failed: %s", plan.source_number, e.stderr)

        strategy = plan.strategy
        if isinstance(strategy, DIRECT_STRATEGIES):
            shas = [strategy.base_sha, strategy.head_sha]
        else:
            shas = [c.sha for c in strategy.commits]
        try:
            await run_git("fetch", "upstream", *shas, cwd=clone.path)
        except GitCommandError as e:
            logger.warning("Fetching %d commit(s) by SHA failed: %s", len(shas), e.stderr)

    async def _build(self, clone: WorkingClone, plan: _Plan, channel: ProgressChannel) -> None:
        strategy = plan.strategy
        channel.info("Fetching commits from upstream", STEP_FETCH_COMMITS)
        await self._fetch_sources(clone, plan)
        channel.success(f"Fetched {plan.commit_count} commit(s)", STEP_FETCH_COMMITS)

        channel.info(f"Creating {plan.branches.base_branch} and {plan.branches.review_branch}", STEP_BUILD_BRANCHES)
        if isinstance(strategy, DIRECT_STRATEGIES):
            await self.cherry_picker.build_branches(clone, strategy.base_sha, plan.branches, head=strategy.head_sha)
        else:
            base = strategy.base_sha if is_full_sha(strategy.base_sha) else f"upstream/{strategy.base_sha}"
            await self.cherry_picker.build_branches(clone, base, plan.branches)
        channel.success("Branches created", STEP_BUILD_BRANCHES)

        if isinstance(strategy, DIRECT_STRATEGIES):
            channel.info("Review branch already holds the exact PR state; nothing to replay", STEP_APPLY_COMMITS)
            return

        def on_commit(position: int, total: int, commit: CommitRef) -> None:
            channel.progress(
                f"Cherry-picking {position}/{total}: {commit.short_sha} {commit.short_message}",
                STEP_APPLY_COMMITS,
                position=position,
                total=total,
                sha=commit.short_sha,
            )

        await self.cherry_picker.replay(clone, strategy.commits, on_commit)
        channel.success(f"Applied {len(strategy.commits)} commit(s)", STEP_APPLY_COMMITS)
