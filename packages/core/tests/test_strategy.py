"""Tests for the reproduction strategy ladder."""

from unittest.mock import MagicMock

import pytest

from prreplay_core.errors import NotFoundError, StrategyResolutionFailure
from prreplay_core.models import (
    CherryPickFallback,
    CommitRef,
    DirectHeadFetch,
    MergeCommitReplay,
    PullRequestSnapshot,
    RepoRef,
    SquashCommitReplay,
)
from prreplay_core.strategy import StrategySelector

REPO = RepoRef("acme", "widgets")
BASE, HEAD, MERGE = "b" * 40, "h" * 40, "m" * 40
C1, C2 = CommitRef("1" * 40, "First", ("0" * 40,)), CommitRef("2" * 40, "Second", ("1" * 40,))


def _snapshot(**overrides):
    fields = dict(
        repo=REPO,
        number=42,
        title="Fix widget",
        author="octocat",
        state="closed",
        merged=True,
        merge_commit_sha=MERGE,
        base_sha=BASE,
        head_sha=HEAD,
        base_ref="main",
        commits=(C1, C2),
    )
    fields.update(overrides)
    return PullRequestSnapshot(**fields)


def _gateway(commits: dict):
    gateway = MagicMock()

    def get_commit(repo, sha):
        if sha not in commits:
            raise NotFoundError(sha)
        return commits[sha]

    gateway.get_commit.side_effect = get_commit
    return gateway


class TestSelect:
    @pytest.mark.asyncio
    async def test_true_merge_replays_merge_parents(self):
        gateway = _gateway({MERGE: CommitRef(MERGE, "Merge pull request #42", ("p" * 40, "q" * 40))})

        strategy = await StrategySelector(gateway).select(_snapshot())

        assert strategy == MergeCommitReplay(base_sha="p" * 40, head_sha="q" * 40)
        assert strategy.kind == "merge-commit"

    @pytest.mark.asyncio
    async def test_squash_merge_uses_merge_commit_as_head(self):
        gateway = _gateway({MERGE: CommitRef(MERGE, "Fix widget (#42)", ("p" * 40,))})

        strategy = await StrategySelector(gateway).select(_snapshot())

        assert strategy == SquashCommitReplay(base_sha="p" * 40, head_sha=MERGE)

    @pytest.mark.asyncio
    async def test_unreachable_merge_commit_falls_back_to_head_and_base(self):
        strategy = await StrategySelector(_gateway({})).select(_snapshot())

        assert strategy == DirectHeadFetch(base_sha=BASE, head_sha=HEAD)

    @pytest.mark.asyncio
    async def test_open_pr_uses_head_and_base(self):
        gateway = _gateway({})
        snapshot = _snapshot(state="open", merged=False, merge_commit_sha=None)

        strategy = await StrategySelector(gateway).select(snapshot)

        assert isinstance(strategy, DirectHeadFetch)
        gateway.get_commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_closed_unmerged_pr_uses_head_and_base(self):
        strategy = await StrategySelector(_gateway({})).select(_snapshot(merged=False, merge_commit_sha=None))

        assert isinstance(strategy, DirectHeadFetch)

    @pytest.mark.asyncio
    async def test_missing_head_falls_back_to_cherry_pick(self):
        gateway = _gateway({C1.sha: C1})
        snapshot = _snapshot(merged=False, merge_commit_sha=None, head_sha=None)

        strategy = await StrategySelector(gateway).select(snapshot)

        assert strategy == CherryPickFallback(base_sha="0" * 40, commits=(C1, C2))


class TestCherryPickPlan:
    @pytest.mark.asyncio
    async def test_merge_commits_are_skipped(self):
        merge = CommitRef("3" * 40, "Merge main into feature", ("2" * 40, "9" * 40))
        snapshot = _snapshot(commits=(C1, C2, merge))

        plan = await StrategySelector(_gateway({C1.sha: C1})).cherry_pick_plan(snapshot)

        assert plan.commits == (C1, C2)

    @pytest.mark.asyncio
    async def test_base_ref_used_when_first_parent_unavailable(self):
        plan = await StrategySelector(_gateway({})).cherry_pick_plan(_snapshot())

        assert plan.base_sha == "main"

    @pytest.mark.asyncio
    async def test_no_base_at_all_fails(self):
        with pytest.raises(StrategyResolutionFailure):
            await StrategySelector(_gateway({})).cherry_pick_plan(_snapshot(base_ref=None))

    @pytest.mark.asyncio
    async def test_no_commits_fails(self):
        with pytest.raises(StrategyResolutionFailure):
            await StrategySelector(_gateway({})).cherry_pick_plan(_snapshot(commits=()))


class TestSelectForCommit:
    @pytest.mark.asyncio
    async def test_bare_commit_replayed_onto_its_parent(self):
        commit = CommitRef("c" * 40, "Tweak", ("p" * 40,))

        plan = await StrategySelector(_gateway({})).select_for_commit(commit)

        assert plan == CherryPickFallback(base_sha="p" * 40, commits=(commit,))

    @pytest.mark.asyncio
    async def test_associated_pr_replays_whole_pr(self):
        commit = CommitRef(C2.sha, C2.short_message, C2.parent_shas)

        plan = await StrategySelector(_gateway({C1.sha: C1})).select_for_commit(commit, _snapshot())

        assert plan.commits == (C1, C2)
        assert plan.base_sha == "0" * 40

    @pytest.mark.asyncio
    async def test_root_commit_cannot_be_replayed(self):
        with pytest.raises(StrategyResolutionFailure):
            await StrategySelector(_gateway({})).select_for_commit(CommitRef("c" * 40, "Root"))
