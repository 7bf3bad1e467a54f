"""Data model shared by every engine component.

Snapshots are built once from the GitHub API and never mutated afterwards;
re-running a request re-fetches a fresh snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import ClassVar, Union

TOTAL_STEPS = 10

# The fixed ten-step plan every request reports against.
STEP_VALIDATE_CONFIG = 1
STEP_RESOLVE_SOURCE = 2
STEP_FETCH_STRATEGY_INPUTS = 3
STEP_CHECK_FORK = 4
STEP_VERIFY_FORK = 5
STEP_CLONE = 6
STEP_FETCH_COMMITS = 7
STEP_BUILD_BRANCHES = 8
STEP_APPLY_COMMITS = 9
STEP_PUBLISH = 10


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str

    @property
    def key(self) -> str:
        """Cache and lock key."""
        return f"{self.owner}/{self.name}"

    @property
    def html_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class CommitRef:
    sha: str
    short_message: str
    parent_shas: tuple[str, ...] = ()

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def is_merge(self) -> bool:
        return len(self.parent_shas) > 1


@dataclass(frozen=True)
class PullRequestSnapshot:
    repo: RepoRef
    number: int
    title: str
    author: str
    state: str  # "open" | "closed"
    merged: bool
    merge_commit_sha: str | None
    base_sha: str | None
    head_sha: str | None
    base_ref: str | None = None
    html_url: str = ""
    commits: tuple[CommitRef, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.state == "open"


@dataclass(frozen=True)
class MergeCommitReplay:
    kind: ClassVar[str] = "merge-commit"
    base_sha: str
    head_sha: str


@dataclass(frozen=True)
class SquashCommitReplay:
    kind: ClassVar[str] = "squash-commit"
    base_sha: str
    head_sha: str


@dataclass(frozen=True)
class DirectHeadFetch:
    kind: ClassVar[str] = "direct-head"
    base_sha: str
    head_sha: str


@dataclass(frozen=True)
class CherryPickFallback:
    kind: ClassVar[str] = "cherry-pick"
    base_sha: str
    commits: tuple[CommitRef, ...]


ReproductionStrategy = Union[MergeCommitReplay, SquashCommitReplay, DirectHeadFetch, CherryPickFallback]
DIRECT_STRATEGIES = (MergeCommitReplay, SquashCommitReplay, DirectHeadFetch)


@dataclass(frozen=True)
class BranchPair:
    """Deterministic branch names; the names double as the idempotency key.

    Commit-mode pairs are single-branch: only the review branch is pushed and
    the downstream PR targets the fork's default branch.
    """

    base_branch: str
    review_branch: str
    single_branch: bool = False

    @classmethod
    def for_pr(cls, number: int) -> BranchPair:
        return cls(base_branch=f"base-for-pr-{number}", review_branch=f"review-pr-{number}")

    @classmethod
    def for_commit(cls, sha: str) -> BranchPair:
        short = sha[:7]
        return cls(base_branch=f"base-for-{short}", review_branch=f"review-{short}", single_branch=True)


@dataclass
class CacheEntry:
    repo: RepoRef
    path: Path
    last_synced_at: datetime | None = None
    size_bytes: int = 0


@dataclass
class WorkingClone:
    path: Path
    remotes: dict[str, str] = field(default_factory=dict)


@dataclass
class PullRequestMetadata:
    """What the publisher needs to open the downstream PR."""

    title: str
    body: str
    source_number: int | None = None


@dataclass
class PublishedPullRequest:
    url: str
    number: int
    reused: bool = False


@dataclass(frozen=True)
class ProgressEvent:
    kind: str  # "info" | "success" | "error" | "progress"
    message: str
    step: int | None = None
    total_steps: int | None = None
    data: dict | None = None

    def to_dict(self) -> dict:
        payload: dict = {"eventType": "status", "statusType": self.kind, "message": self.message}
        if self.step is not None:
            payload["step"] = self.step
            payload["totalSteps"] = self.total_steps
        if self.data:
            payload["data"] = self.data
        return payload


@dataclass
class ReproductionResult:
    success: bool
    message: str = ""
    pr_url: str | None = None
    fork_url: str | None = None
    commit_count: int | None = None
    reused: bool = False
    error: str | None = None
    # Source details the caller needs to record the outcome.
    source_repo: str | None = None
    source_number: int | None = None
    commit_sha: str | None = None
    title: str | None = None
    strategy: str | None = None
    review_branch: str | None = None

    def to_dict(self) -> dict:
        payload: dict = {"eventType": "result", "success": self.success, "message": self.message}
        for key, value in (
            ("prUrl", self.pr_url),
            ("forkUrl", self.fork_url),
            ("commitCount", self.commit_count),
            ("error", self.error),
        ):
            if value is not None:
                payload[key] = value
        if self.success:
            payload["reused"] = self.reused
        return payload
