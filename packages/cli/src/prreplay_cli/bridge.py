"""Maps between the engine and the store.

prreplay_core knows nothing about persistence and prreplay_store knows
nothing about the engine; the CLI bridges the two.
"""

from __future__ import annotations

from prreplay_core.models import RepoRef, ReproductionResult
from prreplay_core.persistence import Persistence
from prreplay_store.base import BaseStore
from prreplay_store.models import ForkRecord, ReproductionRecord


class StorePersistence(Persistence):
    """Engine persistence backed by a BaseStore."""

    def __init__(self, store: BaseStore):
        self.store = store

    def is_repo_cached(self, repo: RepoRef) -> bool:
        return self.store.is_repo_cached(repo.owner, repo.name)

    def add_cached_repo(self, repo: RepoRef) -> None:
        self.store.add_cached_repo(repo.owner, repo.name)

    def get_fork_url(self, fork: RepoRef) -> str | None:
        record = self.store.get_fork(fork.owner, fork.name)
        return record.fork_url if record else None

    def save_fork(self, upstream: RepoRef, fork: RepoRef, fork_url: str) -> None:
        self.store.save_fork(
            ForkRecord(repo_owner=fork.owner, repo_name=fork.name, fork_url=fork_url, upstream_owner=upstream.owner)
        )


def result_to_record(result: ReproductionResult) -> ReproductionRecord:
    """Map a successful ReproductionResult to a ReproductionRecord for the store."""
    return ReproductionRecord(
        source_repo=result.source_repo or "",
        fork_url=result.fork_url or "",
        forked_pr_url=result.pr_url or "",
        review_branch=result.review_branch or "",
        source_number=result.source_number,
        commit_sha=result.commit_sha,
        title=result.title or "",
        strategy=result.strategy or "",
        commit_count=result.commit_count or 0,
        reused=result.reused,
    )
