"""Optional persistence collaborator.

The engine consults it to skip GitHub lookups it already knows the answer to
and to read the cache allow-list. Every method has a safe default so the
engine runs unchanged with no persistence at all.
"""

from __future__ import annotations

from prreplay_core.models import RepoRef


class Persistence:
    def is_repo_cached(self, repo: RepoRef) -> bool:
        return False

    def add_cached_repo(self, repo: RepoRef) -> None:
        pass

    def get_fork_url(self, fork: RepoRef) -> str | None:
        return None

    def save_fork(self, upstream: RepoRef, fork: RepoRef, fork_url: str) -> None:
        pass
