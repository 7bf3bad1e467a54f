"""No-op store: the default when no store is configured.

Nothing is remembered between runs: every fork check goes to GitHub and no
repository is cached unless the request asks for it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prreplay_store.base import BaseStore

if TYPE_CHECKING:
    from prreplay_store.models import CachedRepoRecord, ForkRecord, ReproductionRecord


class NoOpStore(BaseStore):
    """Silently discards all records."""

    def add_cached_repo(self, owner: str, name: str, notes: str | None = None) -> None:
        pass

    def remove_cached_repo(self, owner: str, name: str) -> bool:
        return False

    def is_repo_cached(self, owner: str, name: str) -> bool:
        return False

    def list_cached_repos(self) -> list[CachedRepoRecord]:
        return []

    def save_fork(self, record: ForkRecord) -> None:
        pass

    def get_fork(self, owner: str, name: str) -> ForkRecord | None:
        return None

    def save_reproduction(self, record: ReproductionRecord) -> None:
        pass

    def list_reproductions(self, source_repo: str | None = None) -> list[ReproductionRecord]:
        return []
