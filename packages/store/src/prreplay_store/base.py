"""Abstract store interface.

Any storage backend implements this interface. The CLI depends on
BaseStore, not on a concrete backend, so backends are swappable without
touching CLI code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prreplay_store.models import CachedRepoRecord, ForkRecord, ReproductionRecord


class BaseStore(ABC):
    """Pluggable persistence for the cache allow-list, forks and reproductions."""

    @abstractmethod
    def add_cached_repo(self, owner: str, name: str, notes: str | None = None) -> None:
        """Mark a repository for reference caching. Idempotent."""

    @abstractmethod
    def remove_cached_repo(self, owner: str, name: str) -> bool:
        """Drop a repository from the allow-list. Returns True if it was listed."""

    @abstractmethod
    def is_repo_cached(self, owner: str, name: str) -> bool:
        """Whether the repository is on the allow-list."""

    @abstractmethod
    def list_cached_repos(self) -> list[CachedRepoRecord]:
        """Return the allow-list, oldest first."""

    @abstractmethod
    def save_fork(self, record: ForkRecord) -> None:
        """Insert or update a fork keyed by (owner, name)."""

    @abstractmethod
    def get_fork(self, owner: str, name: str) -> ForkRecord | None:
        """Return the fork record or None."""

    @abstractmethod
    def save_reproduction(self, record: ReproductionRecord) -> None:
        """Insert or update a reproduction keyed by (fork, review branch)."""

    @abstractmethod
    def list_reproductions(self, source_repo: str | None = None) -> list[ReproductionRecord]:
        """Return reproductions, optionally for one source repository.

        Returns an empty list if none exist.
        """

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Subclasses that need cleanup override this.
        Default is a no-op so callers can always call close() safely.
        """
