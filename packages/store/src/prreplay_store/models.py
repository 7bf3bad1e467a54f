"""Persistence data models.

Decoupled from prreplay_core so the store layer can be used independently
and prreplay_core has no knowledge of persistence concerns.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CachedRepoRecord:
    """A repository on the reference-cache allow-list."""

    repo_owner: str
    repo_name: str
    notes: str | None = None
    added_at: str = ""


@dataclass
class ForkRecord:
    """An organization-owned fork used as the publish target."""

    repo_owner: str  # fork owner (the organization)
    repo_name: str
    fork_url: str
    upstream_owner: str = ""
    created_at: str = ""


@dataclass
class ReproductionRecord:
    """A reproduced PR on a fork.

    Created by the CLI layer after the engine returns a ReproductionResult.
    """

    source_repo: str  # owner/name of the upstream repository
    fork_url: str
    forked_pr_url: str
    review_branch: str
    source_number: int | None = None  # None for single-commit reproductions
    commit_sha: str | None = None
    title: str = ""
    strategy: str = ""
    commit_count: int = 0
    reused: bool = False
    created_at: str = ""  # ISO-8601 UTC timestamp
