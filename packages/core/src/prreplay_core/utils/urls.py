from __future__ import annotations

import re

from prreplay_core.models import RepoRef

_PR_URL_RE = re.compile(r"^https://github\.com/([\w.-]+)/([\w.-]+)/pull/(\d+)/?$")
_REPO_URL_RE = re.compile(r"^https://github\.com/([\w.-]+)/([\w.-]+?)(?:\.git)?/?$")
_REPO_SLUG_RE = re.compile(r"^([\w.-]+)/([\w.-]+)$")
_COMMIT_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")
_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$")


def _checked(owner: str, name: str) -> RepoRef:
    # Names become cache directory components.
    for part in (owner, name):
        if part in (".", "..") or "/" in part or "\\" in part:
            raise ValueError(f"Invalid repository name: {owner}/{name}")
    return RepoRef(owner=owner, name=name)


def parse_pr_url(url: str) -> tuple[RepoRef, int]:
    """Parse ``https://github.com/owner/repo/pull/123``."""
    match = _PR_URL_RE.match(url.strip())
    if not match:
        raise ValueError(f"Invalid PR URL: {url!r}. Expected https://github.com/owner/repo/pull/123")
    return _checked(match.group(1), match.group(2)), int(match.group(3))


def parse_repo_url(url: str) -> RepoRef:
    """Parse ``https://github.com/owner/repo``."""
    match = _REPO_URL_RE.match(url.strip())
    if not match:
        raise ValueError(f"Invalid repository URL: {url!r}. Expected https://github.com/owner/repo")
    return _checked(match.group(1), match.group(2))


def parse_repo_slug(slug: str) -> RepoRef:
    """Parse ``owner/repo``."""
    match = _REPO_SLUG_RE.match(slug.strip())
    if not match:
        raise ValueError(f"Invalid repository: {slug!r}. Use owner/repo")
    return _checked(match.group(1), match.group(2))


def is_commit_hash(value: str) -> bool:
    return bool(_COMMIT_RE.match(value or ""))


def is_full_sha(value: str) -> bool:
    return bool(_FULL_SHA_RE.match(value or ""))
