"""PyGithub wrappers returning engine models.

All methods are blocking; async callers go through ``asyncio.to_thread``.
404s become NotFoundError at this boundary so nothing above it needs to know
about PyGithub exception types.
"""

from __future__ import annotations

import logging

from github import Auth, Github, GithubException, UnknownObjectException

from prreplay_core.errors import NotFoundError, PublishFailure
from prreplay_core.models import CommitRef, PublishedPullRequest, PullRequestSnapshot, RepoRef

logger = logging.getLogger(__name__)


class DuplicatePullRequest(Exception):
    """GitHub refused to create a PR because one already exists for the head."""


class BaseBranchMissing(Exception):
    """GitHub rejected the PR because the base branch does not exist."""


def _subject(message: str | None) -> str:
    return (message or "").splitlines()[0] if message else ""


def _error_text(exc: GithubException) -> str:
    data = exc.data if isinstance(exc.data, dict) else {}
    parts = [str(data.get("message", ""))]
    for err in data.get("errors") or []:
        if isinstance(err, dict):
            parts.append(" ".join(str(v) for v in err.values()))
        else:
            parts.append(str(err))
    return " ".join(p for p in parts if p)


def is_duplicate_pull_error(exc: GithubException) -> bool:
    return exc.status == 422 and "already exists" in _error_text(exc).lower()


def is_invalid_base_error(exc: GithubException) -> bool:
    text = _error_text(exc).lower()
    return exc.status == 422 and "base" in text and ("invalid" in text or "must be a branch" in text)


def to_commit_ref(commit) -> CommitRef:
    return CommitRef(
        sha=commit.sha,
        short_message=_subject(commit.commit.message),
        parent_shas=tuple(p.sha for p in commit.parents),
    )


class GitHubGateway:
    def __init__(self, token: str, client: Github | None = None):
        self._gh = client if client is not None else Github(auth=Auth.Token(token))
        self._repos: dict[str, object] = {}

    def _repo(self, ref: RepoRef):
        if ref.key not in self._repos:
            try:
                self._repos[ref.key] = self._gh.get_repo(ref.key)
            except UnknownObjectException:
                raise NotFoundError(f"Repository {ref.key} not found.")
        return self._repos[ref.key]

    def get_pull_snapshot(self, ref: RepoRef, number: int) -> PullRequestSnapshot:
        repo = self._repo(ref)
        try:
            pr = repo.get_pull(number)
            commits = tuple(to_commit_ref(c) for c in pr.get_commits())
        except UnknownObjectException:
            raise NotFoundError(f"PR #{number} not found in {ref.key}.")
        return PullRequestSnapshot(
            repo=ref,
            number=pr.number,
            title=pr.title or "",
            author=pr.user.login if pr.user else "",
            state=pr.state,
            merged=bool(pr.merged),
            merge_commit_sha=pr.merge_commit_sha,
            base_sha=pr.base.sha if pr.base else None,
            head_sha=pr.head.sha if pr.head else None,
            base_ref=pr.base.ref if pr.base else None,
            html_url=pr.html_url or "",
            commits=commits,
        )

    def get_commit(self, ref: RepoRef, sha: str) -> CommitRef:
        try:
            return to_commit_ref(self._repo(ref).get_commit(sha))
        except UnknownObjectException:
            raise NotFoundError(f"Commit {sha} not found in {ref.key}.")

    def get_associated_pulls(self, ref: RepoRef, sha: str) -> list[int]:
        """PR numbers GitHub associates with ``sha``, merged ones first."""
        pulls = list(self._repo(ref).get_commit(sha).get_pulls())
        pulls.sort(key=lambda p: (p.merge_commit_sha != sha, not p.merged))
        return [p.number for p in pulls]

    def get_branch_sha(self, ref: RepoRef, branch: str) -> str | None:
        try:
            return self._repo(ref).get_branch(branch).commit.sha
        except UnknownObjectException:
            return None
        except GithubException as e:
            if e.status == 404:
                return None
            raise

    def find_repo(self, ref: RepoRef) -> str | None:
        """Return the html URL of ``ref`` or None when it does not exist."""
        try:
            return self._repo(ref).html_url
        except NotFoundError:
            return None

    def create_fork(self, upstream: RepoRef, org: str) -> str:
        fork = self._repo(upstream).create_fork(organization=org)
        logger.info("Created fork %s", fork.full_name)
        self._repos[f"{org}/{upstream.name}"] = fork
        return fork.html_url

    def disable_actions(self, ref: RepoRef) -> None:
        repo = self._repo(ref)
        # PyGithub has no wrapper for the Actions permissions endpoint.
        repo._requester.requestJsonAndCheck("PUT", f"{repo.url}/actions/permissions", input={"enabled": False})

    def find_open_pull(self, fork: RepoRef, branch: str) -> PublishedPullRequest | None:
        pulls = self._repo(fork).get_pulls(state="open", head=f"{fork.owner}:{branch}")
        for pr in pulls:
            return PublishedPullRequest(url=pr.html_url, number=pr.number, reused=True)
        return None

    def create_pull(self, fork: RepoRef, title: str, body: str, head: str, base: str) -> PublishedPullRequest:
        try:
            pr = self._repo(fork).create_pull(title=title, body=body, head=head, base=base)
        except GithubException as e:
            if is_duplicate_pull_error(e):
                raise DuplicatePullRequest(_error_text(e))
            if is_invalid_base_error(e):
                raise BaseBranchMissing(base)
            raise PublishFailure(f"GitHub API error creating PR: {_error_text(e) or e}")
        return PublishedPullRequest(url=pr.html_url, number=pr.number, reused=False)
