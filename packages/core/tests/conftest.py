"""Shared fixtures: throwaway git repositories on disk."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


def _identify(repo: Path) -> None:
    _git(repo, "config", "user.name", "Test User")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "commit.gpgsign", "false")


@pytest.fixture
def git():
    """Run a git command synchronously and return its stripped stdout."""
    return _git


@pytest.fixture
def commit_file():
    """Write ``name`` with ``content`` in ``repo``, commit it and return the new SHA."""

    def _commit(repo: Path, name: str, content: str, message: str) -> str:
        (repo / name).write_text(content)
        _git(repo, "add", name)
        _git(repo, "commit", "-q", "-m", message)
        return _git(repo, "rev-parse", "HEAD")

    return _commit


@pytest.fixture
def upstream_repo(tmp_path, commit_file):
    """A non-bare repository on ``main`` with a single commit."""
    repo = tmp_path / "upstream"
    repo.mkdir()
    _git(repo, "init", "-q", "-b", "main")
    _identify(repo)
    commit_file(repo, "README.md", "hello\n", "Initial commit")
    return repo


@pytest.fixture
def working_copy(tmp_path, upstream_repo):
    """A clone of ``upstream_repo`` with an ``upstream`` remote, like a working clone."""

    def _clone() -> Path:
        path = tmp_path / "work"
        _git(tmp_path, "clone", "-q", "--no-single-branch", str(upstream_repo), str(path))
        _identify(path)
        _git(path, "remote", "add", "upstream", str(upstream_repo))
        _git(path, "fetch", "-q", "upstream")
        return path

    return _clone
