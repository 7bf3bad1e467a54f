"""Disk-resident reference clones shared across requests.

A cached repository lives at ``<cache_root>/<owner>/<name>`` and is only used
as a ``--reference`` donor for working clones. Every clone or fetch into it
happens under the RepoLockManager key for that repository.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from prreplay_core.errors import CloneFailure, GitCommandError
from prreplay_core.git.runner import remote_url, run_git
from prreplay_core.locks import RepoLockManager
from prreplay_core.models import CacheEntry, RepoRef

logger = logging.getLogger(__name__)

_PROGRESS_RE = re.compile(
    r"^(?:remote: )?(Counting|Compressing|Receiving|Resolving) (?:objects|deltas):\s+(\d+)%(?: \((\d+)/(\d+)\))?"
)

ProgressCallback = Callable[[dict], None]


def parse_clone_progress(line: str) -> dict | None:
    """Parse a ``git clone --progress`` stderr line into a progress dict."""
    match = _PROGRESS_RE.match(line.strip())
    if not match:
        return None
    phase, percent, current, total = match.groups()
    update = {"phase": phase.lower(), "percent": int(percent)}
    if current is not None:
        update["current"] = int(current)
        update["total"] = int(total)
    return update


class ThrottledProgress:
    """Forward at most one progress update per ``interval`` seconds."""

    def __init__(self, callback: ProgressCallback, interval: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last: float | None = None

    def __call__(self, line: str) -> None:
        update = parse_clone_progress(line)
        if update is None:
            return
        now = self._clock()
        if self._last is not None and now - self._last < self._interval:
            return
        self._last = now
        self._callback(update)


def _dir_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file() and not item.is_symlink():
                total += item.stat().st_size
        except OSError:
            continue
    return total


class ReferenceRepoCache:
    def __init__(
        self,
        cache_root: str | Path,
        locks: RepoLockManager,
        is_cacheable: Callable[[RepoRef], bool] | None = None,
        progress_interval: float = 2.0,
    ):
        self.cache_root = Path(cache_root)
        self.locks = locks
        self._is_cacheable = is_cacheable or (lambda ref: False)
        self.progress_interval = progress_interval

    def path_for(self, repo: RepoRef) -> Path:
        return self.cache_root / repo.owner / repo.name

    def exists(self, repo: RepoRef) -> bool:
        return (self.path_for(repo) / ".git").exists()

    def is_cacheable(self, repo: RepoRef) -> bool:
        return bool(self._is_cacheable(repo))

    async def ensure(
        self,
        repo: RepoRef,
        token: str | None,
        on_progress: ProgressCallback | None = None,
        force: bool = False,
    ) -> bool:
        """Bring the reference clone of ``repo`` up to date.

        Returns False without touching disk when ``repo`` is not cacheable
        (unless ``force`` is set). Raises CloneFailure when the clone or fetch
        fails; a failed clone leaves no directory behind.
        """
        if not force and not await asyncio.to_thread(self.is_cacheable, repo):
            logger.debug("%s is not on the cache allow-list", repo.key)
            return False

        path = self.path_for(repo)
        url = remote_url(repo, token)
        async with self.locks.hold(repo):
            if self.exists(repo):
                logger.info("Updating reference clone of %s", repo.key)
                try:
                    # Picks up the current token.
                    await run_git("remote", "set-url", "origin", url, cwd=path)
                    await run_git("fetch", "--all", "--tags", "--prune", cwd=path)
                except GitCommandError as e:
                    raise CloneFailure(f"Could not update cached clone of {repo.key}: {e.stderr}")
                return True

            logger.info("Cloning %s into reference cache", repo.key)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                if path.exists():
                    # Leftover from an interrupted clone.
                    await asyncio.to_thread(shutil.rmtree, path, True)
            except OSError as e:
                raise CloneFailure(f"Cache directory for {repo.key} is unusable: {e}")

            reporter = ThrottledProgress(on_progress, self.progress_interval) if on_progress else None
            try:
                await run_git("clone", "--progress", "--no-single-branch", url, str(path), on_stderr_line=reporter)
            except BaseException as e:
                await asyncio.to_thread(shutil.rmtree, path, True)
                if isinstance(e, GitCommandError):
                    raise CloneFailure(f"Could not clone {repo.key} into cache: {e.stderr}")
                raise
        return True

    async def remove(self, repo: RepoRef) -> bool:
        """Delete the reference clone of ``repo``. Out-of-band; never called by a request."""
        path = self.path_for(repo)
        async with self.locks.hold(repo):
            if not path.exists():
                return False
            await asyncio.to_thread(shutil.rmtree, path, True)
        owner_dir = path.parent
        if owner_dir.exists() and not any(owner_dir.iterdir()):
            owner_dir.rmdir()
        return True

    def list_entries(self, with_size: bool = False) -> list[CacheEntry]:
        entries: list[CacheEntry] = []
        if not self.cache_root.exists():
            return entries
        for owner_dir in sorted(p for p in self.cache_root.iterdir() if p.is_dir()):
            for repo_dir in sorted(p for p in owner_dir.iterdir() if p.is_dir()):
                git_dir = repo_dir / ".git"
                if not git_dir.exists():
                    continue
                marker = git_dir / "FETCH_HEAD"
                stamp = (marker if marker.exists() else git_dir).stat().st_mtime
                entries.append(
                    CacheEntry(
                        repo=RepoRef(owner=owner_dir.name, name=repo_dir.name),
                        path=repo_dir,
                        last_synced_at=datetime.fromtimestamp(stamp, tz=timezone.utc),
                        size_bytes=_dir_size(repo_dir) if with_size else 0,
                    )
                )
        return entries
