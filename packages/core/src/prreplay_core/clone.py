"""Private, disposable clones: one per reproduction request."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from prreplay_core.cache import ReferenceRepoCache
from prreplay_core.errors import CloneFailure, GitCommandError
from prreplay_core.git.runner import remote_url, run_git
from prreplay_core.models import RepoRef, WorkingClone

logger = logging.getLogger(__name__)


class WorkingCloneManager:
    def __init__(
        self,
        cache: ReferenceRepoCache,
        work_root: str | Path | None = None,
        git_user_name: str = "prreplay",
        git_user_email: str = "prreplay@users.noreply.github.com",
    ):
        self.cache = cache
        self.work_root = Path(work_root) if work_root else None
        self.git_user_name = git_user_name
        self.git_user_email = git_user_email

    async def materialize(self, fork: RepoRef, upstream: RepoRef, token: str | None) -> WorkingClone:
        """Clone ``fork`` into a fresh temp directory with ``upstream`` as a second remote.

        Objects are borrowed from the reference cache of ``upstream`` when one
        exists. Any failure removes the temp directory before raising.

        A ``--reference`` clone holds the cache lock of ``upstream`` until it
        completes, so requests for the same repository also queue here, not
        only on the cache refresh. A concurrent ``fetch --prune`` on the donor
        could otherwise remove objects the new clone is still copying.
        """
        if self.work_root is not None:
            self.work_root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="prreplay-", dir=self.work_root))
        origin = remote_url(fork, token)
        upstream_url = remote_url(upstream, token)
        try:
            if self.cache.exists(upstream):
                # No fetch may rewrite the donor while it is cloned from.
                async with self.cache.locks.hold(upstream):
                    logger.info("Cloning %s with reference %s", fork.key, self.cache.path_for(upstream))
                    await run_git(
                        "clone",
                        "--reference",
                        str(self.cache.path_for(upstream)),
                        "--no-single-branch",
                        origin,
                        str(path),
                    )
            else:
                logger.info("Cloning %s without reference cache", fork.key)
                await run_git("clone", "--no-single-branch", origin, str(path))
            await run_git("config", "user.name", self.git_user_name, cwd=path)
            await run_git("config", "user.email", self.git_user_email, cwd=path)
            await run_git("remote", "add", "upstream", upstream_url, cwd=path)
        except BaseException as e:
            await self.discard(WorkingClone(path=path))
            if isinstance(e, GitCommandError):
                raise CloneFailure(f"Could not clone {fork.key}: {e.stderr}")
            raise
        return WorkingClone(path=path, remotes={"origin": fork.key, "upstream": upstream.key})

    async def discard(self, clone: WorkingClone) -> None:
        if clone.path.exists():
            await asyncio.to_thread(shutil.rmtree, clone.path, True)
            logger.debug("Removed working clone %s", clone.path)

    @asynccontextmanager
    async def session(self, fork: RepoRef, upstream: RepoRef, token: str | None) -> AsyncIterator[WorkingClone]:
        """Yield a working clone that is deleted on every exit path."""
        clone = await self.materialize(fork, upstream, token)
        try:
            yield clone
        finally:
            await self.discard(clone)
