"""SQLiteStore: local file-based store for the reproduction service.

Schema:
  cached_repos   : the reference-cache allow-list, one row per repository.
  forks          : organization-owned forks, unique per (owner, name).
  reproductions  : reproduced PRs, unique per (fork_url, review_branch),
                   which mirrors the engine's branch-name idempotency key.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from prreplay_store.base import BaseStore
from prreplay_store.models import CachedRepoRecord, ForkRecord, ReproductionRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cached_repos (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_owner  TEXT NOT NULL,
    repo_name   TEXT NOT NULL,
    notes       TEXT,
    added_at    TEXT,
    UNIQUE (repo_owner, repo_name)
);
CREATE TABLE IF NOT EXISTS forks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_owner      TEXT NOT NULL,
    repo_name       TEXT NOT NULL,
    fork_url        TEXT NOT NULL,
    upstream_owner  TEXT,
    created_at      TEXT,
    UNIQUE (repo_owner, repo_name)
);
CREATE TABLE IF NOT EXISTS reproductions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    source_repo     TEXT NOT NULL,
    source_number   INTEGER,
    commit_sha      TEXT,
    fork_url        TEXT NOT NULL,
    forked_pr_url   TEXT NOT NULL,
    review_branch   TEXT NOT NULL,
    title           TEXT,
    strategy        TEXT,
    commit_count    INTEGER DEFAULT 0,
    reused          INTEGER DEFAULT 0,
    created_at      TEXT,
    UNIQUE (fork_url, review_branch)
);
CREATE INDEX IF NOT EXISTS idx_reproductions_source ON reproductions (source_repo);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore(BaseStore):
    """Stores persistence records in a local SQLite database file.

    The path defaults to ``<data_dir>/prreplay.db``. Configure via
    .prreplay.yml: ``store_path: /path/to/prreplay.db``.
    """

    def __init__(self, db_path: str = "data/prreplay.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # -- cache allow-list -------------------------------------------------

    def add_cached_repo(self, owner: str, name: str, notes: str | None = None) -> None:
        self._conn.execute(
            """
            INSERT INTO cached_repos (repo_owner, repo_name, notes, added_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (repo_owner, repo_name)
            DO UPDATE SET notes = COALESCE(excluded.notes, cached_repos.notes)
            """,
            (owner, name, notes, _now()),
        )
        self._conn.commit()

    def remove_cached_repo(self, owner: str, name: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM cached_repos WHERE repo_owner=? AND repo_name=?",
            (owner, name),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def is_repo_cached(self, owner: str, name: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM cached_repos WHERE repo_owner=? AND repo_name=?",
            (owner, name),
        ).fetchone()
        return row is not None

    def list_cached_repos(self) -> list[CachedRepoRecord]:
        rows = self._conn.execute("SELECT * FROM cached_repos ORDER BY id").fetchall()
        return [
            CachedRepoRecord(
                repo_owner=r["repo_owner"],
                repo_name=r["repo_name"],
                notes=r["notes"],
                added_at=r["added_at"] or "",
            )
            for r in rows
        ]

    # -- forks --------------------------------------------------------------

    def save_fork(self, record: ForkRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO forks (repo_owner, repo_name, fork_url, upstream_owner, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (repo_owner, repo_name)
            DO UPDATE SET fork_url = excluded.fork_url,
                          upstream_owner = COALESCE(excluded.upstream_owner, forks.upstream_owner)
            """,
            (
                record.repo_owner,
                record.repo_name,
                record.fork_url,
                record.upstream_owner or None,
                record.created_at or _now(),
            ),
        )
        self._conn.commit()

    def get_fork(self, owner: str, name: str) -> ForkRecord | None:
        row = self._conn.execute(
            "SELECT * FROM forks WHERE repo_owner=? AND repo_name=?",
            (owner, name),
        ).fetchone()
        if row is None:
            return None
        return ForkRecord(
            repo_owner=row["repo_owner"],
            repo_name=row["repo_name"],
            fork_url=row["fork_url"],
            upstream_owner=row["upstream_owner"] or "",
            created_at=row["created_at"] or "",
        )

    # -- reproductions ------------------------------------------------------

    def save_reproduction(self, record: ReproductionRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO reproductions
              (source_repo, source_number, commit_sha, fork_url, forked_pr_url,
               review_branch, title, strategy, commit_count, reused, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (fork_url, review_branch)
            DO UPDATE SET forked_pr_url = excluded.forked_pr_url,
                          title = COALESCE(excluded.title, reproductions.title),
                          strategy = excluded.strategy,
                          commit_count = excluded.commit_count,
                          reused = excluded.reused
            """,
            (
                record.source_repo,
                record.source_number,
                record.commit_sha,
                record.fork_url,
                record.forked_pr_url,
                record.review_branch,
                record.title,
                record.strategy,
                record.commit_count,
                int(record.reused),
                record.created_at or _now(),
            ),
        )
        self._conn.commit()

    def list_reproductions(self, source_repo: str | None = None) -> list[ReproductionRecord]:
        if source_repo is not None:
            rows = self._conn.execute(
                "SELECT * FROM reproductions WHERE source_repo=? ORDER BY created_at",
                (source_repo,),
            ).fetchall()
        else:
            rows = self._conn.execute("SELECT * FROM reproductions ORDER BY created_at").fetchall()
        return [self._row_to_record(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReproductionRecord:
        return ReproductionRecord(
            source_repo=row["source_repo"],
            fork_url=row["fork_url"],
            forked_pr_url=row["forked_pr_url"],
            review_branch=row["review_branch"],
            source_number=row["source_number"],
            commit_sha=row["commit_sha"],
            title=row["title"] or "",
            strategy=row["strategy"] or "",
            commit_count=row["commit_count"] or 0,
            reused=bool(row["reused"]),
            created_at=row["created_at"] or "",
        )
