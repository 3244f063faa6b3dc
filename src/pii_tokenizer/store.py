"""Submission store backed by SQLite — the audit trail of every submit.

Two tables: submissions (the tokenized text) and classifications (one row
per substitution, pointing back at its submission).  A submission and its
classifications are written in a single transaction, so a crash can never
leave a submission without the rows that explain its tokens.

Usage:
    store = SqliteStore("~/.pii-tokenizer/tokenizer.db")
    submission = store.save_submission(result.text, result.classifications)
    store.count_by_tag(PiiType.EMAIL)
"""

from __future__ import annotations
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .types import Classification, PendingClassification, PiiType, Stats, Submission

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tokenized_text TEXT NOT NULL,
    submitted_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS classifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT NOT NULL UNIQUE,
    original_value TEXT NOT NULL,
    tag TEXT NOT NULL,
    submission_id INTEGER NOT NULL REFERENCES submissions(id)
);
CREATE INDEX IF NOT EXISTS idx_classifications_tag
    ON classifications(tag);
CREATE INDEX IF NOT EXISTS idx_classifications_submission
    ON classifications(submission_id);
"""


class StoreError(Exception):
    """A submission could not be durably recorded or read."""


class SqliteStore:
    """Append-only store of submissions and their classifications."""

    __slots__ = ("_db_path", "_db", "_lock")

    def __init__(self, db_path: str | Path = "tokenizer.db") -> None:
        if str(db_path) == ":memory:":
            self._db_path = ":memory:"
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self._db_path = str(path)
        self._lock = threading.Lock()
        try:
            self._db = sqlite3.connect(self._db_path, check_same_thread=False)
            self._db.execute("PRAGMA foreign_keys = ON")
            self._db.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open store at {self._db_path}: {e}") from e

    @property
    def path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_submission(
        self,
        tokenized_text: str,
        classifications: Iterable[PendingClassification],
        *,
        submitted_at: datetime | None = None,
    ) -> Submission:
        """Record a submission and all its classifications atomically.

        Transient failures (locked database and the like) are retried once;
        anything else, or a second failure, raises StoreError.
        """
        pending = list(classifications)
        when = submitted_at or datetime.now(timezone.utc)

        try:
            return self._insert(tokenized_text, pending, when)
        except sqlite3.OperationalError as e:
            logger.warning(f"Saving submission failed ({e}), retrying once")
        except sqlite3.Error as e:
            raise StoreError(f"failed to save submission: {e}") from e

        try:
            return self._insert(tokenized_text, pending, when)
        except sqlite3.Error as e:
            logger.error(f"Saving submission failed again: {e}")
            raise StoreError(f"failed to save submission: {e}") from e

    def _insert(
        self,
        tokenized_text: str,
        pending: list[PendingClassification],
        when: datetime,
    ) -> Submission:
        with self._lock, self._db:
            cur = self._db.execute(
                "INSERT INTO submissions (tokenized_text, submitted_at) VALUES (?, ?)",
                (tokenized_text, when.isoformat()),
            )
            submission_id = cur.lastrowid
            saved: list[Classification] = []
            for c in pending:
                row = self._db.execute(
                    "INSERT INTO classifications (token, original_value, tag, submission_id)"
                    " VALUES (?, ?, ?, ?)",
                    (c.token, c.original_value, c.tag.value, submission_id),
                )
                saved.append(Classification(
                    id=row.lastrowid,
                    token=c.token,
                    original_value=c.original_value,
                    tag=c.tag,
                    submission_id=submission_id,
                ))

        logger.debug(f"Saved submission {submission_id} with {len(saved)} classification(s)")
        return Submission(
            id=submission_id,
            tokenized_text=tokenized_text,
            submitted_at=when,
            classifications=saved,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count_by_tag(self, tag: PiiType) -> int:
        """Number of classifications recorded with this tag."""
        row = self._query_one(
            "SELECT COUNT(*) FROM classifications WHERE tag = ?", (tag.value,),
        )
        return row[0]

    def stats(self) -> Stats:
        return Stats(
            total_emails=self.count_by_tag(PiiType.EMAIL),
            total_health=self.count_by_tag(PiiType.HEALTH),
        )

    def get_submission(self, submission_id: int) -> Submission | None:
        """Load one submission with its classifications, or None."""
        row = self._query_one(
            "SELECT id, tokenized_text, submitted_at FROM submissions WHERE id = ?",
            (submission_id,),
        )
        if row is None:
            return None
        submission = _submission_from_row(row)
        submission.classifications = self._classifications_for(submission.id)
        return submission

    def list_submissions(self, limit: int = 20) -> list[Submission]:
        """Most recent submissions first, without their classifications."""
        with self._lock:
            try:
                rows = self._db.execute(
                    "SELECT id, tokenized_text, submitted_at FROM submissions"
                    " ORDER BY id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"failed to list submissions: {e}") from e
        return [_submission_from_row(r) for r in rows]

    def _classifications_for(self, submission_id: int) -> list[Classification]:
        with self._lock:
            try:
                rows = self._db.execute(
                    "SELECT id, token, original_value, tag, submission_id"
                    " FROM classifications WHERE submission_id = ? ORDER BY id",
                    (submission_id,),
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"failed to load classifications: {e}") from e
        return [
            Classification(id=cid, token=token, original_value=orig, tag=PiiType(tag), submission_id=sid)
            for cid, token, orig, tag, sid in rows
        ]

    def _query_one(self, sql: str, params: tuple) -> tuple | None:
        with self._lock:
            try:
                return self._db.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"query failed: {e}") from e

    def close(self) -> None:
        self._db.close()


def _submission_from_row(row: tuple) -> Submission:
    sid, text, submitted_at = row
    return Submission(
        id=sid,
        tokenized_text=text,
        submitted_at=datetime.fromisoformat(submitted_at),
    )
