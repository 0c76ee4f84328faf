"""
SQLite-backed relational storage.

The most durable tier. Forms keep their schema as JSON next to the
status, submission counter and share URL columns; submissions are one row
each. Databases created before those columns existed are upgraded in
place on first open, with counters backfilled from the submissions table.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError

from campaignforms.core.errors import FormDisabledError, FormNotFoundError, PersistenceError
from campaignforms.core.schema import FormSchema, FormStatus
from campaignforms.core.utils import new_id, now_utc, parse_timestamp, to_iso
from campaignforms.storage.base import (
    DEFAULT_SHARE_BASE_URL,
    FormSummary,
    Repository,
    SubmissionRecord,
)

logger = logging.getLogger(__name__)


class SQLiteRepository(Repository):
    """Relational repository on a single SQLite database file.

    Args:
        db_path: Path of the database file (``:memory:`` is not supported,
            every operation opens its own connection).
        share_base_url: Base URL used to derive share links.

    Raises:
        PersistenceError: If the database cannot be opened or upgraded.
    """

    name = "sqlite"

    def __init__(self, db_path: str | Path, share_base_url: str = DEFAULT_SHARE_BASE_URL):
        super().__init__(share_base_url)
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        self._ensure_schema()

    # -----------------------------------------------------------------
    # Connection / schema management
    # -----------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a unit of work in one transaction; sqlite errors become PersistenceError."""
        with self._lock:
            try:
                conn = self._connect()
            except sqlite3.Error as e:
                raise PersistenceError(self.name, f"Cannot open {self._db_path}: {e}") from e
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(self.name, str(e)) from e
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _ensure_schema(self) -> None:
        try:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(self.name, f"Cannot create database directory: {e}") from e

        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS forms (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    schema_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    form_id TEXT NOT NULL,
                    answers_json TEXT NOT NULL,
                    submitted_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_submissions_form_id ON submissions (form_id)"
            )
            self._upgrade_forms_table(conn)

    def _upgrade_forms_table(self, conn: sqlite3.Connection) -> None:
        """Add the status, submission_count and share_url columns when missing."""
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(forms)")}

        if "submission_count" not in columns:
            logger.info("Adding submission_count column to forms table")
            conn.execute("ALTER TABLE forms ADD COLUMN submission_count INTEGER NOT NULL DEFAULT 0")
            conn.execute(
                """
                UPDATE forms SET submission_count = (
                    SELECT COUNT(*) FROM submissions WHERE submissions.form_id = forms.id
                )
                """
            )

        if "status" not in columns:
            logger.info("Adding status column to forms table")
            conn.execute("ALTER TABLE forms ADD COLUMN status TEXT NOT NULL DEFAULT 'active'")

        if "share_url" not in columns:
            logger.info("Adding share_url column to forms table")
            conn.execute("ALTER TABLE forms ADD COLUMN share_url TEXT")

        # Rows written before share URLs existed get one derived from their id
        conn.execute(
            "UPDATE forms SET share_url = ? || '/form/' || id WHERE share_url IS NULL OR share_url = ''",
            (self.share_base_url.rstrip("/"),),
        )

    # -----------------------------------------------------------------
    # Row conversion
    # -----------------------------------------------------------------

    def _schema_from_row(self, row: sqlite3.Row) -> FormSchema:
        try:
            schema = FormSchema.model_validate_json(row["schema_json"])
        except ValidationError as e:
            raise PersistenceError(
                self.name, f"Stored form {row['id']!r} is corrupt: {e.error_count()} error(s)"
            ) from e
        return schema.with_status(row["status"] or FormStatus.ACTIVE)

    def _summary_from_row(self, row: sqlite3.Row) -> FormSummary:
        return FormSummary(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"] or FormStatus.ACTIVE,
            submission_count=row["submission_count"] or 0,
            share_url=row["share_url"] or self.share_url_for(row["id"]),
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
        )

    def _submission_from_row(self, row: sqlite3.Row) -> SubmissionRecord:
        try:
            return SubmissionRecord(
                id=row["id"],
                form_id=row["form_id"],
                answers=json.loads(row["answers_json"]),
                submitted_at=parse_timestamp(row["submitted_at"]) or now_utc(),
            )
        except (json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(self.name, f"Stored submission {row['id']!r} is corrupt: {e}") from e

    # --- Forms ---

    def create_form(self, schema: FormSchema) -> str:
        with self._transaction() as conn:
            exists = conn.execute("SELECT 1 FROM forms WHERE id = ?", (schema.id,)).fetchone()
            if exists:
                raise ValueError(f"Form '{schema.id}' already exists")
            conn.execute(
                """
                INSERT INTO forms
                (id, title, description, schema_json, created_at, status, submission_count, share_url)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    schema.id,
                    schema.title,
                    schema.description,
                    schema.model_dump_json(by_alias=True),
                    to_iso(now_utc()),
                    schema.status.value,
                    self.share_url_for(schema.id),
                ),
            )
        return schema.id

    def get_form(self, form_id: str) -> FormSchema | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, schema_json, status FROM forms WHERE id = ?", (form_id,)
            ).fetchone()
        return self._schema_from_row(row) if row else None

    def update_form(self, schema: FormSchema) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE forms SET title = ?, description = ?, schema_json = ? WHERE id = ?",
                (
                    schema.title,
                    schema.description,
                    schema.model_dump_json(by_alias=True),
                    schema.id,
                ),
            )
            return cursor.rowcount > 0

    def update_form_status(self, form_id: str, status: FormStatus) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE forms SET status = ? WHERE id = ?",
                (FormStatus(status).value, form_id),
            )
            return cursor.rowcount > 0

    def list_forms(self) -> list[FormSummary]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM forms ORDER BY created_at DESC").fetchall()
        return [self._summary_from_row(r) for r in rows]

    def get_form_summary(self, form_id: str) -> FormSummary | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM forms WHERE id = ?", (form_id,)).fetchone()
        return self._summary_from_row(row) if row else None

    def delete_form(self, form_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM forms WHERE id = ?", (form_id,))
            if cursor.rowcount == 0:
                return False
            conn.execute("DELETE FROM submissions WHERE form_id = ?", (form_id,))
            return True

    # --- Submissions ---

    def create_submission(self, form_id: str, answers: dict[str, Any]) -> str:
        submission_id = new_id()
        with self._transaction() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT status FROM forms WHERE id = ?", (form_id,)).fetchone()
            if row is None:
                raise FormNotFoundError(form_id)
            if row["status"] == FormStatus.DISABLED.value:
                raise FormDisabledError(form_id)

            conn.execute(
                "INSERT INTO submissions (id, form_id, answers_json, submitted_at) VALUES (?, ?, ?, ?)",
                (submission_id, form_id, json.dumps(answers, ensure_ascii=False), to_iso(now_utc())),
            )
            conn.execute(
                "UPDATE forms SET submission_count = submission_count + 1 WHERE id = ?",
                (form_id,),
            )
        return submission_id

    def list_submissions(self, form_id: str) -> list[SubmissionRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE form_id = ? ORDER BY submitted_at DESC",
                (form_id,),
            ).fetchall()
        return [self._submission_from_row(r) for r in rows]

    def list_all_submissions(self) -> list[SubmissionRecord]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM submissions ORDER BY submitted_at DESC").fetchall()
        return [self._submission_from_row(r) for r in rows]

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM submissions WHERE id = ?", (submission_id,)
            ).fetchone()
        return self._submission_from_row(row) if row else None

    def delete_submission(self, submission_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT form_id FROM submissions WHERE id = ?", (submission_id,)
            ).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM submissions WHERE id = ?", (submission_id,))
            conn.execute(
                "UPDATE forms SET submission_count = MAX(submission_count - 1, 0) WHERE id = ?",
                (row["form_id"],),
            )
            return True
