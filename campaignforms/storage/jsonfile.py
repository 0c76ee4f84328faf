"""
Flat-file storage backend.

Keeps two JSON documents in a data directory:

- forms.json:       list of form records (schema wire keys plus
                    submission_count, share_url, created_at)
- submissions.json: list of {id, formId, data, submitted_at}

Every read-modify-write happens under an in-process lock and a
cross-process file lock, and files are replaced atomically.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from filelock import FileLock
from pydantic import ValidationError

from campaignforms.core.errors import FormDisabledError, FormNotFoundError, PersistenceError
from campaignforms.core.schema import FormSchema, FormStatus
from campaignforms.core.utils import new_id, now_utc, parse_timestamp, to_iso
from campaignforms.storage.base import (
    DEFAULT_SHARE_BASE_URL,
    FormSummary,
    Repository,
    SubmissionRecord,
    form_record,
    replace_form_record,
    schema_from_record,
    summary_from_record,
    upgrade_form_record,
)

logger = logging.getLogger(__name__)

FORMS_FILE = "forms.json"
SUBMISSIONS_FILE = "submissions.json"


def _submission_from_raw(raw: dict[str, Any], tier: str) -> SubmissionRecord:
    try:
        return SubmissionRecord(
            id=str(raw["id"]),
            form_id=str(raw["formId"]),
            answers=raw.get("data") or {},
            submitted_at=parse_timestamp(raw.get("submitted_at")) or now_utc(),
        )
    except (KeyError, ValidationError) as e:
        raise PersistenceError(tier, f"Stored submission {raw.get('id')!r} is corrupt: {e}") from e


class JSONFileRepository(Repository):
    """Repository backed by JSON files in ``data_dir``.

    Args:
        data_dir: Directory holding forms.json and submissions.json.
            Created (with empty documents) if missing.
        share_base_url: Base URL used to derive share links.

    Raises:
        PersistenceError: If the data directory cannot be initialized.
    """

    name = "file"

    def __init__(self, data_dir: str | Path, share_base_url: str = DEFAULT_SHARE_BASE_URL):
        super().__init__(share_base_url)
        self._dir = Path(data_dir)
        self._lock = threading.RLock()
        self._upgraded = False
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._file_lock = FileLock(str(self._dir / ".campaignforms.lock"))
            with self._locked():
                for name in (FORMS_FILE, SUBMISSIONS_FILE):
                    path = self._dir / name
                    if not path.exists():
                        self._write(name, [])
                        logger.info("Created %s", path)
        except OSError as e:
            raise PersistenceError(self.name, f"Cannot initialize {self._dir}: {e}") from e

    # -----------------------------------------------------------------
    # File helpers
    # -----------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock, self._file_lock:
            yield

    def _read(self, name: str) -> list[dict[str, Any]]:
        path = self._dir / name
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(self.name, f"Cannot read {path}: {e}") from e
        if not isinstance(data, list):
            raise PersistenceError(self.name, f"{path} does not contain a JSON list")
        return data

    def _write(self, name: str, items: list[dict[str, Any]]) -> None:
        path = self._dir / name
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(self.name, f"Cannot write {path}: {e}") from e

    def _read_forms(self) -> list[dict[str, Any]]:
        """Read forms.json, rewriting it once if older records lack attributes."""
        forms = self._read(FORMS_FILE)
        if self._upgraded:
            return forms
        changed = [upgrade_form_record(r, self.share_base_url) for r in forms]
        if any(changed):
            logger.info(
                "Upgrading %d form record(s) in %s with status/counter/share URL",
                sum(changed), self._dir / FORMS_FILE,
            )
            self._write(FORMS_FILE, forms)
        self._upgraded = True
        return forms

    @staticmethod
    def _find(items: list[dict[str, Any]], item_id: str) -> dict[str, Any] | None:
        for item in items:
            if str(item.get("id")) == item_id:
                return item
        return None

    # --- Forms ---

    def create_form(self, schema: FormSchema) -> str:
        with self._locked():
            forms = self._read_forms()
            if self._find(forms, schema.id) is not None:
                raise ValueError(f"Form '{schema.id}' already exists")
            forms.append(form_record(schema, self.share_url_for(schema.id)))
            self._write(FORMS_FILE, forms)
        return schema.id

    def get_form(self, form_id: str) -> FormSchema | None:
        with self._locked():
            record = self._find(self._read_forms(), form_id)
        return schema_from_record(record, self.name) if record else None

    def update_form(self, schema: FormSchema) -> bool:
        with self._locked():
            forms = self._read_forms()
            for index, record in enumerate(forms):
                if str(record.get("id")) == schema.id:
                    forms[index] = replace_form_record(record, schema)
                    self._write(FORMS_FILE, forms)
                    return True
            return False

    def update_form_status(self, form_id: str, status: FormStatus) -> bool:
        with self._locked():
            forms = self._read_forms()
            record = self._find(forms, form_id)
            if record is None:
                return False
            record["status"] = FormStatus(status).value
            self._write(FORMS_FILE, forms)
            return True

    def list_forms(self) -> list[FormSummary]:
        with self._locked():
            forms = self._read_forms()
        summaries = [summary_from_record(r, self.share_base_url) for r in forms]
        return sorted(summaries, key=lambda s: s.created_at, reverse=True)

    def get_form_summary(self, form_id: str) -> FormSummary | None:
        with self._locked():
            record = self._find(self._read_forms(), form_id)
        return summary_from_record(record, self.share_base_url) if record else None

    def delete_form(self, form_id: str) -> bool:
        with self._locked():
            forms = self._read_forms()
            remaining = [f for f in forms if str(f.get("id")) != form_id]
            if len(remaining) == len(forms):
                return False
            self._write(FORMS_FILE, remaining)

            submissions = self._read(SUBMISSIONS_FILE)
            self._write(
                SUBMISSIONS_FILE,
                [s for s in submissions if str(s.get("formId")) != form_id],
            )
            return True

    # --- Submissions ---

    def create_submission(self, form_id: str, answers: dict[str, Any]) -> str:
        with self._locked():
            forms = self._read_forms()
            record = self._find(forms, form_id)
            if record is None:
                raise FormNotFoundError(form_id)
            if record.get("status") == FormStatus.DISABLED.value:
                raise FormDisabledError(form_id)

            submission_id = new_id()
            submissions = self._read(SUBMISSIONS_FILE)
            self._write(SUBMISSIONS_FILE, submissions + [{
                "id": submission_id,
                "formId": form_id,
                "data": dict(answers),
                "submitted_at": to_iso(now_utc()),
            }])

            record["submission_count"] = int(record.get("submission_count") or 0) + 1
            try:
                self._write(FORMS_FILE, forms)
            except PersistenceError:
                # Counter write failed: drop the record so no partial state survives
                self._write(SUBMISSIONS_FILE, submissions)
                raise
            return submission_id

    def list_submissions(self, form_id: str) -> list[SubmissionRecord]:
        with self._locked():
            raw = self._read(SUBMISSIONS_FILE)
        matching = [_submission_from_raw(s, self.name) for s in raw if str(s.get("formId")) == form_id]
        return sorted(matching, key=lambda s: s.submitted_at, reverse=True)

    def list_all_submissions(self) -> list[SubmissionRecord]:
        with self._locked():
            raw = self._read(SUBMISSIONS_FILE)
        records = [_submission_from_raw(s, self.name) for s in raw]
        return sorted(records, key=lambda s: s.submitted_at, reverse=True)

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        with self._locked():
            raw = self._find(self._read(SUBMISSIONS_FILE), submission_id)
        return _submission_from_raw(raw, self.name) if raw else None

    def delete_submission(self, submission_id: str) -> bool:
        with self._locked():
            submissions = self._read(SUBMISSIONS_FILE)
            target = self._find(submissions, submission_id)
            if target is None:
                return False
            self._write(
                SUBMISSIONS_FILE,
                [s for s in submissions if str(s.get("id")) != submission_id],
            )

            forms = self._read_forms()
            record = self._find(forms, str(target.get("formId")))
            if record is not None:
                record["submission_count"] = max(0, int(record.get("submission_count") or 0) - 1)
                self._write(FORMS_FILE, forms)
            return True
