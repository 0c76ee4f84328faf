"""
In-process storage backend.

The least durable tier: everything lives in one instance and is lost when
the process exits. Each instance is independent, so tests and fallback
chains get their own store instead of sharing module-level state.
"""

import copy
import logging
import threading
from typing import Any

from campaignforms.core.errors import FormDisabledError, FormNotFoundError
from campaignforms.core.schema import FormSchema, FormStatus
from campaignforms.core.utils import new_id, now_utc
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


class InMemoryRepository(Repository):
    """Thread-safe in-memory repository.

    Args:
        share_base_url: Base URL used to derive share links.
        initial_forms: Optional raw form records to seed the store with.
            Records missing status, counter or share URL are upgraded.
    """

    name = "memory"

    def __init__(
        self,
        share_base_url: str = DEFAULT_SHARE_BASE_URL,
        initial_forms: list[dict[str, Any]] | None = None,
    ):
        super().__init__(share_base_url)
        self._forms: dict[str, dict[str, Any]] = {}
        self._submissions: dict[str, SubmissionRecord] = {}
        self._lock = threading.RLock()

        for raw in initial_forms or []:
            record = dict(raw)
            if upgrade_form_record(record, share_base_url):
                logger.info("Upgraded seeded form record %s", record["id"])
            self._forms[str(record["id"])] = record

    # --- Forms ---

    def create_form(self, schema: FormSchema) -> str:
        with self._lock:
            if schema.id in self._forms:
                raise ValueError(f"Form '{schema.id}' already exists")
            self._forms[schema.id] = form_record(schema, self.share_url_for(schema.id))
        return schema.id

    def get_form(self, form_id: str) -> FormSchema | None:
        with self._lock:
            record = self._forms.get(form_id)
            return schema_from_record(record, self.name) if record else None

    def update_form(self, schema: FormSchema) -> bool:
        with self._lock:
            record = self._forms.get(schema.id)
            if record is None:
                return False
            self._forms[schema.id] = replace_form_record(record, schema)
            return True

    def update_form_status(self, form_id: str, status: FormStatus) -> bool:
        with self._lock:
            record = self._forms.get(form_id)
            if record is None:
                return False
            record["status"] = FormStatus(status).value
            return True

    def list_forms(self) -> list[FormSummary]:
        with self._lock:
            summaries = [
                summary_from_record(r, self.share_base_url) for r in self._forms.values()
            ]
        return sorted(summaries, key=lambda s: s.created_at, reverse=True)

    def get_form_summary(self, form_id: str) -> FormSummary | None:
        with self._lock:
            record = self._forms.get(form_id)
            return summary_from_record(record, self.share_base_url) if record else None

    def delete_form(self, form_id: str) -> bool:
        with self._lock:
            if self._forms.pop(form_id, None) is None:
                return False
            self._submissions = {
                sid: s for sid, s in self._submissions.items() if s.form_id != form_id
            }
            return True

    # --- Submissions ---

    def create_submission(self, form_id: str, answers: dict[str, Any]) -> str:
        with self._lock:
            record = self._forms.get(form_id)
            if record is None:
                raise FormNotFoundError(form_id)
            if record.get("status") == FormStatus.DISABLED.value:
                raise FormDisabledError(form_id)

            submission = SubmissionRecord(
                id=new_id(),
                form_id=form_id,
                answers=copy.deepcopy(answers),
                submitted_at=now_utc(),
            )
            self._submissions[submission.id] = submission
            record["submission_count"] = int(record.get("submission_count") or 0) + 1
            return submission.id

    def list_submissions(self, form_id: str) -> list[SubmissionRecord]:
        with self._lock:
            matching = [
                s.model_copy(deep=True) for s in self._submissions.values() if s.form_id == form_id
            ]
        return sorted(matching, key=lambda s: s.submitted_at, reverse=True)

    def list_all_submissions(self) -> list[SubmissionRecord]:
        with self._lock:
            records = [s.model_copy(deep=True) for s in self._submissions.values()]
        return sorted(records, key=lambda s: s.submitted_at, reverse=True)

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        # Stored records are immutable; hand out copies
        with self._lock:
            submission = self._submissions.get(submission_id)
            return submission.model_copy(deep=True) if submission else None

    def delete_submission(self, submission_id: str) -> bool:
        with self._lock:
            submission = self._submissions.pop(submission_id, None)
            if submission is None:
                return False
            record = self._forms.get(submission.form_id)
            if record is not None:
                record["submission_count"] = max(0, int(record.get("submission_count") or 0) - 1)
            return True
