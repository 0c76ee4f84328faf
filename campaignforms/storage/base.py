"""
Abstract persistence boundary shared by every storage backend.

A backend stores published FormSchemas, the per-form submission counter,
and immutable SubmissionRecords. ``create_submission`` must insert the
record and increment the counter in one atomic step of the backend's own
storage, so concurrent submissions never lose an update.

Older stores may lack the status, submission counter or share URL
attributes. Backends read them as active / 0 / derived URL and upgrade
their storage shape the first time they notice.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from campaignforms.core.errors import PersistenceError
from campaignforms.core.schema import FormSchema, FormStatus
from campaignforms.core.utils import now_utc, parse_timestamp, to_iso

DEFAULT_SHARE_BASE_URL = "http://localhost:3001"


class SubmissionRecord(BaseModel):
    """One accepted submission. Never mutated after creation."""

    id: str
    form_id: str
    answers: dict[str, Any]
    submitted_at: datetime = Field(default_factory=now_utc)


class FormSummary(BaseModel):
    """Admin listing entry for a form."""

    id: str
    title: str
    description: str | None = None
    status: FormStatus = FormStatus.ACTIVE
    submission_count: int = 0
    share_url: str
    created_at: datetime


def default_share_url(base_url: str, form_id: str) -> str:
    return f"{base_url.rstrip('/')}/form/{form_id}"


# ---------------------------------------------------------------------------
# Raw form records (memory and JSON file backends)
# ---------------------------------------------------------------------------

# Bookkeeping keys stored next to the schema's own wire keys
_RECORD_KEYS = {"submission_count", "share_url", "created_at"}


def form_record(schema: FormSchema, share_url: str) -> dict[str, Any]:
    """Build a raw storage record for a freshly published schema."""
    record = schema.model_dump(mode="json", by_alias=True)
    record["submission_count"] = 0
    record["share_url"] = share_url
    record["created_at"] = to_iso(now_utc())
    return record


def upgrade_form_record(record: dict[str, Any], share_base_url: str) -> bool:
    """Fill in attributes older records lack. Returns True if it changed anything."""
    changed = False
    if record.get("status") is None:
        record["status"] = FormStatus.ACTIVE.value
        changed = True
    if record.get("submission_count") is None:
        record["submission_count"] = 0
        changed = True
    if not record.get("share_url"):
        record["share_url"] = default_share_url(share_base_url, str(record["id"]))
        changed = True
    if not record.get("created_at"):
        record["created_at"] = to_iso(now_utc())
        changed = True
    return changed


def replace_form_record(record: dict[str, Any], schema: FormSchema) -> dict[str, Any]:
    """Build the record for a republished schema.

    The definition is replaced wholesale; status, counter, share URL and
    creation time stay with the stored form.
    """
    updated = schema.model_dump(mode="json", by_alias=True)
    updated["status"] = record.get("status") or FormStatus.ACTIVE.value
    for key in _RECORD_KEYS:
        updated[key] = record.get(key)
    return updated


def schema_from_record(record: dict[str, Any], tier: str) -> FormSchema:
    """Rebuild a schema from a raw record.

    Raises:
        PersistenceError: If the stored record is not a valid schema.
    """
    try:
        return FormSchema.model_validate(
            {k: v for k, v in record.items() if k not in _RECORD_KEYS}
        )
    except ValidationError as e:
        raise PersistenceError(
            tier, f"Stored form {record.get('id')!r} is corrupt: {e.error_count()} error(s)"
        ) from e


def summary_from_record(record: dict[str, Any], share_base_url: str) -> FormSummary:
    return FormSummary(
        id=str(record["id"]),
        title=record.get("title", ""),
        description=record.get("description"),
        status=record.get("status") or FormStatus.ACTIVE,
        submission_count=int(record.get("submission_count") or 0),
        share_url=record.get("share_url") or default_share_url(share_base_url, str(record["id"])),
        created_at=parse_timestamp(record.get("created_at")) or now_utc(),
    )


class Repository(ABC):
    """Storage contract every backend satisfies exactly."""

    #: Short backend name used in logs and PersistenceError messages
    name: str = "repository"

    def __init__(self, share_base_url: str = DEFAULT_SHARE_BASE_URL):
        self.share_base_url = share_base_url

    # --- Forms ---

    @abstractmethod
    def create_form(self, schema: FormSchema) -> str:
        """Store a published schema and return its form ID."""

    @abstractmethod
    def get_form(self, form_id: str) -> FormSchema | None:
        """Return the schema, or None if no such form exists."""

    @abstractmethod
    def update_form(self, schema: FormSchema) -> bool:
        """Replace a stored form's definition (republish).

        Status, submission counter, share URL and creation time are kept.
        Returns False if the form does not exist.
        """

    @abstractmethod
    def update_form_status(self, form_id: str, status: FormStatus) -> bool:
        """Set a form's status. Returns False if the form does not exist."""

    @abstractmethod
    def list_forms(self) -> list[FormSummary]:
        """All forms, newest first."""

    @abstractmethod
    def get_form_summary(self, form_id: str) -> FormSummary | None:
        ...

    @abstractmethod
    def delete_form(self, form_id: str) -> bool:
        """Delete a form and all of its submissions."""

    # --- Submissions ---

    @abstractmethod
    def create_submission(self, form_id: str, answers: dict[str, Any]) -> str:
        """Insert a submission and atomically bump the form's counter.

        Raises:
            FormNotFoundError: If the form does not exist.
            FormDisabledError: If the form is disabled.
            PersistenceError: If the backend fails.
        """

    @abstractmethod
    def list_submissions(self, form_id: str) -> list[SubmissionRecord]:
        """Submissions for a form, most recent first."""

    @abstractmethod
    def list_all_submissions(self) -> list[SubmissionRecord]:
        """Submissions of every form, most recent first."""

    @abstractmethod
    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        ...

    @abstractmethod
    def delete_submission(self, submission_id: str) -> bool:
        ...

    def share_url_for(self, form_id: str) -> str:
        return default_share_url(self.share_base_url, form_id)
