"""
Submission coordinator: gate, validate, persist, count.

One submit attempt ends in exactly one outcome:

- committed: one SubmissionRecord now exists and the form's counter was
  incremented by the repository in the same storage step.
- rejected:  wrong validation code, or the answers failed validation. The
             per-field error map is returned verbatim. Nothing is written.
- gated:     the form does not exist or is disabled. Nothing is written.
- failed:    every storage tier failed. Nothing is written.

The status check is a point-in-time snapshot taken before validation and
is not repeated afterwards. A submission validated while the form was
active may still commit after a concurrent disable; this is accepted
best-effort consistency and is not guarded by a lock. The
repository's own status check at insert time still refuses forms that
were already disabled when the insert runs.
"""

import hmac
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from campaignforms.core.errors import GateError, InvalidValidationCodeError, PersistenceError
from campaignforms.core.schema import FormSchema
from campaignforms.core.validation import validate_answers
from campaignforms.core.visibility import VisibilityEngine, VisibilityState
from campaignforms.storage.base import Repository

logger = logging.getLogger(__name__)


class SubmissionOutcome(str, Enum):
    COMMITTED = "committed"
    REJECTED = "rejected"
    GATED = "gated"
    FAILED = "failed"


class SubmissionResult(BaseModel):
    """What happened to one submit attempt."""

    outcome: SubmissionOutcome
    reason: str | None = Field(
        default=None,
        description="not_found, disabled, invalid_code, validation or persistence",
    )
    message: str | None = None
    submission_id: str | None = None
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def committed(self) -> bool:
        return self.outcome == SubmissionOutcome.COMMITTED


class SubmissionCoordinator:
    """Orchestrates one submit attempt against a Repository.

    Holds no per-request state, so one instance serves concurrent
    respondents.

    Args:
        repository: Any Repository implementation (usually tiered).
    """

    def __init__(self, repository: Repository):
        self.repository = repository

    def submit(
        self,
        form_id: str,
        answers: dict[str, Any],
        visibility: VisibilityState | None = None,
        validation_code: str | None = None,
    ) -> SubmissionResult:
        """Gate, validate and persist one submission.

        Args:
            form_id: The form being submitted.
            answers: Candidate answers keyed by field ID.
            visibility: The respondent's VisibilityState. When omitted it is
                rebuilt by replaying ``answers`` through the visibility engine.
            validation_code: Code supplied by the respondent, if the form
                requires one. Never stored with the answers.

        Returns:
            A SubmissionResult describing the outcome.
        """
        # 1-2. Gate: form exists and is active (snapshot)
        try:
            schema = self.repository.get_form(form_id)
        except PersistenceError as e:
            logger.error("Could not load form %s: %s", form_id, e)
            return _failed(str(e))

        if schema is None:
            logger.info("Submission gated: form %s not found", form_id)
            return SubmissionResult(
                outcome=SubmissionOutcome.GATED,
                reason="not_found",
                message=f"Form '{form_id}' not found",
            )
        if not schema.is_active():
            logger.info("Submission gated: form %s is disabled", form_id)
            return SubmissionResult(
                outcome=SubmissionOutcome.GATED,
                reason="disabled",
                message=f"Form '{form_id}' is disabled",
            )

        # 3. Validation code
        try:
            _require_code(schema, validation_code)
        except InvalidValidationCodeError as e:
            logger.info("Submission rejected: invalid validation code for form %s", form_id)
            return SubmissionResult(
                outcome=SubmissionOutcome.REJECTED,
                reason=e.reason,
                message=e.message,
            )

        # 4. Validation against the visible field set
        if visibility is None:
            visibility = VisibilityEngine.replay(schema, answers).state
        errors = validate_answers(schema, visibility, answers)
        if errors:
            logger.info(
                "Submission rejected for form %s: %d field error(s)", form_id, len(errors)
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.REJECTED,
                reason="validation",
                message="Validation failed",
                errors=errors,
            )

        # 5. Persist (record + counter increment happen together in storage)
        payload = _persistable_answers(schema, visibility, answers)
        try:
            submission_id = self.repository.create_submission(form_id, payload)
        except GateError as e:
            logger.info("Submission gated at insert time for form %s: %s", form_id, e)
            return SubmissionResult(outcome=SubmissionOutcome.GATED, reason=e.reason, message=e.message)
        except PersistenceError as e:
            logger.error("Submission for form %s failed on every storage tier: %s", form_id, e)
            return _failed(str(e))

        logger.info("Submission %s committed for form %s", submission_id, form_id)
        return SubmissionResult(
            outcome=SubmissionOutcome.COMMITTED,
            submission_id=submission_id,
            message="Form submitted successfully",
        )


def _require_code(schema: FormSchema, supplied: str | None) -> None:
    expected = schema.validation_code
    if not expected:
        return
    if supplied is None or not hmac.compare_digest(
        expected.encode("utf-8"), supplied.encode("utf-8")
    ):
        raise InvalidValidationCodeError(schema.id)


def _persistable_answers(
    schema: FormSchema,
    visibility: VisibilityState,
    answers: dict[str, Any],
) -> dict[str, Any]:
    """Answers of known, visible fields in schema order.

    Hidden fields never contribute stale data, and stray keys (such as a
    validation code posted alongside the answers) are never stored.
    """
    return {
        field.id: answers[field.id]
        for field in schema.fields
        if field.id in answers and visibility.get(field.id, True)
    }


def _failed(message: str) -> SubmissionResult:
    return SubmissionResult(
        outcome=SubmissionOutcome.FAILED,
        reason="persistence",
        message=message,
    )
